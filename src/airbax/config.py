"""Configuration management for Airbax."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .errors import InvalidSettingError, MissingSettingError

DEFAULT_URL = "https://airbrake.io"
DEFAULT_OVERLOAD_THRESHOLD = 500
DEFAULT_POOL_SIZE = 20

REQUIRED_SETTINGS = ("project_key", "project_id", "environment")


class Mode(StrEnum):
    """Whether reports reach the network."""

    DISABLED = "disabled"
    LOG = "log"
    ENABLED = "enabled"

    @classmethod
    def from_setting(cls, enabled: bool | str) -> Mode:
        if enabled is True:
            return cls.ENABLED
        if enabled is False:
            return cls.DISABLED
        if enabled == "log":
            return cls.LOG
        raise InvalidSettingError(f"enabled must be true, false or 'log', got {enabled!r}")


class Settings(BaseSettings):
    """Reporter settings."""

    model_config = SettingsConfigDict(
        env_prefix="AIRBAX_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Project credentials
    project_key: str | None = Field(default=None, description="Airbrake project key")
    project_id: str | None = Field(default=None, description="Airbrake project id")
    environment: str | None = Field(default=None, description="Environment name sent with every notice")

    # Delivery
    enabled: bool | Literal["log"] = Field(default=True, description="true, false or 'log'")
    url: str = Field(default=DEFAULT_URL, description="Base URL of the Airbrake/Errbit API")
    overload_threshold: int = Field(default=DEFAULT_OVERLOAD_THRESHOLD, description="Maximum in-flight reports")
    pool_size: int = Field(default=DEFAULT_POOL_SIZE, description="Maximum open HTTP connections")
    proxy: str | None = Field(default=None, description="Optional proxy URL for outbound requests")
    ignore: Annotated[list[str] | Literal["all"], NoDecode] = Field(
        default_factory=list, description="Dotted exception type names never reported, or 'all'"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")

    @field_validator("enabled", mode="before")
    @classmethod
    def _normalize_enabled(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().casefold() == "log":
            return "log"
        return value

    @field_validator("ignore", mode="before")
    @classmethod
    def _split_ignore(cls, value: Any) -> Any:
        if isinstance(value, str):
            if value.strip() == "all":
                return "all"
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def mode(self) -> Mode:
        return Mode.from_setting(self.enabled)

    def require(self) -> None:
        """Raise when a required credential is missing or a limit is unusable."""
        for name in REQUIRED_SETTINGS:
            if not getattr(self, name):
                raise MissingSettingError(name)
        if self.overload_threshold < 1:
            raise InvalidSettingError(f"overload_threshold must be at least 1, got {self.overload_threshold}")
        if self.pool_size < 1:
            raise InvalidSettingError(f"pool_size must be at least 1, got {self.pool_size}")

    def masked(self) -> dict[str, Any]:
        data = self.model_dump()
        key = data.get("project_key")
        if key:
            data["project_key"] = key[:4] + "*" * max(len(key) - 4, 0)
        return data


def load_settings(**overrides: Any) -> Settings:
    """Resolve settings from the environment and validate them.

    Args:
        **overrides: Explicit values taking precedence over the environment

    Returns:
        Validated Settings instance
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        raise InvalidSettingError(str(exc)) from exc
    settings.require()
    return settings
