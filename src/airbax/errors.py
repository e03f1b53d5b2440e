"""Application-level exception types for Airbax."""

from __future__ import annotations


class AirbaxError(Exception):
    """Base exception for Airbax."""


class ConfigurationError(AirbaxError):
    """Base exception for configuration and startup validation errors."""


class MissingSettingError(ConfigurationError):
    """Raised when a required setting is not provided."""

    def __init__(self, name: str) -> None:
        super().__init__(f"the configuration parameter {name!r} is not set")
        self.name = name


class InvalidSettingError(ConfigurationError):
    """Raised when a setting has an unusable value."""


class GateReleaseError(AirbaxError):
    """Raised when the admission gate is released more often than admitted."""


class ExchangeStateError(AirbaxError):
    """Raised when a response event reaches an exchange that already finished."""


class ClientStateError(AirbaxError):
    """Raised when the client is used outside of its start/stop lifecycle."""
