"""Airbax - report exceptions to Airbrake and Errbit.

Configure the reporter once at startup, then report from anywhere::

    import airbax

    airbax.start(project_key="...", project_id="...", environment="production")

    try:
        risky()
    except Exception as exc:
        airbax.report(exc, params={"weather": "rainy"})

Reporting is fire-and-forget: :func:`report` returns right away and the
notice is delivered in the background.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from types import TracebackType
from typing import Any

import httpx
from loguru import logger

from .client import Client
from .config import Mode, Settings, load_settings
from .errors import AirbaxError, ConfigurationError

__version__ = "0.1.0"

__all__ = [
    "AirbaxError",
    "Client",
    "ConfigurationError",
    "Mode",
    "Settings",
    "get_client",
    "load_settings",
    "report",
    "start",
    "stop",
]

_client: Client | None = None
_lock = threading.Lock()


def start(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    **overrides: Any,
) -> Client:
    """Start the process-wide client, replacing any previous one.

    Raises ``ConfigurationError`` when a required setting is missing.
    """
    global _client
    resolved = settings if settings is not None else load_settings(**overrides)
    client = Client.from_settings(resolved, transport=transport)
    with _lock:
        previous, _client = _client, None
    if previous is not None:
        previous.stop()
    client.start()
    with _lock:
        _client = client
    return client


def stop(timeout: float | None = 5.0) -> None:
    """Stop the process-wide client, waiting up to ``timeout`` for in-flight reports."""
    global _client
    with _lock:
        client, _client = _client, None
    if client is not None:
        client.stop(timeout)


def get_client() -> Client | None:
    return _client


def report(
    exception: BaseException,
    params: Mapping[str, Any] | None = None,
    session: Mapping[str, Any] | None = None,
    *,
    level: str = "error",
    tb: TracebackType | None = None,
) -> bool:
    """Report the given exception through the process-wide client.

    ``params`` and ``session`` are sent as custom metadata. Returns False when
    the report was dropped, either because no client is running or because
    the reporter is overloaded.
    """
    if not isinstance(exception, BaseException):
        raise TypeError(f"expected an exception, got: {exception!r}")
    client = _client
    if client is None:
        logger.warning("(Airbax) trying to report an exception but airbax has not been started")
        return False
    return client.report(exception, params, session, level=level, tb=tb)
