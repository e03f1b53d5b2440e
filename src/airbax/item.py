"""Airbrake notice composition.

A :class:`Draft` holds the parts of a notice that never change for the
lifetime of a client (environment, notifier identity, host context). Each
report is merged into the draft by :func:`compose`, which is a pure function.
"""

from __future__ import annotations

import json
import platform
import socket
import traceback
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any

from .events import ReportEvent

NOTIFIER_NAME = "Airbax"
NOTIFIER_URL = "https://pypi.org/project/airbax/"


@dataclass(frozen=True)
class Notifier:
    name: str
    version: str
    url: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "version": self.version, "url": self.url}


@dataclass(frozen=True)
class Draft:
    """Static notice fields built once at client construction."""

    environment: str
    notifier: Notifier
    hostname: str = ""
    language: str = ""
    extra_context: Mapping[str, Any] = field(default_factory=dict)

    def context(self, severity: str) -> dict[str, Any]:
        context: dict[str, Any] = dict(self.extra_context)
        context.update(
            {
                "environment": self.environment,
                "severity": severity,
                "notifier": self.notifier.to_dict(),
                "hostname": self.hostname,
                "language": self.language,
            }
        )
        return context


def draft(environment: str, **extra_context: Any) -> Draft:
    from . import __version__

    return Draft(
        environment=environment,
        notifier=Notifier(name=NOTIFIER_NAME, version=__version__, url=NOTIFIER_URL),
        hostname=socket.gethostname(),
        language=f"Python/{platform.python_version()}",
        extra_context=extra_context,
    )


def compose(draft: Draft, event: ReportEvent) -> dict[str, Any]:
    """Merge one report event into the draft, returning the notice document."""

    return {
        "errors": [_error_entry(event.body)],
        "context": draft.context(event.level),
        "environment": {},
        "params": dict(event.params),
        "session": dict(event.session),
    }


def _error_entry(body: Any) -> dict[str, Any]:
    if isinstance(body, Mapping):
        return dict(body)
    return {"type": type(body).__name__, "message": str(body), "backtrace": []}


def encode(notice: Mapping[str, Any]) -> bytes:
    return json.dumps(notice, default=repr, ensure_ascii=False).encode("utf-8")


def exception_to_body(exception: BaseException, tb: TracebackType | None = None) -> dict[str, Any]:
    """Describe an exception as an Airbrake error entry."""

    if not isinstance(exception, BaseException):
        raise TypeError(f"expected an exception, got: {exception!r}")

    frames = traceback.extract_tb(tb if tb is not None else exception.__traceback__)
    # Airbrake lists the innermost frame first.
    backtrace = [
        {"file": frame.filename, "line": frame.lineno, "function": frame.name}
        for frame in reversed(frames)
    ]
    return {
        "type": _qualified_name(type(exception)),
        "message": str(exception),
        "backtrace": backtrace,
    }


def _qualified_name(exc_type: type[BaseException]) -> str:
    if exc_type.__module__ == "builtins":
        return exc_type.__qualname__
    return f"{exc_type.__module__}.{exc_type.__qualname__}"


def is_ignored(exception: BaseException, ignore: Sequence[str] | str) -> bool:
    """Whether the exception type, or one of its bases, is listed in ``ignore``."""

    if ignore == "all":
        return True
    if not ignore:
        return False
    names = set(ignore)
    return any(_qualified_name(cls) in names for cls in type(exception).__mro__ if issubclass(cls, BaseException))
