"""Messages exchanged with the dispatcher worker."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, TypeAlias


@dataclass(frozen=True)
class ReportEvent:
    """One exception report waiting to be composed and sent."""

    level: str
    body: Any
    params: Mapping[str, Any] = field(default_factory=dict)
    session: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusReceived:
    handle: int
    code: int
    reason: str = ""


@dataclass(frozen=True)
class HeadersReceived:
    handle: int
    headers: list[tuple[str, str]]


@dataclass(frozen=True)
class ChunkReceived:
    handle: int
    chunk: bytes


@dataclass(frozen=True)
class ResponseDone:
    handle: int


@dataclass(frozen=True)
class TransportFailed:
    handle: int
    error: BaseException


@dataclass(frozen=True)
class Stop:
    """Ask the worker to finish outstanding bookkeeping and exit."""


ResponseEvent: TypeAlias = StatusReceived | HeadersReceived | ChunkReceived | ResponseDone | TransportFailed
