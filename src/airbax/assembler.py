"""Per-exchange response reassembly and outcome classification."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from loguru import logger

from .errors import ExchangeStateError

EXPECTED_STATUS = 201


class ExchangeState(StrEnum):
    AWAITING_STATUS = "awaiting_status"
    AWAITING_HEADERS = "awaiting_headers"
    STREAMING = "streaming"
    TERMINAL = "terminal"


class Outcome(StrEnum):
    SUCCESS = "success"
    API_ERROR = "api_error"
    MALFORMED_BODY = "malformed_body"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class Exchange:
    """Bookkeeping for one in-flight report and its streamed response."""

    handle: int
    state: ExchangeState = ExchangeState.AWAITING_STATUS
    status: int | None = None
    chunks: list[bytes] = field(default_factory=list)
    outcome: Outcome | None = None
    response: Any = None

    @property
    def finished(self) -> bool:
        return self.state is ExchangeState.TERMINAL


class ResponseAssembler:
    """Drive one :class:`Exchange` through its response events.

    Non-terminal events return ``None``; ``done`` and ``fail`` return the
    final :class:`Outcome`.
    """

    def __init__(self, exchange: Exchange) -> None:
        self.exchange = exchange

    def on_status(self, code: int, reason: str = "") -> None:
        self._ensure_open("status")
        if code != EXPECTED_STATUS:
            logger.error("(Airbax) unexpected API status: {}/{}", code, reason)
        self.exchange.status = code
        self.exchange.chunks = []
        self.exchange.state = ExchangeState.AWAITING_HEADERS

    def on_headers(self, headers: list[tuple[str, str]]) -> None:
        self._ensure_open("headers")
        logger.debug("(Airbax) API headers: {!r}", headers)
        self.exchange.state = ExchangeState.STREAMING

    def on_chunk(self, chunk: bytes) -> None:
        self._ensure_open("chunk")
        self.exchange.chunks.append(chunk)

    def on_done(self) -> Outcome:
        self._ensure_open("done")
        body = b"".join(self.exchange.chunks)
        try:
            response = json.loads(body)
        except (ValueError, RecursionError):
            logger.error("(Airbax) API returned malformed JSON: {!r}", body.decode("utf-8", errors="replace"))
            return self._finish(Outcome.MALFORMED_BODY)

        self.exchange.response = response
        if isinstance(response, dict) and response.get("err") == 1 and isinstance(response.get("message"), str):
            logger.error("(Airbax) API returned an error: {!r}", response["message"])
            return self._finish(Outcome.API_ERROR)

        logger.debug("(Airbax) API response: {!r}", response)
        return self._finish(Outcome.SUCCESS)

    def on_error(self, error: BaseException) -> Outcome:
        self._ensure_open("error")
        logger.error("(Airbax) connection error: {!r}", error)
        self.exchange.chunks = []
        return self._finish(Outcome.TRANSPORT_ERROR)

    def _finish(self, outcome: Outcome) -> Outcome:
        self.exchange.state = ExchangeState.TERMINAL
        self.exchange.outcome = outcome
        return outcome

    def _ensure_open(self, event: str) -> None:
        if self.exchange.finished:
            raise ExchangeStateError(f"exchange {self.exchange.handle} received {event} after completion")
