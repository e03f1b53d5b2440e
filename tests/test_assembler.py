from __future__ import annotations

import httpx
import pytest

from airbax.assembler import Exchange, ExchangeState, Outcome, ResponseAssembler
from airbax.errors import ExchangeStateError


def _respond(status: int, *chunks: bytes) -> tuple[Exchange, Outcome]:
    exchange = Exchange(handle=1)
    assembler = ResponseAssembler(exchange)
    assembler.on_status(status, "reason")
    assembler.on_headers([("content-type", "application/json")])
    for chunk in chunks:
        assembler.on_chunk(chunk)
    return exchange, assembler.on_done()


def test_state_transitions() -> None:
    exchange = Exchange(handle=7)
    assembler = ResponseAssembler(exchange)
    assert exchange.state is ExchangeState.AWAITING_STATUS

    assembler.on_status(201, "Created")
    assert exchange.state is ExchangeState.AWAITING_HEADERS
    assert exchange.status == 201

    assembler.on_headers([])
    assert exchange.state is ExchangeState.STREAMING

    assembler.on_chunk(b"{}")
    assert assembler.on_done() is Outcome.SUCCESS
    assert exchange.finished


def test_success_logs_no_error(logs) -> None:
    exchange, outcome = _respond(201, b'{"id": "abc"}')

    assert outcome is Outcome.SUCCESS
    assert exchange.response == {"id": "abc"}
    assert logs.messages("ERROR") == []
    assert any("API response" in message for message in logs.messages("DEBUG"))


def test_chunks_are_joined_in_order() -> None:
    split, _ = _respond(201, b'{"a":', b"1}")
    whole, _ = _respond(201, b'{"a":1}')

    assert split.response == whole.response == {"a": 1}


def test_api_error_logs_status_and_message(logs) -> None:
    _, outcome = _respond(400, b'{"err":1,', b'"message":"bad request"}')

    assert outcome is Outcome.API_ERROR
    errors = logs.messages("ERROR")
    assert any("unexpected API status: 400" in message for message in errors)
    assert any("bad request" in message for message in errors)


def test_unexpected_status_with_plain_body_still_succeeds(logs) -> None:
    _, outcome = _respond(200, b'{"id": 1}')

    assert outcome is Outcome.SUCCESS
    assert len(logs.messages("ERROR")) == 1


def test_error_marker_needs_string_message() -> None:
    _, outcome = _respond(201, b'{"err": 1, "message": 42}')
    assert outcome is Outcome.SUCCESS


@pytest.mark.parametrize("body", [b"not json", b"", b"\xff\xfe"])
def test_malformed_body(logs, body: bytes) -> None:
    _, outcome = _respond(201, body)

    assert outcome is Outcome.MALFORMED_BODY
    assert any("malformed JSON" in message for message in logs.messages("ERROR"))


def test_malformed_body_logs_raw_text(logs) -> None:
    _respond(502, b"<html>Bad Gateway</html>")
    assert any("<html>Bad Gateway</html>" in message for message in logs.messages("ERROR"))


def test_transport_error_before_status(logs) -> None:
    exchange = Exchange(handle=3)
    outcome = ResponseAssembler(exchange).on_error(httpx.ConnectError("Connection refused"))

    assert outcome is Outcome.TRANSPORT_ERROR
    errors = logs.messages("ERROR")
    assert len(errors) == 1
    assert "connection error" in errors[0]
    assert "Connection refused" in errors[0]


def test_transport_error_mid_stream_discards_chunks() -> None:
    exchange = Exchange(handle=4)
    assembler = ResponseAssembler(exchange)
    assembler.on_status(201)
    assembler.on_headers([])
    assembler.on_chunk(b'{"partial"')

    assert assembler.on_error(httpx.ReadError("connection reset")) is Outcome.TRANSPORT_ERROR
    assert exchange.chunks == []
    assert exchange.outcome is Outcome.TRANSPORT_ERROR


def test_events_after_completion_are_rejected() -> None:
    exchange, _ = _respond(201, b"{}")
    assembler = ResponseAssembler(exchange)

    with pytest.raises(ExchangeStateError):
        assembler.on_chunk(b"late")
    with pytest.raises(ExchangeStateError):
        assembler.on_error(httpx.ReadError("late"))
