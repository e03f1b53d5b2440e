from __future__ import annotations

import asyncio
import json
import threading
import time
from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest
from loguru import logger

from airbax.client import Client
from airbax.config import Mode

PROJECT_KEY = "project_key"
PROJECT_ID = "project_id"
BASE_URL = "http://localhost:4004"


class LogCapture:
    """Collect loguru records emitted while a test runs."""

    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []

    def sink(self, message: Any) -> None:
        record = message.record
        self.records.append({"level": record["level"].name, "message": record["message"]})

    def messages(self, level: str | None = None) -> list[str]:
        return [r["message"] for r in list(self.records) if level is None or r["level"] == level]

    def text(self) -> str:
        return "\n".join(f"[{r['level'].lower()}] {r['message']}" for r in list(self.records))


@pytest.fixture
def logs() -> Iterator[LogCapture]:
    capture = LogCapture()
    handler_id = logger.add(capture.sink, level="DEBUG", format="{message}")
    yield capture
    logger.remove(handler_id)


class FakeNoticesAPI:
    """In-process stand-in for the Airbrake notices endpoint."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._cond = threading.Condition()

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in list(self.requests)]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        with self._cond:
            self.requests.append(request)
            self._cond.notify_all()

        if request.method != "POST":
            return httpx.Response(404, text="Not Found")

        params = json.loads(request.content).get("params", {})
        sleep = params.get("sleep")
        if isinstance(sleep, (int, float)) and sleep > 0:
            await asyncio.sleep(sleep)
        if params.get("return_error?"):
            return httpx.Response(400, content=b'{"err": 1, "message": "that was a bad request"}')
        return httpx.Response(201, content=b"{}")

    def wait_for(self, count: int, timeout: float = 2.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: len(self.requests) >= count, timeout=timeout)


@pytest.fixture
def api() -> FakeNoticesAPI:
    return FakeNoticesAPI()


@pytest.fixture
def make_client() -> Iterator[Callable[..., Client]]:
    clients: list[Client] = []

    def _make(
        transport: httpx.AsyncBaseTransport | None = None,
        *,
        mode: Mode = Mode.ENABLED,
        start: bool = True,
        **kwargs: Any,
    ) -> Client:
        client = Client(PROJECT_KEY, PROJECT_ID, "test", mode=mode, url=BASE_URL, transport=transport, **kwargs)
        clients.append(client)
        if start:
            client.start()
        return client

    yield _make
    for client in clients:
        client.stop(timeout=0.5)


def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    return _wait_until
