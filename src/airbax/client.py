"""Reporting dispatcher.

The client keeps a pre-built draft of a notice and fills it with the data of
each reported exception. One background thread runs an asyncio loop that owns
the connection pool and the table of in-flight exchanges; callers on any
thread only touch the admission gate and hand their report over to that loop.
"""

from __future__ import annotations

import asyncio
import itertools
import threading
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Literal

import httpx
from loguru import logger

from . import item
from .assembler import Exchange, Outcome, ResponseAssembler
from .config import DEFAULT_OVERLOAD_THRESHOLD, DEFAULT_POOL_SIZE, DEFAULT_URL, Mode, Settings
from .errors import ClientStateError, InvalidSettingError, MissingSettingError
from .events import (
    ChunkReceived,
    HeadersReceived,
    ReportEvent,
    ResponseDone,
    ResponseEvent,
    StatusReceived,
    Stop,
    TransportFailed,
)
from .gate import AdmissionGate

HEADERS = {"content-type": "application/json"}
DEFAULT_STOP_TIMEOUT = 5.0


def build_url(base_url: str, project_id: str, project_key: str) -> str:
    url = f"{base_url.rstrip('/')}/api/v3/projects/{project_id}/notices?key={project_key}"
    try:
        httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise InvalidSettingError(f"invalid API url {base_url!r}: {exc}") from exc
    return url


@dataclass
class _Tracked:
    exchange: Exchange
    assembler: ResponseAssembler
    task: asyncio.Task[None]


class Client:
    """Fire-and-forget reporter for the Airbrake v3 notices API."""

    def __init__(
        self,
        project_key: str,
        project_id: str,
        environment: str,
        *,
        mode: Mode = Mode.ENABLED,
        url: str = DEFAULT_URL,
        overload_threshold: int = DEFAULT_OVERLOAD_THRESHOLD,
        pool_size: int = DEFAULT_POOL_SIZE,
        proxy: str | None = None,
        ignore: Sequence[str] | Literal["all"] = (),
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        for name, value in (("project_key", project_key), ("project_id", project_id), ("environment", environment)):
            if not value:
                raise MissingSettingError(name)
        if pool_size < 1:
            raise InvalidSettingError(f"pool_size must be at least 1, got {pool_size}")

        self.mode = mode
        self.url = build_url(url, project_id, project_key)
        self.draft = item.draft(environment)
        self.gate = AdmissionGate(overload_threshold)
        self.ignore = ignore if ignore == "all" else tuple(ignore)
        self._pool_size = pool_size
        self._proxy = proxy
        self._transport = transport

        self._lifecycle = threading.Lock()
        self._ready = threading.Event()
        self._accepting = False
        self._startup_error: BaseException | None = None
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._inbox: asyncio.Queue[Any] | None = None
        self._http: httpx.AsyncClient | None = None

        # Owned by the worker thread.
        self._exchanges: dict[int, _Tracked] = {}
        self._handles = itertools.count(1)
        self._outcomes: Counter[Outcome] = Counter()
        self._outcomes_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> Client:
        settings.require()
        return cls(
            settings.project_key or "",
            settings.project_id or "",
            settings.environment or "",
            mode=settings.mode,
            url=settings.url,
            overload_threshold=settings.overload_threshold,
            pool_size=settings.pool_size,
            proxy=settings.proxy,
            ignore=settings.ignore,
            transport=transport,
        )

    @property
    def running(self) -> bool:
        return self._accepting

    def outcomes(self) -> dict[Outcome, int]:
        with self._outcomes_lock:
            return dict(self._outcomes)

    def __enter__(self) -> Client:
        return self.start()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop()

    def start(self) -> Client:
        """Open the connection pool and launch the worker thread."""
        if self.mode is not Mode.ENABLED:
            return self
        with self._lifecycle:
            if self._accepting:
                return self
            self._ready.clear()
            self._startup_error = None
            thread = threading.Thread(target=self._run, name="airbax-dispatcher", daemon=True)
            thread.start()
            self._ready.wait()
            if self._startup_error is not None:
                thread.join()
                raise ClientStateError("could not start the reporting client") from self._startup_error
            self._thread = thread
            self._accepting = True
        return self

    def stop(self, timeout: float | None = DEFAULT_STOP_TIMEOUT) -> None:
        """Stop accepting reports, wait up to ``timeout`` for in-flight ones, then shut down."""
        with self._lifecycle:
            if not self._accepting:
                return
            self._accepting = False
            loop, thread, inbox = self._loop, self._thread, self._inbox

        if not self.gate.wait_idle(timeout):
            logger.warning("(Airbax) stopping with {} reports still in flight", self.gate.in_flight)
        if loop is None or thread is None or inbox is None:
            raise ClientStateError("reporting client is running without a worker")
        loop.call_soon_threadsafe(inbox.put_nowait, Stop())
        thread.join()
        self._thread = None

    def flush(self, timeout: float | None = None) -> bool:
        """Block until no report is in flight; return False on timeout."""
        return self.gate.wait_idle(timeout)

    def report(
        self,
        exception: BaseException,
        params: Mapping[str, Any] | None = None,
        session: Mapping[str, Any] | None = None,
        *,
        level: str = "error",
        tb: TracebackType | None = None,
    ) -> bool:
        """Report an exception in the background.

        Raises ``TypeError`` when ``exception`` is not an exception instance;
        every other failure is logged and never reaches the caller.
        """
        if not isinstance(exception, BaseException):
            raise TypeError(f"expected an exception, got: {exception!r}")
        if item.is_ignored(exception, self.ignore):
            return True
        return self.emit(level, item.exception_to_body(exception, tb), params, session)

    def emit(
        self,
        level: str,
        body: Any,
        params: Mapping[str, Any] | None = None,
        session: Mapping[str, Any] | None = None,
    ) -> bool:
        """Hand one report to the worker without waiting for the HTTP round trip.

        Returns False when the report was dropped.
        """
        event = ReportEvent(level=str(level), body=body, params=params or {}, session=session or {})
        if self.mode is Mode.DISABLED:
            return True
        if self.mode is Mode.LOG:
            logger.info(
                "(Airbax) registered report:\n{!r}\n         Level: {}\n Custom params: {!r}\n  Session data: {!r}",
                event.body,
                event.level,
                event.params,
                event.session,
            )
            return True

        with self._lifecycle:
            if not self._accepting or self._loop is None or self._inbox is None:
                logger.warning("(Airbax) trying to report an exception but the client has not been started")
                return False
            with self.gate.admitted() as admission:
                if not admission:
                    logger.warning("(Airbax) reporting attempted while overloaded")
                    return False
                self._loop.call_soon_threadsafe(self._inbox.put_nowait, event)
                admission.detach()
        return True

    # Worker thread

    def _run(self) -> None:
        asyncio.run(self._serve())

    async def _serve(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._inbox = asyncio.Queue()
        try:
            http = self._build_pool()
        except Exception as exc:
            self._startup_error = exc
            self._ready.set()
            return

        async with http:
            self._http = http
            self._ready.set()
            try:
                await self._consume(self._inbox)
            finally:
                await self._abandon(self._inbox)
                self._http = None

    def _build_pool(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            limits=httpx.Limits(max_connections=self._pool_size),
            timeout=httpx.Timeout(None),
            proxy=self._proxy,
            transport=self._transport,
        )

    async def _consume(self, inbox: asyncio.Queue[Any]) -> None:
        while True:
            message = await inbox.get()
            if isinstance(message, Stop):
                return
            try:
                self._handle(message)
            except Exception:
                logger.opt(exception=True).error("(Airbax) failed to handle message {!r}", message)

    def _post(self, message: Any) -> None:
        if self._inbox is None:
            raise ClientStateError("worker inbox is not available")
        self._inbox.put_nowait(message)

    def _handle(self, message: Any) -> None:
        if isinstance(message, ReportEvent):
            try:
                self._dispatch(message)
            except Exception:
                self.gate.release()
                raise
        elif isinstance(message, (StatusReceived, HeadersReceived, ChunkReceived, ResponseDone, TransportFailed)):
            self._route(message)
        else:
            logger.info("(Airbax) unexpected message: {!r}", message)

    def _dispatch(self, event: ReportEvent) -> None:
        if self._http is None or self._loop is None:
            raise ClientStateError("connection pool is not open")
        try:
            payload = item.encode(item.compose(self.draft, event))
        except ValueError as exc:
            logger.error("(Airbax) could not encode report: {!r}", exc)
            self.gate.release()
            return
        try:
            request = self._http.build_request("POST", self.url, content=payload, headers=HEADERS)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error("(Airbax) connection error: {!r}", exc)
            self.gate.release()
            return

        handle = next(self._handles)
        exchange = Exchange(handle)
        task = self._loop.create_task(self._stream(handle, request), name=f"airbax-exchange-{handle}")
        self._exchanges[handle] = _Tracked(exchange=exchange, assembler=ResponseAssembler(exchange), task=task)

    async def _stream(self, handle: int, request: httpx.Request) -> None:
        if self._http is None:
            self._post(TransportFailed(handle, ClientStateError("connection pool is not open")))
            return
        try:
            response = await self._http.send(request, stream=True)
        except httpx.HTTPError as exc:
            self._post(TransportFailed(handle, exc))
            return
        except Exception as exc:
            logger.opt(exception=True).warning("(Airbax) exchange {} failed before a response", handle)
            self._post(TransportFailed(handle, exc))
            return

        try:
            self._post(StatusReceived(handle, response.status_code, response.reason_phrase))
            self._post(HeadersReceived(handle, response.headers.multi_items()))
            async for chunk in response.aiter_bytes():
                self._post(ChunkReceived(handle, chunk))
            self._post(ResponseDone(handle))
        except httpx.HTTPError as exc:
            self._post(TransportFailed(handle, exc))
        except Exception as exc:
            logger.opt(exception=True).warning("(Airbax) exchange {} failed while streaming", handle)
            self._post(TransportFailed(handle, exc))
        finally:
            await response.aclose()

    def _route(self, message: ResponseEvent) -> None:
        tracked = self._exchanges.get(message.handle)
        if tracked is None:
            logger.info("(Airbax) unexpected message: {!r}", message)
            return

        try:
            outcome = self._advance(tracked.assembler, message)
        except Exception:
            logger.opt(exception=True).error("(Airbax) could not process response for exchange {}", message.handle)
            tracked.task.cancel()
            outcome = Outcome.MALFORMED_BODY

        if outcome is not None:
            del self._exchanges[message.handle]
            with self._outcomes_lock:
                self._outcomes[outcome] += 1
            self.gate.release()

    @staticmethod
    def _advance(assembler: ResponseAssembler, message: ResponseEvent) -> Outcome | None:
        if isinstance(message, StatusReceived):
            assembler.on_status(message.code, message.reason)
        elif isinstance(message, HeadersReceived):
            assembler.on_headers(message.headers)
        elif isinstance(message, ChunkReceived):
            assembler.on_chunk(message.chunk)
        elif isinstance(message, ResponseDone):
            return assembler.on_done()
        else:
            return assembler.on_error(message.error)
        return None

    async def _abandon(self, inbox: asyncio.Queue[Any]) -> None:
        tracked = list(self._exchanges.values())
        self._exchanges.clear()
        for entry in tracked:
            entry.task.cancel()
        if tracked:
            await asyncio.gather(*(entry.task for entry in tracked), return_exceptions=True)
            logger.warning("(Airbax) dropped {} in-flight reports on shutdown", len(tracked))
        for _ in tracked:
            self.gate.release()

        while not inbox.empty():
            if isinstance(inbox.get_nowait(), ReportEvent):
                self.gate.release()
