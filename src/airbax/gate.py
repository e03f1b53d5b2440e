"""Bounded admission for in-flight reports."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from .errors import GateReleaseError, InvalidSettingError


class Admission:
    """Result of one admission attempt inside :meth:`AdmissionGate.admitted`."""

    def __init__(self, admitted: bool) -> None:
        self.admitted = admitted
        self._detached = False

    def __bool__(self) -> bool:
        return self.admitted

    def detach(self) -> None:
        """Hand the slot over to whoever will release it later."""
        self._detached = True

    @property
    def detached(self) -> bool:
        return self._detached


class AdmissionGate:
    """Drop-on-overload limiter shared by caller threads and the dispatcher.

    ``try_admit`` never blocks: it either takes a slot or reports the gate as
    full. Every successful admission must be paired with exactly one
    ``release``.
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise InvalidSettingError(f"admission limit must be at least 1, got {limit}")
        self._limit = limit
        self._count = 0
        self._cond = threading.Condition()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_flight(self) -> int:
        with self._cond:
            return self._count

    def try_admit(self) -> bool:
        with self._cond:
            if self._count >= self._limit:
                return False
            self._count += 1
            return True

    def release(self) -> None:
        with self._cond:
            if self._count == 0:
                raise GateReleaseError("release() called without a matching admission")
            self._count -= 1
            if self._count == 0:
                self._cond.notify_all()

    @contextmanager
    def admitted(self) -> Iterator[Admission]:
        """Admit for the duration of the block unless the slot is detached."""
        admission = Admission(self.try_admit())
        try:
            yield admission
        finally:
            if admission.admitted and not admission.detached:
                self.release()

    def wait_idle(self, timeout: float | None = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout=timeout)
