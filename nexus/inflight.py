"""Admission control allowing one outstanding AI call per identifier."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Set


class InFlightError(RuntimeError):
    """Raised when a call is already outstanding for an identifier."""


class InFlight:
    def __init__(self, label: str) -> None:
        self._label = label
        self._lock = threading.Lock()
        self._active: Set[str] = set()

    def acquire(self, key: str) -> None:
        with self._lock:
            if key in self._active:
                raise InFlightError(f"A {self._label} request for {key} is already in progress")
            self._active.add(key)

    def release(self, key: str) -> None:
        with self._lock:
            self._active.discard(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._active

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        self.acquire(key)
        try:
            yield
        finally:
            self.release(key)
