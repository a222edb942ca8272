"""In-process TTL cache shared by every gateway component."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Generic, Iterator, TypeVar

V = TypeVar("V")

Clock = Callable[[], float]


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: float


class ReadWriteLock:
    """Many concurrent readers or a single writer."""

    def __init__(self) -> None:
        self._condition = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._condition:
            while self._writing:
                self._condition.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._condition:
                self._readers -= 1
                if self._readers == 0:
                    self._condition.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._condition:
            while self._writing or self._readers:
                self._condition.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._condition:
                self._writing = False
                self._condition.notify_all()


class TTLCache(Generic[V]):
    """Time-bounded key/value store.

    Expired entries are never evicted in the background; they read as absent
    and are replaced on the next ``set`` for the same key.
    """

    def __init__(self, clock: Clock = time.monotonic):
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}
        self._lock = ReadWriteLock()

    def get(self, key: str) -> V | None:
        """Return the value for ``key`` if it has not expired."""

        with self._lock.read():
            entry = self._entries.get(key)
            if entry is None or self._clock() >= entry.expires_at:
                return None
            return entry.value

    def set(self, key: str, value: V, ttl_seconds: float) -> None:
        with self._lock.write():
            self._entries[key] = CacheEntry(value, self._clock() + ttl_seconds)
