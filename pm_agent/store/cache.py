"""Keyed store contract, in-memory implementation, and the write-behind retry queue."""

from __future__ import annotations

import fnmatch
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, Any], None]


class KeyValueStore(Protocol):
    """Opaque keyed store with pattern invalidation and publish/subscribe."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def invalidate(self, pattern: str) -> int: ...

    def publish(self, channel: str, message: Any) -> None: ...

    def subscribe(self, channel: str, handler: Subscriber) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store used by tests and single-process deployments."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._values: dict[str, tuple[Any, float | None]] = {}
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._lock = threading.RLock()
        self.published: list[tuple[str, Any]] = []

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._values.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                del self._values[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        expires_at = self._clock() + ttl_s if ttl_s else None
        with self._lock:
            self._values[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def invalidate(self, pattern: str) -> int:
        with self._lock:
            matched = [key for key in self._values if fnmatch.fnmatchcase(key, pattern)]
            for key in matched:
                del self._values[key]
            return len(matched)

    def publish(self, channel: str, message: Any) -> None:
        with self._lock:
            self.published.append((channel, message))
            handlers = list(self._subscribers.get(channel, []))
        for handler in handlers:
            handler(channel, message)

    def subscribe(self, channel: str, handler: Subscriber) -> None:
        with self._lock:
            self._subscribers.setdefault(channel, []).append(handler)


@dataclass
class QueuedWrite:
    description: str
    operation: Callable[[], Any]


class WriteBehindQueue:
    """Bounded queue of cache writes retried off the caller's path.

    When full, the oldest queued write is dropped with a warning. A write that
    fails ``max_attempts`` times is logged at error level and discarded.
    """

    def __init__(
        self,
        max_size: int = 1000,
        max_attempts: int = 3,
        retry_delay_s: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_s = retry_delay_s
        self._sleep = sleep
        self._entries: deque[QueuedWrite] = deque()
        self._cond = threading.Condition()
        self._worker: threading.Thread | None = None
        self._stopping = False
        self.dropped = 0
        self.failed: list[str] = []

    def __len__(self) -> int:
        with self._cond:
            return len(self._entries)

    def submit(self, description: str, operation: Callable[[], Any]) -> None:
        with self._cond:
            if len(self._entries) >= self.max_size:
                oldest = self._entries.popleft()
                self.dropped += 1
                logger.warning("Write queue full; dropping oldest write: %s", oldest.description)
            self._entries.append(QueuedWrite(description=description, operation=operation))
            self._cond.notify()

    def _run_with_retry(self, entry: QueuedWrite) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                entry.operation()
                return True
            except Exception as exc:
                if attempt == self.max_attempts:
                    logger.error(
                        "Write failed after %d attempts: %s (%s)",
                        attempt,
                        entry.description,
                        exc,
                    )
                    self.failed.append(entry.description)
                    return False
                logger.debug("Retrying write %s after error: %s", entry.description, exc)
                self._sleep(self.retry_delay_s * (2 ** (attempt - 1)))
        return False

    def _pop(self) -> QueuedWrite | None:
        with self._cond:
            if not self._entries:
                return None
            return self._entries.popleft()

    def drain(self) -> int:
        """Process every queued write on the calling thread; returns successes."""

        succeeded = 0
        while True:
            entry = self._pop()
            if entry is None:
                return succeeded
            if self._run_with_retry(entry):
                succeeded += 1

    def _worker_loop(self) -> None:
        while True:
            with self._cond:
                while not self._entries and not self._stopping:
                    self._cond.wait()
                if self._stopping and not self._entries:
                    return
            self.drain()

    def start(self) -> None:
        if self._worker is not None:
            return
        self._stopping = False
        self._worker = threading.Thread(
            target=self._worker_loop, name="pm-agent-write-behind", daemon=True
        )
        self._worker.start()

    def stop(self, timeout_s: float = 5.0) -> None:
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
        if self._worker is not None:
            self._worker.join(timeout=timeout_s)
            self._worker = None
