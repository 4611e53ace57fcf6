"""Hand-off of decoded events from a syncing thread to a consumer."""

from __future__ import annotations

import math
import threading
from collections import deque
from datetime import datetime
from typing import Any

EVENT_CAPACITY = 10240
ERROR_CAPACITY = 4


class NeedSyncAgainError(Exception):
    """The stream already failed or was closed; a new sync is needed."""

    def __init__(self, message: str = "Last sync error or closed, try sync and get event again"):
        super().__init__(message)


class SyncClosedError(Exception):
    """The sync was closed."""

    def __init__(self, message: str = "Sync was closed"):
        super().__init__(message)


class BinlogStreamer:
    """A bounded queue of binlog events that ends with an error."""

    def __init__(self, capacity: int = EVENT_CAPACITY, error_capacity: int = ERROR_CAPACITY):
        self._capacity = capacity
        self._error_capacity = error_capacity
        self._events: deque[Any] = deque()
        self._errors: deque[BaseException] = deque()
        self._cond = threading.Condition()
        self._err: BaseException | None = None

    def put(self, event: Any) -> None:
        """Queue an event, blocking while the queue is full."""
        with self._cond:
            self._cond.wait_for(lambda: len(self._events) < self._capacity)
            self._events.append(event)
            self._cond.notify_all()

    def _next(self, timeout: float | None) -> Any:
        with self._cond:
            if self._err is not None:
                raise NeedSyncAgainError()
            if not self._cond.wait_for(lambda: self._events or self._errors, timeout):
                raise TimeoutError("no binlog event before the timeout")
            if self._events:
                event = self._events.popleft()
                self._cond.notify_all()
                return event
            self._err = self._errors.popleft()
            raise self._err

    def get_event(self, timeout: float | None = None) -> Any:
        """Return the next event, or raise the error that ended the stream.

        Raises ``TimeoutError`` if nothing arrives within ``timeout`` seconds.
        """
        return self._next(timeout)

    def get_event_with_start_time(self, start_time: datetime, timeout: float | None = None) -> Any:
        """Return the next event if it is not older than ``start_time``, else ``None``."""
        start_unix = math.floor(start_time.timestamp())
        event = self._next(timeout)
        if event.header.timestamp >= start_unix:
            return event
        return None

    def dump_events(self) -> list[Any]:
        """Remove and return every event still queued."""
        with self._cond:
            events = list(self._events)
            self._events.clear()
            self._cond.notify_all()
            return events

    def close(self, error: BaseException | None = None) -> None:
        """End the stream with ``error``, or with ``SyncClosedError`` if none is given."""
        if error is None:
            error = SyncClosedError()
        with self._cond:
            if len(self._errors) < self._error_capacity:
                self._errors.append(error)
                self._cond.notify_all()