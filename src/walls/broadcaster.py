"""
In-process narration bus for the live activity feed.

Each listener owns a bounded buffer. `publish` appends to every buffer and
returns immediately; when a buffer is full the oldest message in it is dropped
(and counted), so a listener that stops reading never blocks the publisher or
any other listener.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 500

_LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


@dataclass(frozen=True)
class Narration:
    id: int
    timestamp: str
    level: str
    pair: str | None
    step: str | None
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "level": self.level,
            "pair": self.pair,
            "step": self.step,
            "message": self.message,
        }


class Subscription:
    """Listener handle returned by EventBroadcaster.subscribe()."""

    def __init__(self, maxlen: int) -> None:
        self.maxlen = int(maxlen)
        self.dropped = 0
        self._buf: deque[Narration] = deque()
        self._cond = threading.Condition()
        self.closed = False

    def _offer(self, msg: Narration) -> None:
        with self._cond:
            if self.closed:
                return
            if len(self._buf) >= self.maxlen:
                self._buf.popleft()
                self.dropped += 1
            self._buf.append(msg)
            self._cond.notify_all()

    def drain(self) -> list[Narration]:
        with self._cond:
            out = list(self._buf)
            self._buf.clear()
            return out

    def get(self, timeout: float | None = None) -> Narration | None:
        """Next message, waiting up to `timeout` seconds. None on timeout or when closed and empty."""
        with self._cond:
            if not self._buf and not self.closed:
                self._cond.wait(timeout=timeout)
            if self._buf:
                return self._buf.popleft()
            return None

    def pending(self) -> int:
        with self._cond:
            return len(self._buf)

    def close(self) -> None:
        with self._cond:
            self.closed = True
            self._cond.notify_all()


class EventBroadcaster:
    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE, *, log: logging.Logger | None = None) -> None:
        if int(buffer_size) <= 0:
            raise ValueError("buffer_size must be > 0")
        self.buffer_size = int(buffer_size)
        self._log = log or logger
        self._lock = threading.Lock()
        self._subscribers: list[Subscription] = []
        self._ids = itertools.count(1)

    def subscribe(self, maxlen: int | None = None) -> Subscription:
        sub = Subscription(maxlen or self.buffer_size)
        with self._lock:
            self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> bool:
        sub.close()
        with self._lock:
            try:
                self._subscribers.remove(sub)
                return True
            except ValueError:
                return False

    def listener_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, level: str, message: str, *, pair: str | None = None, step: str | None = None) -> Narration:
        level = str(level).upper()
        with self._lock:
            msg = Narration(
                id=next(self._ids),
                timestamp=datetime.now(timezone.utc).isoformat(),
                level=level,
                pair=pair,
                step=step,
                message=str(message),
            )
            targets = list(self._subscribers)

        prefix = f"[{pair}] " if pair else ""
        self._log.log(_LOG_LEVELS.get(level, logging.INFO), "%s%s", prefix, msg.message)

        for sub in targets:
            sub._offer(msg)
        return msg
