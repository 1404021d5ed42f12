from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

NO_EXPIRATION: Optional[float] = None


class EntryKind(str, Enum):
    """Kind of object stored under an address; an account and its contract view never collide."""
    ACCOUNT = "account"
    CONTRACT = "contract"


@dataclass
class _Entry:
    value: Any
    expires_at: Optional[float]

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class ObjectCache:
    """
    In-memory key/value store with per-entry expiry.

    `ttl=None` stores an entry without expiration. Expired entries are dropped on read.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[Hashable, _Entry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._purge(self._clock())
            return len(self._entries)

    def _purge(self, now: float) -> None:
        for key in [k for k, e in self._entries.items() if e.expired(now)]:
            del self._entries[key]

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        return None if ttl is None else self._clock() + ttl

    def get(self, key: Hashable) -> Tuple[Any, bool]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None, False
            if entry.expired(self._clock()):
                del self._entries[key]
                return None, False
            return entry.value, True

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = NO_EXPIRATION) -> None:
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._expiry(ttl))

    def get_or_set(self, key: Hashable, value: Any, ttl: Optional[float] = NO_EXPIRATION) -> Any:
        """Store `value` unless a live entry exists; return whichever value is cached."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.expired(self._clock()):
                return entry.value
            self._entries[key] = _Entry(value=value, expires_at=self._expiry(ttl))
            return value

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
