import time
from typing import Any, Callable, Dict, Optional, Tuple

from engine.config import TEXT_CACHE


class ParseCache:
    """
    Size-bounded, time-expiring cache keyed by raw text.

    get() drops an expired entry before answering. set() at capacity evicts
    every expired entry first, then the oldest half by insertion time.
    """

    def __init__(
        self,
        max_size: int = TEXT_CACHE["max_size"],
        expiry_seconds: float = TEXT_CACHE["expiry_seconds"],
        enabled: bool = TEXT_CACHE["enabled"],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size
        self.expiry_seconds = expiry_seconds
        self.enabled = enabled
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def _expired(self, stamp: float, now: float) -> bool:
        return now - stamp > self.expiry_seconds

    def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stamp = entry
        if self._expired(stamp, self._clock()):
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any):
        if not self.enabled:
            return
        if len(self._entries) >= self.max_size:
            self._evict()
        self._entries[key] = (value, self._clock())

    def _evict(self):
        now = self._clock()
        # snapshot before mutating
        entries = list(self._entries.items())

        for key, (_, stamp) in entries:
            if self._expired(stamp, now):
                del self._entries[key]

        if len(self._entries) >= self.max_size:
            oldest = sorted(self._entries.items(), key=lambda kv: kv[1][1])
            for key, _ in oldest[: self.max_size // 2]:
                del self._entries[key]

    def clear(self):
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "expiry_seconds": self.expiry_seconds,
            "enabled": self.enabled,
        }
