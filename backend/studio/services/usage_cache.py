"""Time-bounded cache for usage snapshots."""

import time
from typing import Any, Callable


class UsageCache:
    """In-memory key/value cache with per-entry expiry.

    Args:
        clock: Monotonic time source in seconds (tests pass a fake clock)
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._entries[key] = (value, self._clock() + ttl)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)
