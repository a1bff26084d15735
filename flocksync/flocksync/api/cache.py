from __future__ import annotations

import time
from typing import Any, Callable, Dict, Tuple

SEARCH_TTL_SECONDS = 5 * 60


class TTLCache:
    """Small in-memory cache whose entries expire after ``ttl`` seconds."""

    def __init__(
        self, ttl: float = SEARCH_TTL_SECONDS, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._purge()
        self._entries[key] = (self._clock(), value)

    def _purge(self) -> None:
        now = self._clock()
        for key, (stored_at, _) in list(self._entries.items()):
            if now - stored_at >= self.ttl:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)
