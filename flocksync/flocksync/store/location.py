from __future__ import annotations

import time
from typing import Dict, List

from ..schemas import LocationUpdate


class LocationCache:
    """Last known position per user for one conversation.

    Entries are replaced wholesale by the next update for the same user and are
    only removed by an explicit stop event; age is for display only.
    """

    def __init__(self) -> None:
        self._positions: Dict[str, LocationUpdate] = {}

    def upsert(self, update: LocationUpdate) -> None:
        self._positions[update.user_id] = update

    def remove(self, user_id) -> bool:
        return self._positions.pop(str(user_id), None) is not None

    def clear(self) -> None:
        self._positions.clear()

    def get(self, user_id) -> LocationUpdate | None:
        return self._positions.get(str(user_id))

    def all(self) -> List[LocationUpdate]:
        return list(self._positions.values())

    def __contains__(self, user_id) -> bool:
        return str(user_id) in self._positions

    def __len__(self) -> int:
        return len(self._positions)


def now_ms() -> int:
    return int(time.time() * 1000)


def format_age(timestamp_ms: int, now: int | None = None) -> str:
    now = now_ms() if now is None else now
    seconds = max(now - timestamp_ms, 0) // 1000
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    return f"{minutes // 60}h ago"
