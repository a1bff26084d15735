from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict

from ..store.conversations import ConversationRef

logger = logging.getLogger(__name__)

LOCATION_INTERVAL = 10.0


@dataclass
class Position:
    lat: float
    lng: float


class LocationBroadcaster:
    """Periodically publishes the local position for conversations that share it."""

    def __init__(
        self,
        emit_position: Callable[[ConversationRef, Position], None],
        emit_stopped: Callable[[ConversationRef], None],
        interval: float = LOCATION_INTERVAL,
    ) -> None:
        self._emit_position = emit_position
        self._emit_stopped = emit_stopped
        self.interval = interval
        self.position: Position | None = None
        self._tasks: Dict[ConversationRef, asyncio.Task] = {}

    def update_position(self, position: Position | None) -> None:
        self.position = position

    def is_sharing(self, ref: ConversationRef) -> bool:
        return ref in self._tasks

    def sharing(self) -> list[ConversationRef]:
        return list(self._tasks)

    def start(self, ref: ConversationRef) -> bool:
        """Begin broadcasting for ``ref``; ``False`` without a known position."""
        if self.position is None:
            logger.info("Cannot share location for %s: position unknown", ref)
            return False
        if ref in self._tasks:
            return True
        self._emit_position(ref, self.position)
        self._tasks[ref] = asyncio.get_running_loop().create_task(self._loop(ref))
        logger.info("Location sharing started for %s", ref)
        return True

    async def _loop(self, ref: ConversationRef) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self.position is not None:
                self._emit_position(ref, self.position)

    def stop(self, ref: ConversationRef) -> bool:
        task = self._tasks.pop(ref, None)
        if task is None:
            return False
        task.cancel()
        self._emit_stopped(ref)
        logger.info("Location sharing stopped for %s", ref)
        return True

    def stop_all(self) -> None:
        for ref in list(self._tasks):
            self.stop(ref)
