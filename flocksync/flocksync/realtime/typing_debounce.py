from __future__ import annotations

import asyncio
import enum
import logging
from typing import Callable

logger = logging.getLogger(__name__)

TYPING_DEBOUNCE = 2.0


class TypingPhase(enum.Enum):
    IDLE = "idle"
    TYPING = "typing"


class TypingDebouncer:
    """Local typing indicator for one conversation.

    The first keystroke emits ``start``; every keystroke restarts the timer and
    the timer firing emits ``stop``. Sending a message stops immediately.
    """

    def __init__(
        self,
        emit_start: Callable[[], None],
        emit_stop: Callable[[], None],
        delay: float = TYPING_DEBOUNCE,
    ) -> None:
        self._emit_start = emit_start
        self._emit_stop = emit_stop
        self.delay = delay
        self.phase = TypingPhase.IDLE
        self._timer: asyncio.TimerHandle | None = None

    def on_input(self, text: str) -> None:
        if not text:
            if self.phase is TypingPhase.TYPING:
                self._stop()
            return
        if self.phase is TypingPhase.IDLE:
            self.phase = TypingPhase.TYPING
            self._emit_start()
        self._restart_timer()

    def on_send(self) -> None:
        if self.phase is TypingPhase.TYPING:
            self._stop()

    def cancel(self) -> None:
        """Drop the pending timer without emitting."""
        self._cancel_timer()
        self.phase = TypingPhase.IDLE

    def _restart_timer(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.delay, self._on_timeout)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self) -> None:
        self._timer = None
        logger.debug("Typing debounce elapsed")
        self._stop()

    def _stop(self) -> None:
        self._cancel_timer()
        self.phase = TypingPhase.IDLE
        self._emit_stop()
