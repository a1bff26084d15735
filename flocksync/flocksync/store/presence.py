from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List

from ..schemas import Member, TypingState

logger = logging.getLogger(__name__)

REMOTE_TYPING_TIMEOUT = 5.0


class PresenceTracker:
    """Online members and the remote typing indicator for one conversation.

    A ``user_typing`` event arms a timeout that clears the indicator if neither
    a refresh nor ``user_stopped_typing`` arrives, so a dropped stop event
    cannot leave it stuck.
    """

    def __init__(
        self,
        timeout: float = REMOTE_TYPING_TIMEOUT,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self.timeout = timeout
        self.typing = TypingState()
        self.members: Dict[str, Member] = {}
        self._typing_user_id: str | None = None
        self._expiry: asyncio.TimerHandle | None = None
        self._on_change = on_change

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    # ---- typing ----

    def user_typing(self, user_id, name: str) -> None:
        self._typing_user_id = str(user_id)
        self.typing = TypingState(is_typing=True, typing_user_name=name)
        self._arm()
        self._changed()

    def user_stopped_typing(self, user_id=None) -> None:
        if (
            user_id is not None
            and self._typing_user_id is not None
            and str(user_id) != self._typing_user_id
        ):
            return
        self._clear_typing()

    def _arm(self) -> None:
        if self._expiry is not None:
            self._expiry.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._expiry = None
            return
        self._expiry = loop.call_later(self.timeout, self._expire)

    def _expire(self) -> None:
        self._expiry = None
        logger.debug("Typing indicator for %s expired", self._typing_user_id)
        self._clear_typing()

    def _clear_typing(self) -> None:
        if self._expiry is not None:
            self._expiry.cancel()
            self._expiry = None
        was_typing = self.typing.is_typing
        self._typing_user_id = None
        self.typing = TypingState()
        if was_typing:
            self._changed()

    # ---- room membership ----

    def set_members(self, members: List[Member]) -> None:
        self.members = {m.user_id: m for m in members}
        self._changed()

    def member_joined(self, member: Member) -> None:
        self.members[member.user_id] = member
        self._changed()

    def member_left(self, user_id) -> None:
        uid = str(user_id)
        if self.members.pop(uid, None) is not None:
            self._changed()
        if self._typing_user_id == uid:
            self._clear_typing()

    def online(self) -> List[Member]:
        return list(self.members.values())

    def close(self) -> None:
        if self._expiry is not None:
            self._expiry.cancel()
            self._expiry = None
