from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List

from .exceptions import RateLimitedError
from .schemas import FriendRequestEvent, InviteEvent

logger = logging.getLogger(__name__)

TOAST_DURATION = 2.0


@dataclass
class Toast:
    text: str
    handle: asyncio.TimerHandle | None = field(default=None, repr=False)


class ToastQueue:
    """Transient user-facing notices that dismiss themselves."""

    def __init__(self, duration: float = TOAST_DURATION) -> None:
        self.duration = duration
        self._toasts: List[Toast] = []

    def show(self, text: str) -> Toast:
        toast = Toast(text)
        self._toasts.append(toast)
        logger.info("toast %s", text)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return toast
        toast.handle = loop.call_later(self.duration, self.dismiss, toast)
        return toast

    def show_error(self, exc: Exception) -> Toast:
        if is_rate_limited(exc):
            return self.show("Too many requests. Please wait a moment.")
        return self.show(getattr(exc, "message", None) or str(exc) or "Something went wrong")

    def dismiss(self, toast: Toast) -> None:
        if toast.handle is not None:
            toast.handle.cancel()
            toast.handle = None
        if toast in self._toasts:
            self._toasts.remove(toast)

    def visible(self) -> List[str]:
        return [t.text for t in self._toasts]

    def clear(self) -> None:
        for toast in list(self._toasts):
            self.dismiss(toast)


def is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitedError):
        return True
    return getattr(exc, "status", None) == 429


@dataclass
class Inbox:
    """Pending invites and friend requests plus the responses to ours."""

    invites: List[InviteEvent] = field(default_factory=list)
    invite_responses: List[InviteEvent] = field(default_factory=list)
    friend_requests: List[FriendRequestEvent] = field(default_factory=list)
    friend_responses: List[FriendRequestEvent] = field(default_factory=list)

    def add_invite(self, event: InviteEvent) -> bool:
        if any(i.flock_id == event.flock_id for i in self.invites):
            return False
        self.invites.append(event)
        return True

    def resolve_invite(self, flock_id) -> InviteEvent | None:
        fid = str(flock_id)
        for invite in self.invites:
            if invite.flock_id == fid:
                self.invites.remove(invite)
                return invite
        return None

    def add_friend_request(self, event: FriendRequestEvent) -> bool:
        if any(r.from_user_id == event.from_user_id for r in self.friend_requests):
            return False
        self.friend_requests.append(event)
        return True

    def resolve_friend_request(self, from_user_id) -> FriendRequestEvent | None:
        uid = str(from_user_id)
        for request in self.friend_requests:
            if request.from_user_id == uid:
                self.friend_requests.remove(request)
                return request
        return None
