"""Per-conversation message lists and optimistic-send reconciliation.

Every flock chat and DM thread owns one ordered list of :class:`Message`
objects. Local sends are appended immediately with a ``temp-`` id and are
replaced in place once the server echo arrives, so the list never shows the
same message twice and never reorders on confirmation.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Literal, Tuple

from ..schemas import TEMP_ID_PREFIX, IncomingMessage, Message
from . import reactions as reaction_ops

logger = logging.getLogger(__name__)

ConversationKind = Literal["flock", "dm"]
Listener = Callable[["ConversationRef"], None]


@dataclass(frozen=True)
class ConversationRef:
    kind: ConversationKind
    id: str

    @classmethod
    def flock(cls, flock_id) -> "ConversationRef":
        return cls("flock", str(flock_id))

    @classmethod
    def dm(cls, user_id) -> "ConversationRef":
        return cls("dm", str(user_id))

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


@dataclass
class Conversation:
    ref: ConversationRef
    messages: List[Message] = field(default_factory=list)
    last_message: str | None = None
    last_message_time: str | None = None
    unread: int = 0

    def index_of(self, message_id) -> int | None:
        mid = str(message_id)
        for idx, msg in enumerate(self.messages):
            if msg.id == mid:
                return idx
        return None


def new_temp_id(now: float | None = None) -> str:
    millis = int((time.time() if now is None else now) * 1000)
    return f"{TEMP_ID_PREFIX}{millis}"


def new_client_id() -> str:
    return uuid.uuid4().hex


def preview_text(msg: Message) -> str:
    if msg.message_type == "venue_card" and msg.venue_data is not None:
        return f"📍 {msg.venue_data.name}"
    if msg.message_type == "image":
        return "📷 Photo"
    return msg.text


class ConversationStore:
    def __init__(self, local_user_id) -> None:
        self.local_user_id = str(local_user_id)
        self._conversations: Dict[ConversationRef, Conversation] = {}
        self._active: ConversationRef | None = None
        self._listeners: List[Listener] = []

    # ---- access ----

    def get(self, ref: ConversationRef) -> Conversation:
        conv = self._conversations.get(ref)
        if conv is None:
            conv = Conversation(ref)
            self._conversations[ref] = conv
        return conv

    def messages(self, ref: ConversationRef) -> List[Message]:
        return list(self.get(ref).messages)

    def preview(self, ref: ConversationRef) -> Tuple[str | None, str | None, int]:
        conv = self.get(ref)
        return conv.last_message, conv.last_message_time, conv.unread

    def conversations(self) -> List[Conversation]:
        return list(self._conversations.values())

    def find_message(self, ref: ConversationRef, message_id) -> Message | None:
        conv = self.get(ref)
        idx = conv.index_of(message_id)
        return None if idx is None else conv.messages[idx]

    @property
    def active(self) -> ConversationRef | None:
        return self._active

    def set_active(self, ref: ConversationRef | None) -> None:
        self._active = ref
        if ref is not None:
            self.mark_read(ref)

    def mark_read(self, ref: ConversationRef) -> None:
        conv = self.get(ref)
        if conv.unread:
            conv.unread = 0
            self.notify(ref)

    def drop(self, ref: ConversationRef) -> None:
        self._conversations.pop(ref, None)
        if self._active == ref:
            self._active = None
        self.notify(ref)

    # ---- change listeners ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, ref: ConversationRef) -> None:
        for listener in list(self._listeners):
            try:
                listener(ref)
            except Exception:
                logger.exception("Conversation listener failed for %s", ref)

    # ---- writes ----

    def append_optimistic(self, ref: ConversationRef, draft: Message) -> Message:
        conv = self.get(ref)
        conv.messages.append(draft)
        conv.last_message = preview_text(draft)
        conv.last_message_time = draft.time
        logger.debug("Optimistic append %s id=%s", ref, draft.id)
        self.notify(ref)
        return draft

    def reconcile_incoming(
        self, ref: ConversationRef, incoming: IncomingMessage
    ) -> Message | None:
        """Merge a server-delivered message into ``ref``.

        Returns the stored message, or ``None`` when the event was a duplicate.
        """
        conv = self.get(ref)
        msg = incoming.to_message()
        own = incoming.sender_id == self.local_user_id

        if own:
            idx = self._match_pending(conv, incoming)
            if idx is not None:
                pending = conv.messages[idx]
                if conv.index_of(msg.id) is not None:
                    # Already delivered through history; the temp entry is stale.
                    del conv.messages[idx]
                else:
                    conv.messages[idx] = msg
                logger.debug("Reconciled %s temp=%s id=%s", ref, pending.id, msg.id)
                self._touch_preview(conv, msg, count_unread=False)
                self.notify(ref)
                return msg

        if conv.index_of(msg.id) is not None:
            logger.debug("Duplicate message %s id=%s", ref, msg.id)
            return None

        conv.messages.append(msg)
        self._touch_preview(conv, msg, count_unread=not own)
        self.notify(ref)
        return msg

    def _match_pending(
        self, conv: Conversation, incoming: IncomingMessage
    ) -> int | None:
        if incoming.client_id:
            for idx, msg in enumerate(conv.messages):
                if msg.is_temp and msg.client_id == incoming.client_id:
                    return idx
            # Carries an idempotency key we never issued: another device.
            return None
        for idx, msg in enumerate(conv.messages):
            if msg.is_temp and msg.text == incoming.message_text:
                return idx
        return None

    def _touch_preview(self, conv: Conversation, msg: Message, count_unread: bool) -> None:
        conv.last_message = preview_text(msg)
        conv.last_message_time = msg.time
        if count_unread and conv.ref != self._active:
            conv.unread += 1

    def load_history(self, ref: ConversationRef, history: Iterable[Message]) -> None:
        """Replace ``ref``'s messages with a REST backfill.

        Temp entries that are still waiting for their echo are kept at the end.
        """
        conv = self.get(ref)
        merged: List[Message] = []
        seen: set[str] = set()
        for msg in history:
            if msg.id in seen:
                continue
            seen.add(msg.id)
            merged.append(msg)
        pending = [m for m in conv.messages if m.is_temp]
        conv.messages = merged + pending
        if merged:
            last = merged[-1]
            conv.last_message = preview_text(last)
            conv.last_message_time = last.time
        self.notify(ref)

    def apply_reaction(
        self,
        ref: ConversationRef,
        message_id,
        emoji: str,
        user_id,
        user_name: str = "",
        add: bool = True,
    ) -> bool:
        conv = self.get(ref)
        idx = conv.index_of(message_id)
        if idx is None:
            logger.debug("Reaction for unknown message %s id=%s", ref, message_id)
            return False
        msg = conv.messages[idx]
        if add:
            updated, changed = reaction_ops.add_reaction(
                msg.reactions, emoji, user_id, user_name
            )
        else:
            updated, changed = reaction_ops.remove_reaction(msg.reactions, emoji, user_id)
        if changed:
            conv.messages[idx] = msg.model_copy(update={"reactions": updated})
            self.notify(ref)
        return changed
