"""The realtime sync engine.

``SyncEngine`` owns every per-conversation store and is the only place that
mutates them. User actions update local state optimistically and then emit over
the socket; inbound socket events are validated into schema objects and merged
back through the same stores, so a local change and its server echo converge
on one state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Set, get_args

from ..config import TimingConfig
from ..exceptions import ApiError, ValidationError
from ..notifications import Inbox, ToastQueue
from ..schemas import (
    CrowdLevel,
    CrowdUpdateEvent,
    DirectEvent,
    FriendRequestEvent,
    IncomingMessage,
    InviteEvent,
    LocationEvent,
    Member,
    MemberEvent,
    Message,
    ReactionEvent,
    ReplyRef,
    RoomMembersEvent,
    StoppedSharingEvent,
    TypingEvent,
    VenuePinnedEvent,
    VenueSelectedEvent,
    VenueSnapshot,
    VotesEvent,
    format_clock,
    parse_payload,
)
from ..store.conversations import (
    ConversationRef,
    ConversationStore,
    new_client_id,
    new_temp_id,
)
from ..store.location import LocationCache
from ..store.presence import PresenceTracker
from ..store.votes import VoteBoard
from . import events
from .location import LocationBroadcaster, Position
from .typing_debounce import TypingDebouncer

logger = logging.getLogger(__name__)

CONFIRMED = "confirmed"


@dataclass
class ConversationState:
    """Ephemeral per-conversation state that lives beside the message list."""

    ref: ConversationRef
    votes: VoteBoard
    locations: LocationCache
    presence: PresenceTracker
    typing: TypingDebouncer
    status: str | None = None


class SyncEngine:
    def __init__(
        self,
        transport,
        user_id,
        user_name: str,
        api=None,
        timing: TimingConfig | None = None,
        toasts: ToastQueue | None = None,
    ) -> None:
        self.transport = transport
        self.user_id = str(user_id)
        self.user_name = user_name
        self.api = api
        self.timing = timing or TimingConfig()
        self.store = ConversationStore(self.user_id)
        self.inbox = Inbox()
        self.toasts = toasts or ToastQueue(self.timing.toast_duration)
        self.broadcaster = LocationBroadcaster(
            self._emit_position, self._emit_stopped, self.timing.location_interval
        )
        self._states: Dict[ConversationRef, ConversationState] = {}
        self._joined: Set[ConversationRef] = set()
        self._unsubscribers: List[Callable[[], None]] = []
        self._background: Set[asyncio.Task] = set()
        self.crowd: Dict[str, CrowdUpdateEvent] = {}

    # ---- lifecycle ----

    async def start(self, token: str | None = None) -> None:
        if token is not None:
            await self.transport.connect(token)
        if not self._unsubscribers:
            self._subscribe()

    async def close(self) -> None:
        self.broadcaster.stop_all()
        for state in self._states.values():
            state.typing.cancel()
            state.presence.close()
        for off in self._unsubscribers:
            off()
        self._unsubscribers.clear()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.transport.disconnect()

    def _subscribe(self) -> None:
        handlers: Dict[str, Callable] = {
            events.CONNECT: self._on_connect,
            events.NEW_MESSAGE: self._on_new_message,
            events.NEW_DM: self._on_new_dm,
            events.USER_TYPING: lambda p: self._on_typing(p, "flock"),
            events.USER_STOPPED_TYPING: lambda p: self._on_stopped_typing(p, "flock"),
            events.DM_USER_TYPING: lambda p: self._on_typing(p, "dm"),
            events.DM_USER_STOPPED_TYPING: lambda p: self._on_stopped_typing(p, "dm"),
            events.REACTION_ADDED: lambda p: self._on_reaction(p, "flock", True),
            events.REACTION_REMOVED: lambda p: self._on_reaction(p, "flock", False),
            events.DM_REACTION_ADDED: lambda p: self._on_reaction(p, "dm", True),
            events.DM_REACTION_REMOVED: lambda p: self._on_reaction(p, "dm", False),
            events.NEW_VOTE: lambda p: self._on_votes(p, "flock"),
            events.DM_NEW_VOTE: lambda p: self._on_votes(p, "dm"),
            events.LOCATION_UPDATE: lambda p: self._on_location(p, "flock"),
            events.DM_LOCATION_UPDATE: lambda p: self._on_location(p, "dm"),
            events.MEMBER_STOPPED_SHARING: lambda p: self._on_stopped_sharing(p, "flock"),
            events.DM_MEMBER_STOPPED_SHARING: lambda p: self._on_stopped_sharing(p, "dm"),
            events.DM_VENUE_PINNED: self._on_venue_pinned,
            events.VENUE_SELECTED: self._on_venue_selected,
            events.ROOM_MEMBERS: self._on_room_members,
            events.MEMBER_JOINED: self._on_member_joined,
            events.MEMBER_LEFT: self._on_member_left,
            events.FLOCK_INVITE_RECEIVED: self._on_invite_received,
            events.FLOCK_INVITE_RESPONDED: self._on_invite_responded,
            events.FRIEND_REQUEST_RECEIVED: self._on_friend_request,
            events.FRIEND_REQUEST_RESPONDED: self._on_friend_responded,
            events.CROWD_UPDATE: self._on_crowd_update,
            events.ERROR: self._on_error,
        }
        for event, handler in handlers.items():
            self._unsubscribers.append(self.transport.on(event, handler))

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ---- per-conversation state ----

    def state(self, ref: ConversationRef) -> ConversationState:
        state = self._states.get(ref)
        if state is None:
            state = ConversationState(
                ref=ref,
                votes=VoteBoard(self.user_name),
                locations=LocationCache(),
                presence=PresenceTracker(
                    self.timing.remote_typing_timeout,
                    on_change=lambda: self.store.notify(ref),
                ),
                typing=TypingDebouncer(
                    lambda: self.transport.start_typing(ref),
                    lambda: self.transport.stop_typing(ref),
                    self.timing.typing_debounce,
                ),
            )
            self._states[ref] = state
        return state

    def messages(self, ref: ConversationRef) -> List[Message]:
        return self.store.messages(ref)

    # ---- rooms ----

    def open_chat(self, ref: ConversationRef) -> None:
        self.store.set_active(ref)
        self._join(ref)

    def _join(self, ref: ConversationRef) -> None:
        if ref.kind == "flock" and ref not in self._joined:
            self.transport.join_flock(ref.id)
            self._joined.add(ref)

    def leave_chat(self, ref: ConversationRef) -> None:
        """Leave ``ref``'s screen.

        The room is kept while location sharing is active for it so that
        position broadcasts keep flowing.
        """
        self.state(ref).typing.on_send()
        if self.store.active == ref:
            self.store.set_active(None)
        if self.broadcaster.is_sharing(ref):
            logger.debug("Keeping room %s joined for location sharing", ref)
            return
        self._leave(ref)

    def _leave(self, ref: ConversationRef) -> None:
        if ref.kind == "flock" and ref in self._joined:
            self.transport.leave_flock(ref.id)
            self._joined.discard(ref)

    def is_joined(self, ref: ConversationRef) -> bool:
        return ref in self._joined

    def _on_connect(self, _payload=None) -> None:
        # A fresh socket is in no rooms; this also runs after a reconnect.
        for ref in sorted(self._joined, key=str):
            logger.info("Rejoining %s", ref)
            self.transport.join_flock(ref.id)

    async def load_history(self, ref: ConversationRef, limit: int = 50) -> bool:
        if self.api is None:
            return False
        try:
            if ref.kind == "flock":
                data = await self.api.flock_messages(ref.id, limit=limit)
            else:
                data = await self.api.dm_messages(ref.id, limit=limit)
        except ApiError as exc:
            self.toasts.show_error(exc)
            return False
        history: List[Message] = []
        for raw in data.get("messages", []):
            incoming = parse_payload(IncomingMessage, raw)
            if incoming is not None:
                history.append(incoming.to_message())
        self.store.load_history(ref, history)
        return True

    # ---- messages ----

    def send_message(
        self,
        ref: ConversationRef,
        text: str,
        message_type: str = "text",
        venue_data: VenueSnapshot | None = None,
        image_url: str | None = None,
        reply_to: ReplyRef | None = None,
    ) -> Message:
        text = (text or "").strip()
        if message_type == "text" and not text:
            raise ValidationError("Message cannot be empty")
        if message_type == "venue_card" and venue_data is None:
            raise ValidationError("Venue card requires a venue")
        if message_type == "image" and not image_url:
            raise ValidationError("Image message requires an image")

        draft = Message(
            id=new_temp_id(),
            sender=self.user_name,
            sender_id=self.user_id,
            time=format_clock(),
            text=text,
            message_type=message_type,
            venue_data=venue_data,
            image_url=image_url,
            reply_to=reply_to,
            client_id=new_client_id(),
        )
        self.store.append_optimistic(ref, draft)
        self.state(ref).typing.on_send()

        payload = {
            "message_text": text,
            "message_type": message_type,
            "venue_data": venue_data.model_dump() if venue_data else None,
            "image_url": image_url,
            "reply_to": reply_to.model_dump() if reply_to else None,
            "client_id": draft.client_id,
        }
        self.transport.send_message(ref, payload)
        if self.api is not None:
            self._spawn(self._persist(ref, payload))
        return draft

    async def _persist(self, ref: ConversationRef, payload: dict) -> None:
        # Backup persistence only; the socket broadcast is what the UI trusts.
        try:
            if ref.kind == "flock":
                await self.api.post_flock_message(ref.id, payload)
            else:
                await self.api.post_dm(ref.id, payload)
        except ApiError as exc:
            logger.info("Backup persistence failed for %s: %s", ref, exc)

    def on_input(self, ref: ConversationRef, text: str) -> None:
        self.state(ref).typing.on_input(text)

    # ---- reactions ----

    def add_reaction(self, ref: ConversationRef, message_id, emoji: str) -> bool:
        changed = self.store.apply_reaction(
            ref, message_id, emoji, self.user_id, self.user_name, add=True
        )
        if changed:
            self.transport.react(ref, str(message_id), emoji)
        return changed

    def remove_reaction(self, ref: ConversationRef, message_id, emoji: str) -> bool:
        changed = self.store.apply_reaction(
            ref, message_id, emoji, self.user_id, add=False
        )
        if changed:
            self.transport.remove_react(ref, str(message_id), emoji)
        return changed

    def toggle_reaction(self, ref: ConversationRef, message_id, emoji: str) -> bool:
        msg = self.store.find_message(ref, message_id)
        if msg is None:
            return False
        mine = any(r.emoji == emoji and r.user_id == self.user_id for r in msg.reactions)
        if mine:
            return self.remove_reaction(ref, message_id, emoji)
        return self.add_reaction(ref, message_id, emoji)

    # ---- votes ----

    def cast_vote(
        self, ref: ConversationRef, venue_name: str, venue_id: str | None = None
    ) -> bool:
        if not venue_name:
            raise ValidationError("Venue name is required")
        changed = self.state(ref).votes.cast_vote(venue_name, venue_id)
        if changed:
            self.store.notify(ref)
            self.transport.vote_venue(ref, venue_name, venue_id)
        return changed

    def pin_venue(
        self,
        ref: ConversationRef,
        venue_name: str,
        venue_id: str | None = None,
        venue_address: str | None = None,
    ) -> None:
        self.state(ref).votes.pin(venue_name, venue_id)
        self.store.notify(ref)
        self.transport.pin_venue(ref, venue_name, venue_id, venue_address)

    # ---- location ----

    def set_position(self, lat: float, lng: float) -> None:
        self.broadcaster.update_position(Position(lat, lng))

    def start_sharing(self, ref: ConversationRef) -> bool:
        self._join(ref)
        started = self.broadcaster.start(ref)
        if not started:
            self.toasts.show("Turn on location to share your position")
        return started

    def stop_sharing(self, ref: ConversationRef) -> bool:
        stopped = self.broadcaster.stop(ref)
        self.state(ref).locations.clear()
        self.store.notify(ref)
        if stopped and self.store.active != ref:
            # The room was only held open for sharing.
            self._leave(ref)
        return stopped

    def is_sharing(self, ref: ConversationRef) -> bool:
        return self.broadcaster.is_sharing(ref)

    def _emit_position(self, ref: ConversationRef, position: Position) -> None:
        self.transport.share_location(ref, position.lat, position.lng)

    def _emit_stopped(self, ref: ConversationRef) -> None:
        self.transport.stop_sharing_location(ref)

    def report_crowd(self, venue_id, level: str) -> None:
        if level not in get_args(CrowdLevel):
            raise ValidationError(f"Unknown crowd level: {level}")
        self.transport.crowd_update(str(venue_id), level)

    def set_flock_status(self, flock_id, status: str) -> None:
        ref = ConversationRef.flock(flock_id)
        state = self.state(ref)
        previous = state.status
        state.status = status
        if status != CONFIRMED and self.broadcaster.is_sharing(ref):
            logger.info("Flock %s left %s (%s), stopping sharing", flock_id, CONFIRMED, status)
            self.stop_sharing(ref)
        if previous != status:
            self.store.notify(ref)

    # ---- invites and friends ----

    def send_flock_invite(self, flock_id, to_user_id, flock_name: str = "") -> None:
        self.transport.flock_invite(str(flock_id), str(to_user_id), flock_name)

    def respond_flock_invite(self, flock_id, accept: bool) -> InviteEvent | None:
        invite = self.inbox.resolve_invite(flock_id)
        if invite is None:
            return None
        response = "accepted" if accept else "declined"
        self.transport.flock_invite_response(str(flock_id), invite.from_user_id, response)
        return invite

    def send_friend_request(self, to_user_id, request_id=None) -> None:
        self.transport.friend_request(
            str(to_user_id), None if request_id is None else str(request_id)
        )

    def respond_friend_request(self, from_user_id, accept: bool) -> FriendRequestEvent | None:
        request = self.inbox.resolve_friend_request(from_user_id)
        if request is None:
            return None
        response = "accepted" if accept else "declined"
        self.transport.friend_response(request.from_user_id, request.request_id, response)
        return request

    # ---- inbound routing ----

    def _flock_ref(self, flock_id) -> ConversationRef | None:
        if flock_id is not None:
            return ConversationRef.flock(flock_id)
        # Some room broadcasts omit the flock id; attribute them to the open room.
        active = self.store.active
        if active is not None and active.kind == "flock":
            return active
        if len(self._joined) == 1:
            return next(iter(self._joined))
        return None

    def _location_ref(self, event: DirectEvent) -> ConversationRef | None:
        """Resolve the flock of a location event that may lack ``flockId``.

        A room the user belongs to by membership wins, then the one flock we
        are sharing in, then the open chat. Ambiguous events are dropped.
        """
        if event.flock_id is not None:
            return ConversationRef.flock(event.flock_id)
        uid = event.user_id
        known = [
            ref
            for ref in self._joined
            if ref in self._states and uid in self._states[ref].presence.members
        ]
        if len(known) == 1:
            return known[0]
        sharing = [ref for ref in self.broadcaster.sharing() if ref.kind == "flock"]
        if len(sharing) == 1:
            return sharing[0]
        if len(known) > 1 or len(sharing) > 1:
            logger.warning("Location event from %s matches several rooms; dropped", uid)
            return None
        return self._flock_ref(None)

    def _ref_for(self, event: DirectEvent, kind: str) -> ConversationRef | None:
        if kind == "flock":
            return self._flock_ref(event.flock_id)
        if event.user_id is None:
            return None
        if event.user_id == self.user_id:
            if event.to_user_id is None:
                return None
            return ConversationRef.dm(event.to_user_id)
        return ConversationRef.dm(event.user_id)

    def _on_new_message(self, payload) -> None:
        incoming = parse_payload(IncomingMessage, payload)
        if incoming is None:
            return
        if incoming.flock_id is None and incoming.receiver_id is not None:
            self._reconcile_dm(incoming)
            return
        ref = self._flock_ref(incoming.flock_id or incoming.conversation_id)
        if ref is None:
            logger.warning("new_message %s without a resolvable flock", incoming.id)
            return
        self._reconcile(ref, incoming)

    def _on_new_dm(self, payload) -> None:
        incoming = parse_payload(IncomingMessage, payload)
        if incoming is not None:
            self._reconcile_dm(incoming)

    def _reconcile_dm(self, incoming: IncomingMessage) -> None:
        if incoming.sender_id == self.user_id:
            peer = incoming.receiver_id or incoming.conversation_id
        else:
            peer = incoming.sender_id
        if peer is None:
            logger.warning("new_dm %s without a peer", incoming.id)
            return
        self._reconcile(ConversationRef.dm(peer), incoming)

    def _reconcile(self, ref: ConversationRef, incoming: IncomingMessage) -> None:
        self.store.reconcile_incoming(ref, incoming)
        if incoming.sender_id != self.user_id:
            self.state(ref).presence.user_stopped_typing(incoming.sender_id)

    def _on_typing(self, payload, kind: str) -> None:
        event = parse_payload(TypingEvent, payload)
        if event is None or event.user_id == self.user_id:
            return
        ref = self._ref_for(event, kind)
        if ref is not None:
            self.state(ref).presence.user_typing(event.user_id, event.name)

    def _on_stopped_typing(self, payload, kind: str) -> None:
        event = parse_payload(TypingEvent, payload)
        if event is None or event.user_id == self.user_id:
            return
        ref = self._ref_for(event, kind)
        if ref is not None:
            self.state(ref).presence.user_stopped_typing(event.user_id)

    def _on_reaction(self, payload, kind: str, added: bool) -> None:
        event = parse_payload(ReactionEvent, payload)
        if event is None or event.user_id is None:
            return
        ref = self._ref_for(event, kind)
        if ref is None:
            return
        self.store.apply_reaction(
            ref, event.message_id, event.emoji, event.user_id, event.user_name, add=added
        )

    def _on_votes(self, payload, kind: str) -> None:
        event = parse_payload(VotesEvent, payload)
        if event is None:
            return
        ref = self._ref_for(event, kind)
        if ref is None:
            return
        self.state(ref).votes.replace_all(event.votes)
        self.store.notify(ref)

    def _on_location(self, payload, kind: str) -> None:
        event = parse_payload(LocationEvent, payload)
        if event is None or event.user_id is None or event.user_id == self.user_id:
            return
        ref = self._location_ref(event) if kind == "flock" else self._ref_for(event, kind)
        if ref is None:
            return
        self.state(ref).locations.upsert(event.to_update())
        self.store.notify(ref)

    def _on_stopped_sharing(self, payload, kind: str) -> None:
        event = parse_payload(StoppedSharingEvent, payload)
        if event is None or event.user_id is None:
            return
        ref = self._location_ref(event) if kind == "flock" else self._ref_for(event, kind)
        if ref is None:
            return
        if self.state(ref).locations.remove(event.user_id):
            self.store.notify(ref)

    def _on_venue_pinned(self, payload) -> None:
        event = parse_payload(VenuePinnedEvent, payload)
        if event is None:
            return
        ref = self._ref_for(event, "dm")
        if ref is None:
            return
        self.state(ref).votes.pin(event.venue_name, event.venue_id)
        self.store.notify(ref)

    def _on_venue_selected(self, payload) -> None:
        event = parse_payload(VenueSelectedEvent, payload)
        if event is None:
            return
        ref = ConversationRef.flock(event.flock_id)
        state = self.state(ref)
        state.votes.pin(event.venue_name, event.venue_id)
        state.status = CONFIRMED
        self.store.notify(ref)

    def _on_room_members(self, payload) -> None:
        event = parse_payload(RoomMembersEvent, payload)
        if event is not None:
            self.state(ConversationRef.flock(event.flock_id)).presence.set_members(
                event.members
            )

    def _on_member_joined(self, payload) -> None:
        event = parse_payload(MemberEvent, payload)
        if event is not None:
            self.state(ConversationRef.flock(event.flock_id)).presence.member_joined(
                Member(user_id=event.user_id, name=event.name)
            )

    def _on_member_left(self, payload) -> None:
        event = parse_payload(MemberEvent, payload)
        if event is not None:
            self.state(ConversationRef.flock(event.flock_id)).presence.member_left(
                event.user_id
            )

    def _on_invite_received(self, payload) -> None:
        event = parse_payload(InviteEvent, payload)
        if event is not None and self.inbox.add_invite(event):
            self.toasts.show(f"{event.from_name or 'Someone'} invited you to {event.flock_name or 'a flock'}")

    def _on_invite_responded(self, payload) -> None:
        event = parse_payload(InviteEvent, payload)
        if event is None:
            return
        self.inbox.invite_responses.append(event)
        if event.response:
            self.toasts.show(f"{event.from_name or 'Someone'} {event.response} your invite")

    def _on_friend_request(self, payload) -> None:
        event = parse_payload(FriendRequestEvent, payload)
        if event is not None and self.inbox.add_friend_request(event):
            self.toasts.show(f"{event.from_name or 'Someone'} sent you a friend request")

    def _on_friend_responded(self, payload) -> None:
        event = parse_payload(FriendRequestEvent, payload)
        if event is None:
            return
        self.inbox.friend_responses.append(event)
        if event.response == "accepted":
            self.toasts.show(f"{event.from_name or 'Someone'} accepted your friend request")

    def _on_crowd_update(self, payload) -> None:
        event = parse_payload(CrowdUpdateEvent, payload)
        if event is not None:
            self.crowd[event.venue_id] = event

    def _on_error(self, payload) -> None:
        if isinstance(payload, dict):
            message = payload.get("message")
        else:
            message = payload if isinstance(payload, str) else None
        logger.warning("Socket error: %s", message)
        self.toasts.show(message or "Something went wrong")
