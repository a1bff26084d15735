"""Socket.IO transport for the Flock realtime channel.

Wraps :class:`socketio.AsyncClient` with fan-out subscriptions (several
listeners per event, each with its own unsubscribe handle) and fire-and-forget
emits. Emitting while disconnected is a logged no-op, mirroring the web client.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Set

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

from ..config import SocketConfig
from ..exceptions import NotConnectedError
from ..store.conversations import ConversationRef
from . import events

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


class SocketTransport:
    def __init__(self, base_url: str, cfg: SocketConfig | None = None) -> None:
        self.base_url = base_url
        self.cfg = cfg or SocketConfig()
        self._sio = socketio.AsyncClient(
            logger=False,
            engineio_logger=False,
            reconnection=self.cfg.reconnection,
            reconnection_attempts=self.cfg.reconnection_attempts,
            reconnection_delay=self.cfg.reconnection_delay,
        )
        self._handlers: Dict[str, List[Handler]] = {}
        self._pending: Set[asyncio.Task] = set()
        self._connected = False
        self._sio.on("connect", self._on_connect)
        self._sio.on("connect_error", self._on_connect_error)
        self._sio.on("disconnect", self._on_disconnect)

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self, token: str) -> None:
        if self.connected:
            return
        try:
            await self._sio.connect(
                self.base_url,
                auth={"token": token},
                transports=list(self.cfg.transports),
            )
        except SocketConnectionError as exc:
            raise NotConnectedError(str(exc)) from exc

    async def disconnect(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self._sio.disconnect()

    async def _on_connect(self) -> None:
        # Also fires after an automatic reconnect, before AsyncClient.connected
        # is set again, so readiness is tracked here.
        self._connected = True
        logger.info("Socket connected: %s", self._sio.sid)
        await self.dispatch(events.CONNECT, None)

    async def _on_connect_error(self, data=None) -> None:
        logger.warning("Socket connection error: %s", data)

    async def _on_disconnect(self, *args) -> None:
        self._connected = False
        logger.info("Socket disconnected")
        await self.dispatch(events.DISCONNECT, None)

    # ---- subscriptions ----

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        handlers = self._handlers.get(event)
        if handlers is None:
            handlers = self._handlers[event] = []
            if event not in (events.CONNECT, events.DISCONNECT):
                self._sio.on(event, self._dispatcher(event))
        handlers.append(handler)

        def off() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return off

    def _dispatcher(self, event: str):
        async def dispatch(data=None) -> None:
            await self.dispatch(event, data)

        return dispatch

    async def dispatch(self, event: str, data: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(data)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Handler for %s failed", event)

    # ---- emits ----

    def emit(self, event: str, payload: Any = None) -> None:
        if not self.connected:
            logger.debug("Dropping %s emit: socket not connected", event)
            return
        task = asyncio.get_running_loop().create_task(self._sio.emit(event, payload))
        self._pending.add(task)
        task.add_done_callback(self._emit_done)

    def _emit_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Emit failed: %s", task.exception())

    def join_flock(self, flock_id: str) -> None:
        self.emit(events.JOIN_FLOCK, flock_id)

    def leave_flock(self, flock_id: str) -> None:
        self.emit(events.LEAVE_FLOCK, flock_id)

    def send_message(self, ref: ConversationRef, payload: dict) -> None:
        if ref.kind == "flock":
            self.emit(events.SEND_MESSAGE, {"flockId": ref.id, **payload})
        else:
            self.emit(events.SEND_DM, {"receiver_id": ref.id, **payload})

    def start_typing(self, ref: ConversationRef) -> None:
        if ref.kind == "flock":
            self.emit(events.TYPING, ref.id)
        else:
            self.emit(events.DM_TYPING, {"toUserId": ref.id})

    def stop_typing(self, ref: ConversationRef) -> None:
        if ref.kind == "flock":
            self.emit(events.STOP_TYPING, ref.id)
        else:
            self.emit(events.DM_STOP_TYPING, {"toUserId": ref.id})

    def react(self, ref: ConversationRef, message_id: str, emoji: str) -> None:
        event = events.REACT if ref.kind == "flock" else events.DM_REACT
        self.emit(event, {**_address(ref), "messageId": message_id, "emoji": emoji})

    def remove_react(self, ref: ConversationRef, message_id: str, emoji: str) -> None:
        event = events.REMOVE_REACT if ref.kind == "flock" else events.DM_REMOVE_REACT
        self.emit(event, {**_address(ref), "messageId": message_id, "emoji": emoji})

    def vote_venue(
        self, ref: ConversationRef, venue_name: str, venue_id: str | None
    ) -> None:
        event = events.VOTE_VENUE if ref.kind == "flock" else events.DM_VOTE_VENUE
        self.emit(
            event, {**_address(ref), "venue_name": venue_name, "venue_id": venue_id}
        )

    def pin_venue(
        self,
        ref: ConversationRef,
        venue_name: str,
        venue_id: str | None,
        venue_address: str | None = None,
    ) -> None:
        payload = {**_address(ref), "venue_name": venue_name, "venue_id": venue_id}
        if ref.kind == "flock":
            # Only the flock creator may select; the server rejects others.
            self.emit(events.SELECT_VENUE, {**payload, "venue_address": venue_address})
        else:
            self.emit(events.DM_PIN_VENUE, payload)

    def share_location(self, ref: ConversationRef, lat: float, lng: float) -> None:
        event = events.UPDATE_LOCATION if ref.kind == "flock" else events.DM_SHARE_LOCATION
        self.emit(event, {**_address(ref), "lat": lat, "lng": lng})

    def stop_sharing_location(self, ref: ConversationRef) -> None:
        event = (
            events.STOP_SHARING_LOCATION
            if ref.kind == "flock"
            else events.DM_STOP_SHARING_LOCATION
        )
        self.emit(event, _address(ref))

    def flock_invite(self, flock_id: str, to_user_id: str, flock_name: str = "") -> None:
        self.emit(
            events.FLOCK_INVITE,
            {"flockId": flock_id, "toUserId": to_user_id, "flockName": flock_name},
        )

    def flock_invite_response(self, flock_id: str, to_user_id: str, response: str) -> None:
        self.emit(
            events.FLOCK_INVITE_RESPONSE,
            {"flockId": flock_id, "toUserId": to_user_id, "response": response},
        )

    def friend_request(self, to_user_id: str, request_id: str | None = None) -> None:
        self.emit(events.FRIEND_REQUEST, {"toUserId": to_user_id, "requestId": request_id})

    def friend_response(self, to_user_id: str, request_id: str | None, response: str) -> None:
        self.emit(
            events.FRIEND_RESPONSE,
            {"toUserId": to_user_id, "requestId": request_id, "response": response},
        )

    def crowd_update(self, venue_id: str, level: str) -> None:
        self.emit(events.CROWD_UPDATE, {"venue_id": venue_id, "level": level})


def _address(ref: ConversationRef) -> dict:
    if ref.kind == "flock":
        return {"flockId": ref.id}
    return {"toUserId": ref.id}
