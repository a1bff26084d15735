import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "flocksync"))

from flocksync.config import TimingConfig
from flocksync.exceptions import ApiError, RateLimitedError, ValidationError
from flocksync.realtime import events
from flocksync.realtime.engine import SyncEngine
from flocksync.store.conversations import ConversationRef

FLOCK = ConversationRef.flock(3)
ME = "7"


class StubTransport:
    """Records emits and lets tests push server events."""

    def __init__(self):
        self.emitted = []
        self.handlers = {}
        self.disconnected = False

    async def connect(self, token):
        pass

    async def disconnect(self):
        self.disconnected = True

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)
        return lambda: self.handlers[event].remove(handler)

    async def dispatch(self, event, data):
        for handler in list(self.handlers.get(event, ())):
            result = handler(data)
            if asyncio.iscoroutine(result):
                await result

    def names(self):
        return [name for name, _ in self.emitted]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)

        def record(*args):
            self.emitted.append((name, args))

        return record


class StubApi:
    def __init__(self, fail=None, history=None):
        self.fail = fail
        self.history = history or []
        self.posted = []

    async def post_flock_message(self, flock_id, payload):
        self.posted.append((flock_id, payload))
        if self.fail is not None:
            raise self.fail
        return {}

    async def flock_messages(self, flock_id, limit=50):
        if self.fail is not None:
            raise self.fail
        return {"messages": self.history}


async def _engine(api=None):
    transport = StubTransport()
    timing = TimingConfig(typing_debounce=0.05, remote_typing_timeout=0.05, location_interval=0.05)
    engine = SyncEngine(transport, 7, "Me", api=api, timing=timing)
    await engine.start()
    return engine, transport


def _incoming(msg_id, sender_id, text, **extra):
    payload = {
        "id": msg_id,
        "sender_id": sender_id,
        "sender_name": "Sam" if str(sender_id) != ME else "Me",
        "flockId": 3,
        "message_text": text,
    }
    payload.update(extra)
    return payload


@pytest.mark.asyncio
async def test_send_then_echo_leaves_one_confirmed_message():
    engine, transport = await _engine()
    draft = engine.send_message(FLOCK, "hello")
    assert engine.messages(FLOCK)[0].is_temp
    name, (ref, payload) = transport.emitted[-1]
    assert name == "send_message" and ref == FLOCK
    assert payload["client_id"] == draft.client_id

    await transport.dispatch(
        events.NEW_MESSAGE, _incoming(55, 7, "hello", client_id=draft.client_id)
    )
    msgs = engine.messages(FLOCK)
    assert [m.id for m in msgs] == ["55"]
    assert engine.store.preview(FLOCK)[2] == 0
    await engine.close()


@pytest.mark.asyncio
async def test_empty_message_rejected_before_emit():
    engine, transport = await _engine()
    with pytest.raises(ValidationError):
        engine.send_message(FLOCK, "   ")
    assert transport.emitted == []
    assert engine.messages(FLOCK) == []
    await engine.close()


@pytest.mark.asyncio
async def test_backup_persist_failure_does_not_drop_message():
    api = StubApi(fail=ApiError("boom", 500))
    engine, transport = await _engine(api)
    engine.send_message(FLOCK, "hello")
    await engine.close()
    assert api.posted and api.posted[0][0] == "3"
    assert len(engine.messages(FLOCK)) == 1
    assert transport.disconnected


@pytest.mark.asyncio
async def test_history_rate_limit_shows_toast():
    engine, _ = await _engine(StubApi(fail=RateLimitedError("slow down", 429)))
    assert not await engine.load_history(FLOCK)
    assert engine.toasts.visible() == ["Too many requests. Please wait a moment."]
    await engine.close()


@pytest.mark.asyncio
async def test_history_skips_invalid_rows():
    api = StubApi(history=[_incoming(1, 9, "a"), {"id": 2}, _incoming(3, 9, "c")])
    engine, _ = await _engine(api)
    assert await engine.load_history(FLOCK)
    assert [m.id for m in engine.messages(FLOCK)] == ["1", "3"]
    await engine.close()


@pytest.mark.asyncio
async def test_own_reaction_echo_is_not_doubled():
    engine, transport = await _engine()
    await transport.dispatch(events.NEW_MESSAGE, _incoming(10, 9, "hi"))
    assert engine.add_reaction(FLOCK, 10, "👍")
    assert transport.names()[-1] == "react"

    await transport.dispatch(
        events.REACTION_ADDED,
        {"userId": 7, "messageId": 10, "emoji": "👍", "flockId": 3, "userName": "Me"},
    )
    assert len(engine.store.find_message(FLOCK, 10).reactions) == 1

    assert not engine.add_reaction(FLOCK, 10, "👍")
    assert engine.toggle_reaction(FLOCK, 10, "👍")
    assert engine.store.find_message(FLOCK, 10).reactions == []
    assert transport.names()[-1] == "remove_react"
    await engine.close()


@pytest.mark.asyncio
async def test_invalid_payload_is_dropped():
    engine, transport = await _engine()
    await transport.dispatch(events.NEW_MESSAGE, {"message_text": "no id"})
    await transport.dispatch(events.NEW_MESSAGE, "garbage")
    assert engine.messages(FLOCK) == []
    await engine.close()


@pytest.mark.asyncio
async def test_message_without_flock_id_goes_to_open_room():
    engine, transport = await _engine()
    engine.open_chat(FLOCK)
    payload = _incoming(12, 9, "hey")
    del payload["flockId"]
    await transport.dispatch(events.NEW_MESSAGE, payload)
    assert [m.id for m in engine.messages(FLOCK)] == ["12"]
    await engine.close()


@pytest.mark.asyncio
async def test_incoming_dm_routes_by_peer():
    engine, transport = await _engine()
    await transport.dispatch(
        events.NEW_DM,
        {"id": 80, "sender_id": 9, "sender_name": "Sam", "receiver_id": 7, "message_text": "yo"},
    )
    await transport.dispatch(
        events.NEW_DM,
        {"id": 81, "sender_id": 7, "sender_name": "Me", "receiver_id": 9, "message_text": "sup"},
    )
    assert [m.id for m in engine.messages(ConversationRef.dm(9))] == ["80", "81"]
    await engine.close()


@pytest.mark.asyncio
async def test_votes_event_replaces_board():
    engine, transport = await _engine()
    assert engine.cast_vote(FLOCK, "Venue A")
    assert transport.names()[-1] == "vote_venue"
    await transport.dispatch(
        events.NEW_VOTE,
        {
            "flockId": 3,
            "votes": [
                {"venue_name": "Venue B", "vote_count": 2, "voters": ["Me", "Sam"]},
            ],
        },
    )
    board = engine.state(FLOCK).votes
    assert [v.venue_name for v in board.votes] == ["Venue B"]
    assert board.my_vote() == "Venue B"
    with pytest.raises(ValidationError):
        engine.cast_vote(FLOCK, "")
    await engine.close()


@pytest.mark.asyncio
async def test_remote_locations_cached_and_evicted():
    engine, transport = await _engine()
    await transport.dispatch(
        events.LOCATION_UPDATE, {"userId": 9, "flockId": 3, "lat": 1.5, "lng": 2.5, "name": "Sam"}
    )
    await transport.dispatch(
        events.LOCATION_UPDATE, {"userId": 7, "flockId": 3, "lat": 0.0, "lng": 0.0}
    )
    cache = engine.state(FLOCK).locations
    assert [u.user_id for u in cache.all()] == ["9"]

    await transport.dispatch(events.MEMBER_STOPPED_SHARING, {"userId": 9, "flockId": 3})
    assert len(cache) == 0
    await engine.close()


@pytest.mark.asyncio
async def test_sharing_keeps_room_until_flock_unconfirmed():
    engine, transport = await _engine()
    assert not engine.start_sharing(FLOCK)
    assert engine.toasts.visible()

    engine.set_position(40.7, -74.0)
    engine.open_chat(FLOCK)
    assert engine.start_sharing(FLOCK)
    assert "share_location" in transport.names()

    engine.leave_chat(FLOCK)
    assert engine.is_joined(FLOCK)
    assert "leave_flock" not in transport.names()

    engine.set_flock_status(3, "cancelled")
    assert not engine.is_sharing(FLOCK)
    assert transport.names()[-2:] == ["stop_sharing_location", "leave_flock"]
    assert not engine.is_joined(FLOCK)
    await engine.close()


@pytest.mark.asyncio
async def test_dm_typing_indicator_and_local_debounce():
    engine, transport = await _engine()
    dm = ConversationRef.dm(9)
    await transport.dispatch(events.DM_USER_TYPING, {"userId": 9, "toUserId": 7, "name": "Sam"})
    assert engine.state(dm).presence.typing.is_typing
    await transport.dispatch(events.DM_USER_STOPPED_TYPING, {"userId": 9, "toUserId": 7})
    assert not engine.state(dm).presence.typing.is_typing

    engine.on_input(dm, "h")
    engine.on_input(dm, "he")
    assert transport.names() == ["start_typing"]
    await asyncio.sleep(0.1)
    assert transport.names() == ["start_typing", "stop_typing"]
    await engine.close()


@pytest.mark.asyncio
async def test_venue_selected_confirms_flock():
    engine, transport = await _engine()
    await transport.dispatch(
        events.VENUE_SELECTED, {"flockId": 3, "venue_name": "Club Nova", "venue_id": "p1"}
    )
    state = engine.state(FLOCK)
    assert state.status == "confirmed"
    assert state.votes.pinned == "Club Nova"
    await engine.close()


@pytest.mark.asyncio
async def test_invite_flow():
    engine, transport = await _engine()
    invite = {"flockId": 4, "flockName": "Friday", "fromUserId": 9, "fromName": "Sam"}
    await transport.dispatch(events.FLOCK_INVITE_RECEIVED, invite)
    await transport.dispatch(events.FLOCK_INVITE_RECEIVED, invite)
    assert len(engine.inbox.invites) == 1
    assert engine.toasts.visible() == ["Sam invited you to Friday"]

    accepted = engine.respond_flock_invite(4, accept=True)
    assert accepted.from_user_id == "9"
    assert transport.emitted[-1] == ("flock_invite_response", ("4", "9", "accepted"))
    assert engine.respond_flock_invite(4, accept=False) is None
    await engine.close()


@pytest.mark.asyncio
async def test_friend_request_flow():
    engine, transport = await _engine()
    await transport.dispatch(
        events.FRIEND_REQUEST_RECEIVED, {"requestId": 5, "fromUserId": 9, "fromName": "Sam"}
    )
    request = engine.respond_friend_request(9, accept=False)
    assert request.request_id == "5"
    assert transport.emitted[-1] == ("friend_response", ("9", "5", "declined"))
    await engine.close()


@pytest.mark.asyncio
async def test_socket_error_becomes_toast():
    engine, transport = await _engine()
    await transport.dispatch(events.ERROR, {"message": "Only the creator can select"})
    assert engine.toasts.visible() == ["Only the creator can select"]
    await engine.close()


@pytest.mark.asyncio
async def test_positions_without_flock_id_go_to_the_shared_room():
    engine, transport = await _engine()
    a, b = ConversationRef.flock(1), ConversationRef.flock(2)
    engine.set_position(40.7, -74.0)
    engine.open_chat(a)
    assert engine.start_sharing(a)
    engine.leave_chat(a)
    engine.open_chat(b)

    await transport.dispatch(
        events.LOCATION_UPDATE, {"userId": 9, "name": "Sam", "lat": 1.0, "lng": 2.0}
    )
    assert 9 in engine.state(a).locations
    assert len(engine.state(b).locations) == 0

    await transport.dispatch(events.MEMBER_STOPPED_SHARING, {"userId": 9})
    assert 9 not in engine.state(a).locations
    await engine.close()


@pytest.mark.asyncio
async def test_positions_follow_room_membership():
    engine, transport = await _engine()
    a, b = ConversationRef.flock(1), ConversationRef.flock(2)
    engine.set_position(40.7, -74.0)
    engine.open_chat(a)
    engine.start_sharing(a)
    engine.open_chat(b)
    await transport.dispatch(
        events.ROOM_MEMBERS, {"flockId": 2, "members": [{"userId": 9, "name": "Sam"}]}
    )
    await transport.dispatch(events.LOCATION_UPDATE, {"userId": 9, "lat": 1.0, "lng": 2.0})
    assert 9 in engine.state(b).locations
    assert 9 not in engine.state(a).locations
    await engine.close()


@pytest.mark.asyncio
async def test_ambiguous_position_is_dropped():
    engine, transport = await _engine()
    a, b = ConversationRef.flock(1), ConversationRef.flock(2)
    engine.set_position(40.7, -74.0)
    engine.start_sharing(a)
    engine.start_sharing(b)
    await transport.dispatch(events.LOCATION_UPDATE, {"userId": 9, "lat": 1.0, "lng": 2.0})
    assert len(engine.state(a).locations) == 0
    assert len(engine.state(b).locations) == 0
    await engine.close()


@pytest.mark.asyncio
async def test_reconnect_rejoins_flock_rooms():
    engine, transport = await _engine()
    engine.open_chat(FLOCK)
    await transport.dispatch(events.CONNECT, None)
    engine.open_chat(FLOCK)
    joins = [args for name, args in transport.emitted if name == "join_flock"]
    assert joins == [("3",), ("3",)]
    await engine.close()


@pytest.mark.asyncio
async def test_crowd_levels():
    engine, transport = await _engine()
    await transport.dispatch(
        events.CROWD_UPDATE, {"venue_id": "p1", "level": "busy", "updated_by": 9}
    )
    await transport.dispatch(events.CROWD_UPDATE, {"venue_id": "p2", "level": "heaving"})
    assert engine.crowd["p1"].level == "busy"
    assert "p2" not in engine.crowd

    engine.report_crowd("p1", "packed")
    assert transport.emitted[-1] == ("crowd_update", ("p1", "packed"))
    with pytest.raises(ValidationError):
        engine.report_crowd("p1", "heaving")
    await engine.close()
