import asyncio
from datetime import datetime, timezone
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "flocksync"))

from flocksync.api.cache import TTLCache
from flocksync.config import AppConfig, load_config, save_config
from flocksync.exceptions import ApiError, RateLimitedError
from flocksync.notifications import ToastQueue
from flocksync.schemas import IncomingMessage, ReactionEntry, format_clock, parse_payload


def test_config_round_trip(tmp_path):
    path = tmp_path / "config.json"
    cfg = AppConfig()
    cfg.server.base_url = "http://localhost:3000"
    cfg.timing.typing_debounce = 1.5
    save_config(cfg, path)

    loaded = load_config(path)
    assert loaded.server.base_url == "http://localhost:3000"
    assert loaded.timing.typing_debounce == 1.5
    assert loaded.timing.remote_typing_timeout == 5.0


def test_config_missing_or_invalid_uses_defaults(tmp_path):
    assert load_config(tmp_path / "nope.json") == AppConfig()
    bad = tmp_path / "bad.json"
    bad.write_text("{oops")
    assert load_config(bad) == AppConfig()


def test_ttl_cache_expires():
    now = [0.0]
    cache = TTLCache(ttl=300, clock=lambda: now[0])
    cache.set("tacos|", {"venues": []})
    now[0] = 299.0
    assert cache.get("tacos|") == {"venues": []}
    now[0] = 300.0
    assert cache.get("tacos|") is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_toast_dismisses_itself():
    toasts = ToastQueue(duration=0.05)
    toasts.show("Saved")
    assert toasts.visible() == ["Saved"]
    await asyncio.sleep(0.1)
    assert toasts.visible() == []


def test_error_toasts():
    toasts = ToastQueue()
    toasts.show_error(RateLimitedError("slow", 429))
    toasts.show_error(ApiError("Flock not found", 404))
    assert toasts.visible() == [
        "Too many requests. Please wait a moment.",
        "Flock not found",
    ]
    toasts.clear()
    assert toasts.visible() == []


def test_numeric_ids_become_strings():
    msg = parse_payload(
        IncomingMessage,
        {"id": 55, "sender_id": 7, "flockId": 3, "message_text": "hi",
         "reactions": [{"emoji": "🔥", "userId": 9}]},
    )
    assert msg.id == "55" and msg.sender_id == "7" and msg.flock_id == "3"
    assert msg.reactions == [ReactionEntry(emoji="🔥", user_id="9")]


def test_invalid_payload_returns_none():
    assert parse_payload(IncomingMessage, {"id": 1}) is None
    assert parse_payload(IncomingMessage, ["not", "a", "dict"]) is None


def test_server_timestamps_shown_in_local_time():
    msg = parse_payload(
        IncomingMessage,
        {"id": 1, "sender_id": 9, "message_text": "hi", "created_at": "2024-01-01T18:05:00Z"},
    )
    utc = datetime(2024, 1, 1, 18, 5, tzinfo=timezone.utc)
    local = utc.astimezone().strftime("%I:%M %p").lstrip("0")
    assert msg.to_message().time == local
    assert format_clock(datetime(2024, 1, 1, 9, 30)) == "9:30 AM"
