import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "flocksync"))

from flocksync.db.session import close_db, get_session, init_db
from flocksync.db.models import Setting
from flocksync.storage import PINNED, LocalStore, order_flocks


def _run(tmp_path, body):
    async def runner():
        await init_db(f"sqlite+aiosqlite:///{tmp_path / 'local.db'}")
        try:
            return await body(LocalStore())
        finally:
            await close_db()

    return asyncio.run(runner())


def test_defaults_when_empty(tmp_path):
    async def body(store):
        return (
            await store.token(),
            await store.user_mode(),
            await store.map_type(),
            await store.last_position(),
            await store.onboarding_complete(),
        )

    assert _run(tmp_path, body) == (None, "user", "roadmap", None, False)


def test_token_set_and_clear(tmp_path):
    async def body(store):
        await store.set_token("abc")
        first = await store.token()
        await store.set_token(None)
        return first, await store.token()

    assert _run(tmp_path, body) == ("abc", None)


def test_values_survive_reopen(tmp_path):
    async def write(store):
        await store.set_last_position(40.7, -74.0)
        await store.toggle_pinned(3)
        await store.toggle_pinned(5)
        await store.toggle_pinned(3)

    async def read(store):
        return await store.last_position(), await store.pinned_flocks()

    _run(tmp_path, write)
    assert _run(tmp_path, read) == ((40.7, -74.0), ["5"])


def test_hidden_dms(tmp_path):
    async def body(store):
        await store.hide_dm(9)
        await store.hide_dm(9)
        await store.hide_dm(4)
        await store.restore_dm(9)
        return await store.deleted_dms()

    assert _run(tmp_path, body) == ["4"]


def test_corrupt_value_falls_back_to_default(tmp_path):
    async def body(store):
        async with get_session() as db:
            db.add(Setting(key=PINNED, value="{not json"))
            await db.commit()
        return await store.pinned_flocks()

    assert _run(tmp_path, body) == []


def test_order_flocks_pinned_first():
    flocks = [{"id": 1}, {"id": 2}, {"id": 3}, {"id": 4}]
    ordered = order_flocks(flocks, pinned=["3"], order=["2", "1", "3"])
    assert [f["id"] for f in ordered] == [3, 2, 1, 4]
