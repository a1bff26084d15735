"""Durable client-side caches.

These are small, non-authoritative values the web client kept in
``localStorage``: UI preferences, the pinned and ordered flock lists, hidden
DM threads, the last geolocation fix and the auth token. Each key maps to one
row of the ``settings`` table holding JSON.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List

from sqlalchemy import delete, select

from .db.models import Setting
from .db.session import get_session

logger = logging.getLogger(__name__)

USER_MODE = "flockUserMode"
ONBOARDING_COMPLETE = "flockOnboardingComplete"
MAP_TYPE = "flock_map_type"
USER_LAT = "flock_user_lat"
USER_LNG = "flock_user_lng"
PINNED = "flock_pinned"
ORDER = "flock_order"
DELETED_DMS = "flock_deleted_dms"
LOC_DISMISSED = "flock_loc_dismissed"
TOKEN = "flockToken"

KNOWN_KEYS = (
    USER_MODE,
    ONBOARDING_COMPLETE,
    MAP_TYPE,
    USER_LAT,
    USER_LNG,
    PINNED,
    ORDER,
    DELETED_DMS,
    LOC_DISMISSED,
    TOKEN,
)


class LocalStore:
    async def get(self, key: str, default: Any = None) -> Any:
        async with get_session() as db:
            row = await db.scalar(select(Setting).where(Setting.key == key))
        if row is None:
            return default
        try:
            return json.loads(row.value)
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt value for %s", key)
            return default

    async def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        async with get_session() as db:
            row = await db.scalar(select(Setting).where(Setting.key == key))
            if row is None:
                db.add(Setting(key=key, value=encoded))
            else:
                row.value = encoded
            await db.commit()

    async def remove(self, key: str) -> None:
        async with get_session() as db:
            await db.execute(delete(Setting).where(Setting.key == key))
            await db.commit()

    # ---- typed accessors ----

    async def token(self) -> str | None:
        return await self.get(TOKEN)

    async def set_token(self, token: str | None) -> None:
        if token:
            await self.set(TOKEN, token)
        else:
            await self.remove(TOKEN)

    async def user_mode(self) -> str:
        return await self.get(USER_MODE, "user")

    async def set_user_mode(self, mode: str) -> None:
        await self.set(USER_MODE, mode)

    async def onboarding_complete(self) -> bool:
        return bool(await self.get(ONBOARDING_COMPLETE, False))

    async def set_onboarding_complete(self, done: bool = True) -> None:
        await self.set(ONBOARDING_COMPLETE, done)

    async def map_type(self) -> str:
        return await self.get(MAP_TYPE, "roadmap")

    async def set_map_type(self, map_type: str) -> None:
        await self.set(MAP_TYPE, map_type)

    async def last_position(self) -> tuple[float, float] | None:
        lat = await self.get(USER_LAT)
        lng = await self.get(USER_LNG)
        if lat is None or lng is None:
            return None
        return float(lat), float(lng)

    async def set_last_position(self, lat: float, lng: float) -> None:
        await self.set(USER_LAT, lat)
        await self.set(USER_LNG, lng)

    async def pinned_flocks(self) -> List[str]:
        return [str(f) for f in await self.get(PINNED, [])]

    async def toggle_pinned(self, flock_id) -> List[str]:
        fid = str(flock_id)
        pinned = await self.pinned_flocks()
        if fid in pinned:
            pinned.remove(fid)
        else:
            pinned.append(fid)
        await self.set(PINNED, pinned)
        return pinned

    async def flock_order(self) -> List[str]:
        return [str(f) for f in await self.get(ORDER, [])]

    async def set_flock_order(self, flock_ids) -> None:
        await self.set(ORDER, [str(f) for f in flock_ids])

    async def deleted_dms(self) -> List[str]:
        return [str(u) for u in await self.get(DELETED_DMS, [])]

    async def hide_dm(self, user_id) -> None:
        hidden = await self.deleted_dms()
        uid = str(user_id)
        if uid not in hidden:
            hidden.append(uid)
            await self.set(DELETED_DMS, hidden)

    async def restore_dm(self, user_id) -> None:
        hidden = await self.deleted_dms()
        uid = str(user_id)
        if uid in hidden:
            hidden.remove(uid)
            await self.set(DELETED_DMS, hidden)

    async def location_prompt_dismissed(self) -> bool:
        return bool(await self.get(LOC_DISMISSED, False))

    async def dismiss_location_prompt(self) -> None:
        await self.set(LOC_DISMISSED, True)


def order_flocks(flocks: List[dict], pinned: List[str], order: List[str]) -> List[dict]:
    """Sort flocks: pinned first, then by saved order, unknown ones last."""
    rank = {fid: idx for idx, fid in enumerate(order)}

    def key(flock: dict):
        fid = str(flock.get("id"))
        return (fid not in pinned, rank.get(fid, len(rank)))

    return sorted(flocks, key=key)
