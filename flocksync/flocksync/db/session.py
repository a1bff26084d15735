from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .base import Base


_engine: AsyncEngine | None = None
_Session: async_sessionmaker[AsyncSession] | None = None
_init_lock = asyncio.Lock()
_DEBUG_SQL = os.getenv("FLOCKSYNC_DEBUG_SQLALCHEMY", "").lower() in {"1", "true", "yes"}


async def init_db(url: str) -> AsyncEngine:
    """Create the engine for ``url`` and make sure the schema exists."""

    global _engine, _Session
    if _engine is not None:
        return _engine

    async with _init_lock:
        if _engine is not None:
            return _engine

        sa_url = make_url(url)
        if sa_url.get_backend_name() == "sqlite" and sa_url.database:
            Path(sa_url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        logging.debug("init_db url=%s", sa_url)

        _engine = create_async_engine(url, echo=_DEBUG_SQL, future=True)
        _Session = async_sessionmaker(_engine, expire_on_commit=False)
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        return _engine


async def close_db() -> None:
    global _engine, _Session
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _Session = None


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    if _Session is None:
        raise RuntimeError("Engine not initialized")
    async with _Session() as session:
        yield session
