"""Command line entry point for flocksync."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys

import structlog

from . import log_config
from .api import ApiClient
from .config import CFG_PATH, AppConfig, load_config
from .db.session import close_db, init_db
from .exceptions import ApiError, NotConnectedError
from .realtime.engine import SyncEngine
from .realtime.transport import SocketTransport
from .storage import LocalStore
from .store.conversations import ConversationRef

logger = logging.getLogger(__name__)
log = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Flock realtime sync client")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login = subparsers.add_parser("login", help="Log in and store the auth token")
    login.add_argument("email")

    tail = subparsers.add_parser("tail", help="Follow a flock chat")
    tail.add_argument("flock_id")
    tail.add_argument("--history", type=int, default=20, help="Messages to backfill")

    subparsers.add_parser("check-config", help="Validate the configuration file")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    log_config.setup_logging(debug=args.debug)
    cfg = load_config()

    if args.command == "check-config":
        return _check_config(cfg)
    if args.command == "login":
        return asyncio.run(_login(cfg, args.email))
    if args.command == "tail":
        try:
            return asyncio.run(_tail(cfg, args.flock_id, args.history))
        except KeyboardInterrupt:
            return 0
    return 2


def _check_config(cfg: AppConfig) -> int:
    logger.info("Checking configuration at %s", CFG_PATH)
    if not CFG_PATH.exists():
        logger.warning("Configuration file not found, defaults in use")
    problems = []
    if not cfg.server.base_url.startswith(("http://", "https://")):
        problems.append("server.base_url must be an http(s) URL")
    if cfg.timing.typing_debounce <= 0 or cfg.timing.location_interval <= 0:
        problems.append("timing values must be positive")
    for problem in problems:
        logger.error(problem)
    if not problems:
        logger.info("Configuration looks good.")
    return 1 if problems else 0


async def _login(cfg: AppConfig, email: str) -> int:
    await init_db(cfg.storage.database_url)
    password = getpass.getpass("Password: ")
    try:
        async with ApiClient(
            cfg.server.base_url, timeout=cfg.server.request_timeout
        ) as api:
            try:
                data = await api.login(email, password)
            except ApiError as exc:
                logger.error("Login failed: %s", exc.message)
                return 1
        await LocalStore().set_token(data.get("token"))
        log.info("login.success", user=(data.get("user") or {}).get("name"))
        return 0
    finally:
        await close_db()


async def _tail(cfg: AppConfig, flock_id: str, history: int) -> int:
    await init_db(cfg.storage.database_url)
    try:
        token = await LocalStore().token()
        if not token:
            logger.error("Not logged in; run `flocksync login EMAIL` first")
            return 1
        async with ApiClient(
            cfg.server.base_url,
            token=token,
            timeout=cfg.server.request_timeout,
            search_ttl=cfg.timing.search_cache_ttl,
        ) as api:
            return await _follow(cfg, api, token, flock_id, history)
    finally:
        await close_db()


async def _follow(
    cfg: AppConfig, api: ApiClient, token: str, flock_id: str, history: int
) -> int:
    try:
        me = (await api.me()).get("user") or {}
    except ApiError as exc:
        logger.error("Could not load profile: %s", exc.message)
        return 1
    if me.get("id") is None:
        logger.error("Profile response did not include a user id")
        return 1

    transport = SocketTransport(cfg.server.base_url, cfg.socket)
    engine = SyncEngine(transport, me["id"], me.get("name", ""), api=api, timing=cfg.timing)
    ref = ConversationRef.flock(flock_id)
    seen: set[str] = set()

    def on_change(changed: ConversationRef) -> None:
        if changed != ref:
            return
        for msg in engine.messages(ref):
            if msg.is_temp or msg.id in seen:
                continue
            seen.add(msg.id)
            log.info("chat.message", id=msg.id, sender=msg.sender, text=msg.text, time=msg.time)

    engine.store.subscribe(on_change)
    try:
        await engine.start(token)
    except NotConnectedError as exc:
        logger.error("Socket connection failed: %s", exc)
        return 1

    try:
        engine.open_chat(ref)
        await engine.load_history(ref, limit=history)
        await asyncio.Event().wait()
    finally:
        engine.leave_chat(ref)
        await engine.close()
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
