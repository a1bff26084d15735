"""Configuration handling for flocksync.

Settings live in a JSON file that is created on first save. The file stores the
API base URL, socket reconnection options, the timing constants used by the
sync engine and the location of the local cache database. Missing sections fall
back to their defaults so older files keep loading.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
import json
import logging

CFG_PATH = Path.home() / ".config" / "flocksync" / "config.json"


@dataclass
class ServerConfig:
    base_url: str = "https://flock-app-production.up.railway.app"
    request_timeout: float = 15.0


@dataclass
class SocketConfig:
    transports: list[str] = field(default_factory=lambda: ["websocket", "polling"])
    reconnection: bool = True
    reconnection_attempts: int = 10
    reconnection_delay: float = 1.0


@dataclass
class TimingConfig:
    """Timer durations in seconds."""

    typing_debounce: float = 2.0
    remote_typing_timeout: float = 5.0
    location_interval: float = 10.0
    toast_duration: float = 2.0
    search_cache_ttl: float = 300.0


@dataclass
class StorageConfig:
    database_url: str = f"sqlite+aiosqlite:///{Path.home() / '.config' / 'flocksync' / 'local.db'}"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    socket: SocketConfig = field(default_factory=SocketConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


def load_config(path: Path | None = None) -> AppConfig:
    path = path or CFG_PATH
    if not path.exists():
        return AppConfig()
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError:
        logging.warning("Invalid JSON in %s, using defaults", path)
        return AppConfig()
    try:
        return AppConfig(
            server=ServerConfig(**data.get("server", {})),
            socket=SocketConfig(**data.get("socket", {})),
            timing=TimingConfig(**data.get("timing", {})),
            storage=StorageConfig(**data.get("storage", {})),
        )
    except TypeError as exc:
        logging.warning("Unknown keys in %s (%s), using defaults", path, exc)
        return AppConfig()


def save_config(cfg: AppConfig, path: Path | None = None) -> None:
    path = path or CFG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(cfg), indent=2))
    try:
        path.chmod(0o600)
    except OSError as exc:  # pragma: no cover - platform dependent
        logging.warning("Unable to set permissions on %s: %s", path, exc)
