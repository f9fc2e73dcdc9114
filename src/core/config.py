# core/config.py
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from core.errors import PlayerError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config.json"

def clamp_volume(v: int) -> int:
    return max(0, min(100, int(v)))

@dataclass(frozen=True)
class PlayerConfig:
    lavalink_host: str = "localhost"
    lavalink_port: int = 2333
    lavalink_password: str = "youshallnotpass"
    default_volume: int = 50
    search_prefix: str = "ytsearch"
    request_timeout_s: float = 10.0
    progress_interval_s: float = 0.1

    def __post_init__(self):
        object.__setattr__(self, "default_volume", clamp_volume(self.default_volume))

def default_config_path() -> Path:
    return Path(os.getenv("LAVPLAYER_CONFIG") or DEFAULT_CONFIG_FILE)

def _from_json(data: dict) -> PlayerConfig:
    lavalink = data.get("lavalink") or {}
    player = data.get("player") or {}
    base = PlayerConfig()
    try:
        return PlayerConfig(
            lavalink_host=str(lavalink.get("host", base.lavalink_host)),
            lavalink_port=int(lavalink.get("port", base.lavalink_port)),
            lavalink_password=str(lavalink.get("password", base.lavalink_password)),
            default_volume=int(player.get("defaultVolume", base.default_volume)),
            search_prefix=str(player.get("searchPrefix", base.search_prefix)),
        )
    except (TypeError, ValueError) as e:
        raise PlayerError(f"Invalid configuration value: {e}") from e

def _apply_env(cfg: PlayerConfig) -> PlayerConfig:
    overrides = {}
    if os.getenv("LAVPLAYER_HOST"):
        overrides["lavalink_host"] = os.environ["LAVPLAYER_HOST"]
    if os.getenv("LAVPLAYER_PASSWORD"):
        overrides["lavalink_password"] = os.environ["LAVPLAYER_PASSWORD"]
    try:
        if os.getenv("LAVPLAYER_PORT"):
            overrides["lavalink_port"] = int(os.environ["LAVPLAYER_PORT"])
        if os.getenv("LAVPLAYER_VOLUME"):
            overrides["default_volume"] = int(os.environ["LAVPLAYER_VOLUME"])
    except ValueError as e:
        raise PlayerError(f"Invalid environment override: {e}") from e
    return replace(cfg, **overrides) if overrides else cfg

def load_config(path: str | os.PathLike | None = None) -> PlayerConfig:
    """
    Load the player configuration.

    File shape (same as the desktop app's config.json):
        {"lavalink": {"host", "port", "password"},
         "player": {"defaultVolume", "searchPrefix"}}

    A missing file falls back to defaults; LAVPLAYER_* env vars win over both.
    """
    p = Path(path) if path is not None else default_config_path()

    if p.is_file():
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PlayerError(f"Failed to load configuration from {p}: {e}") from e
        if not isinstance(data, dict):
            raise PlayerError(f"Configuration root must be an object: {p}")
        cfg = _from_json(data)
        logger.info("Loaded configuration from %s", p)
    else:
        logger.info("No configuration file at %s, using defaults", p)
        cfg = PlayerConfig()

    return _apply_env(cfg)
