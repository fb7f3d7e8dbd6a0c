# Maboroshi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Shared configuration loader for maboroshi.

Loads a single JSON config file.  Search order:
  1. $MABOROSHI_CONFIG                      (explicit override)
  2. ~/.config/maboroshi/config.json         (per-user)
  3. config.json                             (current directory)
  4. ../../config/default.json               (repo fallback)

Usage:
    from maboroshi.lib.config import cfg, load_settings

    source   = cfg("search", "source", default="yt")
    settings = load_settings()   # typed snapshot used by the player
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_config: dict | None = None

DEFAULT_SOCKET_PATH = "/tmp/maboroshi.sock"


def _search_paths() -> list[str]:
    paths = []
    override = os.environ.get("MABOROSHI_CONFIG")
    if override:
        paths.append(override)
    paths.append(str(Path.home() / ".config" / "maboroshi" / "config.json"))
    paths.append("config.json")
    paths.append(os.path.join(os.path.dirname(__file__), "..", "..", "config", "default.json"))
    return paths


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    search = config.get("search") or {}
    max_results = search.get("max_results", 15)
    if not isinstance(max_results, int) or max_results < 1:
        logger.warning("Config %s: search.max_results must be a positive integer, got %r", path, max_results)
    cache = config.get("cache") or {}
    for key in ("url_cache_size", "url_cache_ttl", "page_cache_size"):
        val = cache.get(key)
        if val is not None and (not isinstance(val, (int, float)) or val <= 0):
            logger.warning("Config %s: cache.%s must be positive, got %r", path, key, val)
    playback = config.get("playback") or {}
    step = playback.get("volume_step")
    if step is not None and not (1 <= step <= 50):
        logger.warning("Config %s: playback.volume_step should be 1-50, got %r", path, step)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _search_paths():
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.info("No config.json found, using defaults")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("search")                       → config["search"]
    cfg("search", "source")             → config["search"]["source"]
    cfg("cache", "url_cache_ttl", default=7200)  → value or 7200
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()


@dataclass
class Settings:
    """Typed view of the configuration, one field per recognised option."""

    # search
    search_source: str = "yt"
    page_size: int = 15
    search_timeout: float = 30
    cookies_browser: str = "chrome"
    # cache
    url_cache_size: int = 30
    url_cache_ttl: float = 7200
    page_cache_size: int = 10
    # network
    play_timeout: float = 10
    # playback
    default_mode: str = "list_loop"
    seek_seconds: int = 5
    volume_step: int = 5
    tick_interval: float = 0.2
    # paths
    socket_path: str = DEFAULT_SOCKET_PATH
    favorites_file: str = "~/.maboroshi_favorites.json"
    # external tools
    ytdlp: str = "yt-dlp"
    mpv: str = "mpv"
    # control surface
    host: str = "127.0.0.1"
    port: int = 8780

    @property
    def search_prefix(self) -> str:
        """yt-dlp search prefix: "yt" → "ytsearch", "bilisearch" unchanged."""
        if self.search_source.endswith("search"):
            return self.search_source
        return f"{self.search_source}search"

    def resolved_socket_path(self, pid: int | None = None) -> str:
        """Per-instance socket path when the stock default is configured."""
        if self.socket_path == DEFAULT_SOCKET_PATH:
            return f"/tmp/maboroshi-{pid if pid is not None else os.getpid()}.sock"
        return self.socket_path


def load_settings() -> Settings:
    """Build Settings from the loaded config file, falling back to defaults."""
    d = Settings()
    return Settings(
        search_source=cfg("search", "source", default=d.search_source),
        page_size=int(cfg("search", "max_results", default=d.page_size)),
        search_timeout=float(cfg("search", "timeout", default=d.search_timeout)),
        cookies_browser=cfg("search", "cookies_browser", default=d.cookies_browser) or "",
        url_cache_size=int(cfg("cache", "url_cache_size", default=d.url_cache_size)),
        url_cache_ttl=float(cfg("cache", "url_cache_ttl", default=d.url_cache_ttl)),
        page_cache_size=int(cfg("cache", "page_cache_size", default=d.page_cache_size)),
        play_timeout=float(cfg("network", "play_timeout", default=d.play_timeout)),
        default_mode=cfg("playback", "default_mode", default=d.default_mode),
        seek_seconds=int(cfg("playback", "seek_seconds", default=d.seek_seconds)),
        volume_step=int(cfg("playback", "volume_step", default=d.volume_step)),
        tick_interval=float(cfg("playback", "tick_interval", default=d.tick_interval)),
        socket_path=cfg("paths", "socket_path", default=d.socket_path),
        favorites_file=cfg("paths", "favorites_file", default=d.favorites_file),
        ytdlp=cfg("tools", "ytdlp", default=d.ytdlp),
        mpv=cfg("tools", "mpv", default=d.mpv),
        host=cfg("service", "host", default=d.host),
        port=int(cfg("service", "port", default=d.port)),
    )
