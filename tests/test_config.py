"""Tests for the config loader and Settings."""

import json
import logging

from maboroshi.lib import config
from maboroshi.lib.config import DEFAULT_SOCKET_PATH, Settings, cfg, load_settings


def write_config(path, data):
    path.write_text(json.dumps(data))
    config._config = None


def test_defaults_when_empty(fresh_config):
    settings = load_settings()
    assert settings == Settings()


def test_values_from_file(fresh_config):
    write_config(fresh_config, {
        "search": {"source": "bili", "max_results": 20, "cookies_browser": None},
        "cache": {"url_cache_ttl": 60},
        "playback": {"default_mode": "shuffle", "seek_seconds": 10},
        "paths": {"socket_path": "/run/mb.sock"},
        "service": {"port": 9000},
    })
    settings = load_settings()
    assert settings.search_source == "bili"
    assert settings.search_prefix == "bilisearch"
    assert settings.page_size == 20
    assert settings.cookies_browser == ""
    assert settings.url_cache_ttl == 60
    assert settings.default_mode == "shuffle"
    assert settings.seek_seconds == 10
    assert settings.resolved_socket_path() == "/run/mb.sock"
    assert settings.port == 9000


def test_cfg_lookup(fresh_config):
    write_config(fresh_config, {"search": {"timeout": 12}})
    assert cfg("search", "timeout") == 12
    assert cfg("search", "missing", default="x") == "x"
    assert cfg("nope", default={}) == {}


def test_invalid_json_falls_through(fresh_config, caplog):
    fresh_config.write_text("{not json")
    config._config = None
    with caplog.at_level(logging.ERROR):
        config.load_config()
    assert "Invalid JSON" in caplog.text


def test_suspicious_values_warned(fresh_config, caplog):
    with caplog.at_level(logging.WARNING):
        write_config(fresh_config, {"search": {"max_results": 0}, "playback": {"volume_step": 99}})
        config.load_config()
    assert "search.max_results" in caplog.text
    assert "playback.volume_step" in caplog.text


def test_default_socket_is_per_process():
    settings = Settings(socket_path=DEFAULT_SOCKET_PATH)
    assert settings.resolved_socket_path(pid=321) == "/tmp/maboroshi-321.sock"


def test_search_prefix_kept_when_complete():
    assert Settings(search_source="ytsearch").search_prefix == "ytsearch"
    assert Settings(search_source="yt").search_prefix == "ytsearch"
