"""Shared fixtures for the maboroshi test suite."""

import dataclasses
import shutil
import tempfile
from contextlib import asynccontextmanager

import pytest

from maboroshi.lib import config
from maboroshi.lib.config import Settings
from maboroshi.lib.mpv_ipc import PauseState, PlaybackMirror


class FakeGateway:
    """ProcessGateway stand-in: canned pages, URLs derived from the keyword."""

    def __init__(self):
        self.pages = {}
        self.search_calls = []
        self.resolve_calls = []
        self.started = []
        self.block = None
        self.resolve_error = None

    async def run_search(self, keyword, page=1, log_fn=None):
        self.search_calls.append((keyword, page))
        if log_fn:
            log_fn(f"Searching '{keyword}' (page {page})")
        if self.block is not None:
            await self.block.wait()
        return list(self.pages.get((keyword, page), []))

    async def resolve_stream(self, keyword, log_fn=None):
        self.resolve_calls.append(keyword)
        if self.resolve_error:
            raise self.resolve_error
        return f"https://cdn/{keyword}"

    async def start_playback(self, url):
        self.started.append(url)
        return object()


class FakeClient:
    """ControlSocketClient stand-in with a directly settable mirror."""

    def __init__(self):
        self.mirror = PlaybackMirror()
        self.commands = []
        self.shutdowns = 0
        self.attached = 0

    async def attach(self, process):
        self.attached += 1
        self.mirror = PlaybackMirror(progress=0.0, pause_state=PauseState.PLAYING, volume=100)

    @asynccontextmanager
    async def launch_guard(self):
        try:
            yield self
        except BaseException:
            await self.shutdown()
            raise

    async def shutdown(self):
        self.shutdowns += 1
        self.mirror = PlaybackMirror()

    async def current_mirror(self):
        return dataclasses.replace(self.mirror)

    async def send_command(self, *args, expect_reply=True):
        self.commands.append(args)


@pytest.fixture
def short_tmp():
    """A short temp directory; AF_UNIX paths must stay under ~100 bytes."""
    path = tempfile.mkdtemp(prefix="mb-")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def settings(tmp_path, short_tmp):
    return Settings(
        favorites_file=str(tmp_path / "favorites.json"),
        socket_path=f"{short_tmp}/mpv.sock",
        cookies_browser="",
        tick_interval=0.01,
    )


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch, tmp_path):
    """Point the config loader at an empty file and drop its cache."""
    cfg_file = tmp_path / "config.json"
    cfg_file.write_text("{}")
    monkeypatch.setenv("MABOROSHI_CONFIG", str(cfg_file))
    config._config = None
    yield cfg_file
    config._config = None


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def fake_client():
    return FakeClient()
