# Maboroshi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
ProcessGateway: runs the external tools.

    yt-dlp   search (one JSON object per stdout line) and stream resolution
    mpv      audio playback, controlled through its IPC socket

Every yt-dlp run is bounded by a deadline; on expiry, or when the calling
task is cancelled, the child is killed and reaped before the error or the
cancellation propagates, so no tool outlives the request that started it.

The mpv process handed back by start_playback() is owned by the caller
(ControlSocketClient.attach) from then on.
"""

import asyncio
import json
import logging
import os
import subprocess

from .config import Settings
from .errors import DeadlineExceeded, LaunchError, NotFoundError, ToolError
from .session import SearchResult

log = logging.getLogger(__name__)

# Extra entries requested past the page end.  Some sources return fewer
# items than asked for; without the slack a full page looks like the last.
SEARCH_OVERFETCH = 5
MAX_DIAG_LINES = 20
TERMINATE_GRACE = 2.0

_EXTRA_PATHS = ("/opt/homebrew/bin", "/usr/local/bin")


def extended_path(current: str | None = None) -> str:
    """PATH with the usual Homebrew locations, unless already present."""
    current = os.environ.get("PATH", "") if current is None else current
    if any(p in current.split(os.pathsep) for p in _EXTRA_PATHS):
        return current
    return os.pathsep.join([*_EXTRA_PATHS, current]) if current else os.pathsep.join(_EXTRA_PATHS)


def truncate_diagnostics(text: str, max_lines: int = MAX_DIAG_LINES) -> str:
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) <= max_lines:
        return "\n".join(lines)
    omitted = len(lines) - max_lines
    return "\n".join(lines[:max_lines] + [f"... ({omitted} lines omitted)"])


def parse_search_output(stdout: str) -> list[SearchResult]:
    """One result per JSON line with a string ``title``; anything else is skipped."""
    results = []
    for line in stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            item = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(item, dict):
            continue
        title = item.get("title")
        if isinstance(title, str) and title:
            results.append(SearchResult(title=title))
    return results


async def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()


async def terminate_process(proc: asyncio.subprocess.Process, grace: float = TERMINATE_GRACE) -> None:
    """SIGTERM, then SIGKILL after *grace* seconds; always reaps."""
    if proc.returncode is not None:
        return
    try:
        proc.terminate()
    except ProcessLookupError:
        pass
    try:
        await asyncio.wait_for(proc.wait(), grace)
    except asyncio.TimeoutError:
        log.warning("Process %s ignored SIGTERM, killing", proc.pid)
        await _kill(proc)


def _noop(message: str) -> None:
    pass


class ProcessGateway:
    def __init__(self, settings: Settings, socket_path: str):
        self.settings = settings
        self.socket_path = socket_path

    def _env(self) -> dict:
        env = os.environ.copy()
        env["PATH"] = extended_path(env.get("PATH", ""))
        return env

    def _cookie_args(self) -> list[str]:
        if self.settings.cookies_browser:
            return ["--cookies-from-browser", self.settings.cookies_browser]
        return []

    # ── Command lines ──

    def build_search_command(self, keyword: str, page: int) -> list[str]:
        size = self.settings.page_size
        start = (page - 1) * size + 1
        end = page * size
        return [
            self.settings.ytdlp,
            *self._cookie_args(),
            "--dump-json",
            "--flat-playlist",
            "--playlist-items", f"{start}-{end}",
            f"{self.settings.search_prefix}{end + SEARCH_OVERFETCH}:{keyword}",
        ]

    def build_resolve_command(self, keyword: str) -> list[str]:
        return [
            self.settings.ytdlp,
            *self._cookie_args(),
            "--get-url",
            "-f", "bestaudio",
            f"{self.settings.search_prefix}1:{keyword}",
        ]

    def build_playback_command(self, url: str) -> list[str]:
        return [
            self.settings.mpv,
            "--no-video",
            "--no-terminal",
            f"--input-ipc-server={self.socket_path}",
            "--cache=yes",
            url,
        ]

    # ── Tool runs ──

    async def _run_tool(self, argv: list[str], timeout: float) -> tuple[str, str]:
        tool = os.path.basename(argv[0])
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._env(),
            )
        except OSError as e:
            raise LaunchError(f"Could not start {tool}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            raise DeadlineExceeded(f"{tool} timed out after {timeout:g}s") from None
        finally:
            # Cancelled mid-run: take the child down with us.
            if proc.returncode is None:
                await _kill(proc)

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise ToolError(tool, proc.returncode, truncate_diagnostics(err))
        return out, err

    async def run_search(self, keyword: str, page: int = 1, log_fn=None) -> list[SearchResult]:
        emit = log_fn or _noop
        argv = self.build_search_command(keyword, page)
        emit(f"Searching '{keyword}' (page {page})")
        log.debug("Search command: %s", argv)
        out, err = await self._run_tool(argv, self.settings.search_timeout)
        for line in truncate_diagnostics(err, 3).splitlines():
            emit(f"[yt-dlp] {line}")
        results = parse_search_output(out)[: self.settings.page_size]
        emit(f"Found {len(results)} results")
        return results

    async def resolve_stream(self, keyword: str, log_fn=None) -> str:
        emit = log_fn or _noop
        emit(f"Resolving audio stream for '{keyword}'")
        out, _ = await self._run_tool(self.build_resolve_command(keyword), self.settings.play_timeout)
        url = next((line.strip() for line in out.splitlines() if line.strip()), "")
        if not url:
            raise NotFoundError(f"No audio stream found for '{keyword}'")
        emit(f"Got stream URL: {url[:50]}...")
        return url

    async def start_playback(self, url: str) -> asyncio.subprocess.Process:
        argv = self.build_playback_command(url)
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=self._env(),
            )
        except OSError as e:
            raise LaunchError(f"Could not start {os.path.basename(argv[0])}: {e}") from e
        log.info("mpv started (pid %s), socket %s", proc.pid, self.socket_path)
        return proc

    async def terminate(self, proc: asyncio.subprocess.Process) -> None:
        await terminate_process(proc)
