"""Tests for ProcessGateway, driven by small shell scripts standing in for yt-dlp."""

import asyncio
import os
import stat

import pytest

from maboroshi.lib.errors import DeadlineExceeded, LaunchError, NotFoundError, ToolError
from maboroshi.lib.gateway import (ProcessGateway, extended_path, parse_search_output,
                                   truncate_diagnostics)


def write_script(tmp_path, body, name="fake-ytdlp"):
    path = tmp_path / name
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def gateway(settings):
    return ProcessGateway(settings, settings.socket_path)


class TestCommandLines:
    def test_search_command_page_two(self, gateway):
        argv = gateway.build_search_command("lofi", 2)
        assert argv == ["yt-dlp", "--dump-json", "--flat-playlist",
                        "--playlist-items", "16-30", "ytsearch35:lofi"]

    def test_cookies_added_when_configured(self, gateway):
        gateway.settings.cookies_browser = "firefox"
        argv = gateway.build_resolve_command("lofi")
        assert argv == ["yt-dlp", "--cookies-from-browser", "firefox",
                        "--get-url", "-f", "bestaudio", "ytsearch1:lofi"]

    def test_source_prefix(self, gateway):
        gateway.settings.search_source = "bilisearch"
        assert gateway.build_resolve_command("x")[-1] == "bilisearch1:x"

    def test_playback_command(self, gateway):
        argv = gateway.build_playback_command("https://cdn/a")
        assert argv[0] == "mpv"
        assert f"--input-ipc-server={gateway.socket_path}" in argv
        assert "--no-video" in argv
        assert argv[-1] == "https://cdn/a"


class TestHelpers:
    def test_parse_skips_bad_lines(self):
        out = '\n'.join([
            '{"title": "One"}',
            'garbage',
            '{"id": "no-title"}',
            '[1, 2]',
            '',
            '{"title": "Two", "id": "x"}',
        ])
        assert [r.title for r in parse_search_output(out)] == ["One", "Two"]

    def test_truncate_keeps_short_text(self):
        assert truncate_diagnostics("a\n\nb\n") == "a\nb"

    def test_truncate_marks_omitted_lines(self):
        text = "\n".join(f"line {i}" for i in range(25))
        lines = truncate_diagnostics(text).splitlines()
        assert len(lines) == 21
        assert lines[-1] == "... (5 lines omitted)"

    def test_extended_path_adds_homebrew(self):
        assert extended_path("/usr/bin").split(os.pathsep) == [
            "/opt/homebrew/bin", "/usr/local/bin", "/usr/bin"]

    def test_extended_path_unchanged_when_present(self):
        assert extended_path("/usr/local/bin:/usr/bin") == "/usr/local/bin:/usr/bin"


class TestToolRuns:
    @pytest.mark.asyncio
    async def test_search_parses_results(self, gateway, tmp_path):
        gateway.settings.ytdlp = write_script(tmp_path, "\n".join([
            "echo '{\"title\": \"Lofi 1\"}'",
            "echo 'not json'",
            "echo '{\"title\": \"Lofi 2\"}'",
            "echo 'WARNING: slow' >&2",
        ]))
        lines = []
        results = await gateway.run_search("lofi", 1, lines.append)
        assert [r.title for r in results] == ["Lofi 1", "Lofi 2"]
        assert "[yt-dlp] WARNING: slow" in lines
        assert lines[-1] == "Found 2 results"

    @pytest.mark.asyncio
    async def test_search_trims_to_page_size(self, gateway, tmp_path):
        gateway.settings.page_size = 3
        gateway.settings.ytdlp = write_script(
            tmp_path, "for i in 1 2 3 4 5; do echo \"{\\\"title\\\": \\\"t$i\\\"}\"; done")
        results = await gateway.run_search("x")
        assert [r.title for r in results] == ["t1", "t2", "t3"]

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_tool_error(self, gateway, tmp_path):
        gateway.settings.ytdlp = write_script(
            tmp_path, "i=0; while [ $i -lt 30 ]; do echo \"err $i\" >&2; i=$((i+1)); done; exit 2")
        with pytest.raises(ToolError) as excinfo:
            await gateway.run_search("x")
        assert excinfo.value.returncode == 2
        assert excinfo.value.diagnostics.splitlines()[-1] == "... (10 lines omitted)"

    @pytest.mark.asyncio
    async def test_deadline_kills_child(self, gateway, tmp_path):
        gateway.settings.search_timeout = 0.2
        gateway.settings.ytdlp = write_script(tmp_path, "exec sleep 30")
        with pytest.raises(DeadlineExceeded):
            await gateway.run_search("x")

    @pytest.mark.asyncio
    async def test_missing_binary_is_launch_error(self, gateway, tmp_path):
        gateway.settings.ytdlp = str(tmp_path / "does-not-exist")
        with pytest.raises(LaunchError):
            await gateway.resolve_stream("x")

    @pytest.mark.asyncio
    async def test_cancel_reaps_child(self, gateway, tmp_path):
        pid_file = tmp_path / "pid"
        gateway.settings.ytdlp = write_script(tmp_path, f"echo $$ > {pid_file}\nexec sleep 30")
        task = asyncio.create_task(gateway.run_search("x"))
        for _ in range(100):
            if pid_file.exists() and pid_file.read_text().strip():
                break
            await asyncio.sleep(0.02)
        pid = int(pid_file.read_text())

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)

    @pytest.mark.asyncio
    async def test_resolve_returns_first_line(self, gateway, tmp_path):
        gateway.settings.ytdlp = write_script(tmp_path, "echo\necho 'https://cdn/a'\necho 'https://cdn/b'")
        assert await gateway.resolve_stream("x") == "https://cdn/a"

    @pytest.mark.asyncio
    async def test_resolve_empty_output_is_not_found(self, gateway, tmp_path):
        gateway.settings.ytdlp = write_script(tmp_path, "exit 0")
        with pytest.raises(NotFoundError):
            await gateway.resolve_stream("x")

    @pytest.mark.asyncio
    async def test_start_playback_and_terminate(self, gateway, tmp_path):
        gateway.settings.mpv = write_script(tmp_path, "exec sleep 30", name="fake-mpv")
        proc = await gateway.start_playback("https://cdn/a")
        assert proc.returncode is None
        await gateway.terminate(proc)
        assert proc.returncode is not None

    @pytest.mark.asyncio
    async def test_start_playback_missing_binary(self, gateway, tmp_path):
        gateway.settings.mpv = str(tmp_path / "no-mpv")
        with pytest.raises(LaunchError):
            await gateway.start_playback("https://cdn/a")
