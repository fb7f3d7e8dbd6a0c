# Maboroshi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
ControlSocketClient: mpv JSON IPC.

Two kinds of connection to the player's control socket:

  persistent   opened by attach(); subscribes to percent-pos, pause and
               volume, and a background listener mirrors every
               property-change into a PlaybackMirror.
  one-shot     opened per send_command() call (seek, volume, pause, quit)
               with a short deadline on every step, so a hung socket can't
               stall the caller.

The mirror's pause_state becomes STOPPED whenever the listener starts or
ends.  EOF on the persistent connection (mpv exited, crashed, or reached
the end of the file) is how the rest of the player learns a song is over.

Locks: _mirror_lock before _process_lock, never the other way round.
Neither is held while sending a command.
"""

import asyncio
import dataclasses
import itertools
import json
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum

from .errors import (DeadlineExceeded, LaunchError, MaboroshiError,
                     ProtocolError, SocketConnectionError)
from .gateway import terminate_process
from .tasks import cancel_and_wait

log = logging.getLogger(__name__)

COMMAND_TIMEOUT = 0.1        # seconds, per connect / write / reply
SOCKET_WAIT_ATTEMPTS = 30    # x SOCKET_WAIT_INTERVAL = 3 s
SOCKET_WAIT_INTERVAL = 0.1
FIRST_EVENT_TIMEOUT = 1.0
MAX_VOLUME = 130

OBSERVED_PROPERTIES = ("percent-pos", "pause", "volume")


class PauseState(Enum):
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass
class PlaybackMirror:
    progress: float = 0.0
    pause_state: PauseState = PauseState.STOPPED
    volume: int = 100


def _clamp(value, low, high):
    return max(low, min(high, value))


class ControlSocketClient:
    def __init__(self, socket_path: str, command_timeout: float = COMMAND_TIMEOUT):
        self.socket_path = socket_path
        self.command_timeout = command_timeout
        self._mirror = PlaybackMirror()
        self._mirror_lock = asyncio.Lock()
        self._process_lock = asyncio.Lock()
        self._process: asyncio.subprocess.Process | None = None
        self._listener: asyncio.Task | None = None
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._first_pause = asyncio.Event()
        self._request_ids = itertools.count(1)

    @property
    def listening(self) -> bool:
        return self._listener is not None and not self._listener.done()

    # ── mpv lifecycle ──

    async def attach(self, process, attempts=SOCKET_WAIT_ATTEMPTS,
                     interval=SOCKET_WAIT_INTERVAL, first_event_timeout=FIRST_EVENT_TIMEOUT):
        """Own *process*, connect to its socket, subscribe and start listening."""
        async with self._process_lock:
            self._process = process

        # Wait for IPC socket and connect
        for attempt in range(attempts):
            if process.returncode is not None:
                raise LaunchError(f"mpv exited immediately (status {process.returncode})")
            if os.path.exists(self.socket_path):
                try:
                    self._reader, self._writer = await asyncio.open_unix_connection(self.socket_path)
                    log.debug("Control socket ready after %d ms", attempt * int(interval * 1000))
                    break
                except (ConnectionRefusedError, FileNotFoundError):
                    pass
            await asyncio.sleep(interval)
        else:
            raise SocketConnectionError(f"Could not connect to mpv IPC at {self.socket_path}")

        self._first_pause.clear()
        self._listener = asyncio.create_task(self._listen())
        for observe_id, name in enumerate(OBSERVED_PROPERTIES, start=1):
            await self._send_persistent({"command": ["observe_property", observe_id, name]})

        # mpv answers observe_property with the current value straight away;
        # wait for it so the mirror isn't read as STOPPED right after launch.
        try:
            await asyncio.wait_for(self._first_pause.wait(), first_event_timeout)
        except asyncio.TimeoutError:
            log.warning("No pause state from mpv after %.1fs", first_event_timeout)

    @asynccontextmanager
    async def launch_guard(self):
        """Tear the player down unless the block (spawn + attach) completes.

        Covers errors and cancellation of the launching task alike.
        """
        try:
            yield self
        except BaseException:
            await asyncio.shield(self.shutdown())
            raise

    async def shutdown(self):
        """Stop listening, quit mpv, remove the socket, reap the process.

        Safe to call any number of times.  Errors here are logged, not raised.
        """
        # 1. listener
        if self._listener is not None:
            await cancel_and_wait(self._listener)
            self._listener = None
        await self._close_persistent()

        # 2. mirror
        await self._reset_mirror()

        # 3. quit (no lock held)
        if os.path.exists(self.socket_path):
            try:
                await self.send_command("quit", expect_reply=False)
            except MaboroshiError as e:
                log.debug("quit not delivered: %s", e)

        # 4. socket file
        try:
            os.unlink(self.socket_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning("Could not remove %s: %s", self.socket_path, e)

        # 5. process
        async with self._process_lock:
            process, self._process = self._process, None
            if process is not None:
                try:
                    await terminate_process(process)
                except OSError as e:
                    log.warning("Could not stop mpv (pid %s): %s", process.pid, e)

    # ── Mirror ──

    async def current_mirror(self) -> PlaybackMirror:
        async with self._mirror_lock:
            return dataclasses.replace(self._mirror)

    async def _reset_mirror(self):
        async with self._mirror_lock:
            self._mirror.progress = 0.0
            self._mirror.pause_state = PauseState.STOPPED

    async def _apply_property(self, name, data):
        async with self._mirror_lock:
            if name == "percent-pos":
                if isinstance(data, (int, float)) and not isinstance(data, bool):
                    self._mirror.progress = _clamp(data / 100.0, 0.0, 1.0)
                elif data is None:
                    self._mirror.progress = 0.0
            elif name == "pause":
                if isinstance(data, bool):
                    self._mirror.pause_state = PauseState.PAUSED if data else PauseState.PLAYING
                    self._first_pause.set()
            elif name == "volume":
                if isinstance(data, (int, float)) and not isinstance(data, bool):
                    self._mirror.volume = _clamp(int(round(data)), 0, MAX_VOLUME)

    # ── Persistent connection ──

    async def _send_persistent(self, cmd_obj):
        if not self._writer:
            raise SocketConnectionError("Control socket is not connected")
        try:
            self._writer.write(json.dumps(cmd_obj).encode() + b"\n")
            await self._writer.drain()
        except OSError as e:
            raise SocketConnectionError(f"mpv IPC send error: {e}") from e

    async def _close_persistent(self):
        if self._writer:
            try:
                self._writer.close()
                await self._writer.wait_closed()
            except OSError:
                pass
        self._reader = None
        self._writer = None

    async def _listen(self):
        """Background task: mirrors mpv property changes until EOF."""
        await self._reset_mirror()
        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    log.info("mpv closed the control socket")
                    break  # EOF, mpv closed
                try:
                    msg = json.loads(line)
                except (json.JSONDecodeError, UnicodeDecodeError):
                    log.debug("Skipping undecodable IPC line: %r", line[:80])
                    continue
                if not isinstance(msg, dict):
                    continue
                if msg.get("event") == "property-change":
                    await self._apply_property(msg.get("name"), msg.get("data"))
                elif msg.get("error") not in (None, "success"):
                    log.warning("mpv rejected a request: %s", msg.get("error"))
        except (OSError, ValueError) as e:
            log.debug("IPC listener ended: %s", e)
        finally:
            await self._reset_mirror()

    # ── One-shot commands ──

    async def send_command(self, *args, expect_reply: bool = True):
        """Send ``{"command": [...]}`` on a fresh connection.

        Returns the reply's ``data`` (None when expect_reply is False).
        """
        if not os.path.exists(self.socket_path):
            raise SocketConnectionError("Control socket not available")

        request_id = next(self._request_ids)
        payload = json.dumps({"command": list(args), "request_id": request_id}).encode() + b"\n"
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_unix_connection(self.socket_path), self.command_timeout)
        except asyncio.TimeoutError:
            raise DeadlineExceeded("Timed out connecting to mpv") from None
        except OSError as e:
            raise SocketConnectionError(f"Could not connect to mpv: {e}") from e

        try:
            writer.write(payload)
            await asyncio.wait_for(writer.drain(), self.command_timeout)
            if not expect_reply:
                return None
            return await asyncio.wait_for(self._read_reply(reader, request_id), self.command_timeout)
        except asyncio.TimeoutError:
            raise DeadlineExceeded(f"mpv did not answer '{args[0]}' in time") from None
        except OSError as e:
            raise SocketConnectionError(f"mpv IPC error: {e}") from e
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def _read_reply(self, reader: asyncio.StreamReader, request_id: int):
        while True:
            line = await reader.readline()
            if not line:
                raise ProtocolError("mpv closed the connection before replying")
            try:
                msg = json.loads(line)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ProtocolError(f"Malformed reply from mpv: {e}") from e
            if not isinstance(msg, dict):
                raise ProtocolError(f"Unexpected reply from mpv: {msg!r}")
            if "event" in msg:
                continue  # events broadcast to every client
            if msg.get("request_id", request_id) != request_id:
                continue
            error = msg.get("error")
            if error != "success":
                raise ProtocolError(f"mpv error: {error}")
            return msg.get("data")
