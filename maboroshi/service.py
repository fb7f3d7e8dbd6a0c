# Maboroshi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Maboroshi HTTP control surface.

  GET  /status    session snapshot
  POST /command   {"command": "<name>", ...}
  GET  /ws        push-only WebSocket, {"type": "state", "data": {...}}
                  whenever the snapshot changes

Run with ``maboroshi`` (or ``python -m maboroshi.service``).
"""

import argparse
import asyncio
import json
import logging

from aiohttp import web

from . import __version__
from .lib.config import load_settings
from .lib.tasks import cancel_and_wait
from .player import Player

logger = logging.getLogger("maboroshi")

BROADCAST_INTERVAL = 0.2


@web.middleware
async def cors_middleware(request, handler):
    if request.method == "OPTIONS":
        resp = web.Response()
    else:
        resp = await handler(request)
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return resp


class PlayerService:
    """Binds a Player to aiohttp routes and pushes state to WebSocket clients."""

    def __init__(self, player: Player, on_quit=None, broadcast_interval=BROADCAST_INTERVAL):
        self.player = player
        self.on_quit = on_quit
        self.broadcast_interval = broadcast_interval
        self._ws_clients: set[web.WebSocketResponse] = set()
        self._broadcast_task: asyncio.Task | None = None
        self._last_state: str | None = None

        self.commands = {
            "search": self._cmd_search,
            "play": self._cmd_play,
            "play_selected": lambda data: player.play_selected_result(),
            "play_favorite": lambda data: player.play_favorite(),
            "toggle_pause": lambda data: player.toggle_pause(),
            "seek_forward": lambda data: player.seek_forward(),
            "seek_backward": lambda data: player.seek_backward(),
            "volume_up": lambda data: player.volume_up(),
            "volume_down": lambda data: player.volume_down(),
            "next_page": lambda data: player.next_page(),
            "prev_page": lambda data: player.prev_page(),
            "cancel_results": lambda data: player.cancel_results(),
            "select_next": lambda data: player.select_next(),
            "select_prev": lambda data: player.select_prev(),
            "toggle_favorite": lambda data: player.toggle_favorite(),
            "toggle_play_mode": lambda data: player.toggle_play_mode(),
            "quit": self._cmd_quit,
        }

    # ── Commands ──

    async def _cmd_search(self, data):
        keyword = str(data.get("keyword") or "").strip()
        if not keyword:
            raise ValueError("'keyword' required")
        await self.player.search(keyword)

    async def _cmd_play(self, data):
        title = str(data.get("title") or "").strip()
        if not title:
            raise ValueError("'title' required")
        await self.player.search_and_play(title, data.get("source"))

    async def _cmd_quit(self, data):
        await self.player.quit()
        if self.on_quit:
            self.on_quit()

    # ── Route handlers ──

    async def handle_status(self, request: web.Request) -> web.Response:
        return web.json_response(await self.player.snapshot())

    async def handle_command(self, request: web.Request) -> web.Response:
        try:
            data = await request.json()
        except json.JSONDecodeError:
            return web.json_response({"status": "error", "message": "invalid json"}, status=400)
        if not isinstance(data, dict):
            return web.json_response({"status": "error", "message": "expected an object"}, status=400)

        cmd = data.get("command", "")
        handler = self.commands.get(cmd)
        if handler is None:
            return web.json_response(
                {"status": "error", "message": f"Unknown command: {cmd}"}, status=400)

        try:
            await handler(data)
        except ValueError as e:
            return web.json_response({"status": "error", "message": str(e)}, status=400)
        except Exception as e:
            logger.exception("Command error")
            return web.json_response({"status": "error", "message": str(e)}, status=500)
        return web.json_response({"status": "ok", "command": cmd})

    async def handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        self._ws_clients.add(ws)
        logger.info("WebSocket client connected (%d total)", len(self._ws_clients))
        try:
            await ws.send_json({"type": "state", "data": await self.player.snapshot()})
            async for msg in ws:
                pass  # push-only
        finally:
            self._ws_clients.discard(ws)
            logger.info("WebSocket client disconnected (%d remaining)", len(self._ws_clients))
        return ws

    # ── State push ──

    async def broadcast_state(self):
        """Send the snapshot to every client if it changed since last time."""
        snapshot = await self.player.snapshot()
        message = json.dumps({"type": "state", "data": snapshot})
        if message == self._last_state:
            return
        self._last_state = message
        if not self._ws_clients:
            return

        disconnected = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send_str(message)
            except (ConnectionError, RuntimeError):
                disconnected.add(ws)
        self._ws_clients -= disconnected

    async def _broadcast_loop(self):
        while True:
            try:
                await self.broadcast_state()
            except Exception as e:
                logger.error("Broadcast error: %s", e)
            await asyncio.sleep(self.broadcast_interval)

    # ── App lifecycle ──

    async def on_startup(self, app: web.Application):
        await self.player.start()
        self._broadcast_task = asyncio.create_task(self._broadcast_loop())

    async def on_shutdown(self, app: web.Application):
        for ws in list(self._ws_clients):
            await ws.close()
        self._ws_clients.clear()

    async def on_cleanup(self, app: web.Application):
        await cancel_and_wait(self._broadcast_task)
        self._broadcast_task = None
        await self.player.quit()


def create_app(player: Player, on_quit=None) -> web.Application:
    service = PlayerService(player, on_quit=on_quit)
    app = web.Application(middlewares=[cors_middleware])
    app["service"] = service
    app.router.add_get("/status", service.handle_status)
    app.router.add_post("/command", service.handle_command)
    app.router.add_get("/ws", service.handle_ws)
    app.on_startup.append(service.on_startup)
    app.on_shutdown.append(service.on_shutdown)
    app.on_cleanup.append(service.on_cleanup)
    return app


def _raise_graceful_exit():
    raise web.GracefulExit()


def main(argv=None):
    parser = argparse.ArgumentParser(prog="maboroshi", description="Terminal music player service")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--host", help="address to listen on")
    parser.add_argument("--port", type=int, help="port to listen on")
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    settings = load_settings()
    host = args.host or settings.host
    port = args.port or settings.port

    async def make_app():
        # The player's locks and tasks belong to run_app's loop.
        loop = asyncio.get_running_loop()
        player = Player(settings)
        return create_app(player, on_quit=lambda: loop.call_soon(_raise_graceful_exit))

    logger.info("Maboroshi %s starting", __version__)
    web.run_app(make_app(), host=host, port=port, print=lambda msg: logger.info(msg))


if __name__ == "__main__":
    main()
