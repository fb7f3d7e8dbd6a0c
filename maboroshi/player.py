# Maboroshi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Player: the playback orchestrator.

Every user intent (search, play, page change, pause, seek, volume,
favorites) goes through a Player method.  The Player is the only holder of
the session lock and of the current-background-task handle, and it owns
the ControlSocketClient that holds the mirror and process locks, so every
compound operation takes the locks in one order:

    task handle  →  playback mirror  →  process handle

The session lock is a leaf: taken to read or apply state, released before
any await on processes or sockets, then taken again to apply the result.
Results are applied only if their request id is still current.

Long operations run as one background task at a time.  Starting a new
one cancels (and awaits) the previous one; the id check catches anything
that slipped past its last suspension point.  Background task bodies never
call _spawn() themselves.
"""

import asyncio
import functools
import logging

from .lib.cache import StreamCache
from .lib.config import Settings
from .lib.errors import FavoritesError, MaboroshiError
from .lib.favorites import FavoritesStore
from .lib.gateway import ProcessGateway
from .lib.mpv_ipc import ControlSocketClient, PauseState, PlaybackMirror
from .lib.sequencer import RequestSequencer
from .lib.session import FALLBACK_PLAY_MODE, Session, Status, parse_play_mode
from .lib.tasks import cancel_and_wait

log = logging.getLogger(__name__)

LOG_QUEUE_LIMIT = 64


class OperationLog:
    """Ordered, bounded progress log for one background operation.

    Calling the instance queues a line; a consumer task drains the queue
    into *sink* (an async callable) in order.  Lines past *limit* pending
    are dropped and counted.  Leaving the ``async with`` block flushes
    everything queued so far, even when the operation was cancelled.
    """

    def __init__(self, sink, limit=LOG_QUEUE_LIMIT):
        self._sink = sink
        self._limit = limit
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self.dropped = 0

    def __call__(self, message: str) -> None:
        if self._queue.qsize() >= self._limit:
            self.dropped += 1
            return
        self._queue.put_nowait(message)

    async def _drain(self):
        while True:
            message = await self._queue.get()
            if message is None:
                return
            await self._sink(message)

    async def __aenter__(self):
        self._task = asyncio.create_task(self._drain())
        return self

    async def __aexit__(self, *exc_info):
        self._queue.put_nowait(None)  # sentinel is never subject to the limit
        await asyncio.shield(self._task)
        if self.dropped:
            log.debug("Dropped %d progress lines", self.dropped)
        return False


class Player:
    def __init__(self, settings: Settings, gateway=None, client=None,
                 favorites_store=None, stream_cache=None, rng=None):
        self.settings = settings
        socket_path = settings.resolved_socket_path()
        self._gateway = gateway or ProcessGateway(settings, socket_path)
        self._client = client or ControlSocketClient(socket_path)
        self._favorites = favorites_store or FavoritesStore(settings.favorites_file)
        self._stream_cache = stream_cache or StreamCache(settings.url_cache_size, settings.url_cache_ttl)
        self._sequencer = RequestSequencer()

        self._task_lock = asyncio.Lock()
        self._state_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None
        self._closed = False

        items, warning = self._favorites.load()
        mode, mode_ok = parse_play_mode(settings.default_mode)
        self._session = Session(
            favorites=items,
            play_mode=mode,
            source=settings.search_source,
            page_size=settings.page_size,
            page_cache_size=settings.page_cache_size,
            rng=rng,
        )
        s = self._session
        s.add_log("Player started")
        if items:
            s.add_log(f"Loaded {len(items)} favorites")
        if warning:
            log.warning(warning)
            s.add_log(warning)
        s.add_log(f"Source: {settings.search_source} ({settings.search_prefix})")
        if mode_ok:
            s.add_log(f"Default play mode: {mode.label}")
        else:
            log.warning("Unknown play mode %r, falling back to %s",
                        settings.default_mode, FALLBACK_PLAY_MODE.value)
            s.add_log(f"Unknown play mode '{settings.default_mode}', using {FALLBACK_PLAY_MODE.label}")
        s.add_log(f"URL cache: {settings.url_cache_size} songs, {settings.url_cache_ttl:g}s TTL")

    # ── Lifecycle ──

    async def start(self):
        """Start the reconciliation tick."""
        if self._tick_task is None:
            self._tick_task = asyncio.create_task(self._tick_loop())

    async def quit(self):
        """Cancel the background task, stop ticking, tear the player down."""
        async with self._task_lock:
            self._closed = True
            await self._supersede()
            tick, self._tick_task = self._tick_task, None
            await cancel_and_wait(tick)
            await self._client.shutdown()
        async with self._state_lock:
            self._session.add_log("Player stopped")

    async def _supersede(self):
        """Cancel the background task and wait for it.  Caller holds _task_lock."""
        previous, self._task = self._task, None
        await cancel_and_wait(previous)

    async def _spawn(self, coro):
        """Run *coro* as the single background task, superseding the previous one."""
        try:
            async with self._task_lock:
                if self._closed:
                    coro.close()
                    return None
                await self._supersede()
                self._task = asyncio.create_task(coro)
                return self._task
        except BaseException:
            coro.close()  # never scheduled
            raise

    async def wait_idle(self):
        """Wait for the current background task (if any) to finish."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    # ── Readers ──

    async def snapshot(self) -> dict:
        async with self._state_lock:
            return self._session.snapshot()

    async def mirror(self) -> PlaybackMirror:
        return await self._client.current_mirror()

    async def _append_log(self, message: str):
        async with self._state_lock:
            self._session.add_log(message)

    async def _append_request_log(self, request_id: int, message: str):
        """Progress sink for one operation; silent once the request is stale."""
        async with self._state_lock:
            if self._sequencer.is_current(request_id):
                self._session.add_log(message)

    def _operation_log(self, request_id: int) -> OperationLog:
        return OperationLog(functools.partial(self._append_request_log, request_id))

    # ── Search & pages ──

    async def search(self, keyword: str):
        keyword = keyword.strip()
        if not keyword:
            return
        async with self._state_lock:
            self._session.begin_search(keyword)
            self._session.add_log(f"Searching: {keyword}")
            request_id = self._sequencer.begin_request()
        await self._spawn(self._search_task(request_id, keyword, 1))

    async def next_page(self):
        await self._change_page(+1)

    async def prev_page(self):
        await self._change_page(-1)

    async def _change_page(self, step: int):
        async with self._state_lock:
            s = self._session
            if s.status is not Status.SEARCH_RESULTS or s.is_loading_page:
                return
            if step > 0 and not s.has_next_page():
                s.add_log("Already on the last page")
                return
            if step < 0 and not s.has_prev_page():
                s.add_log("Already on the first page")
                return
            page = s.current_page + step
            cached = s.page_cache.get(page)
            if cached is not None:
                s.apply_page(page, cached)
                s.add_log(f"Page {page}/{s.total_pages} (cached)")
                return
            request_id = self._sequencer.begin_request()
            s.is_loading_page = True
            keyword = s.last_keyword
            s.add_log(f"Loading page {page}...")
        await self._spawn(self._search_task(request_id, keyword, page))

    async def _search_task(self, request_id: int, keyword: str, page: int):
        try:
            async with self._operation_log(request_id) as oplog:
                results = await self._gateway.run_search(keyword, page, oplog)
        except MaboroshiError as e:
            await self._search_failed(request_id, page, str(e))
            return
        except Exception as e:
            log.exception("Unexpected search error")
            await self._search_failed(request_id, page, str(e))
            return

        async with self._state_lock:
            if not self._sequencer.is_current(request_id):
                return
            s = self._session
            if results:
                s.apply_page(page, results)
                s.add_log(f"Page {page}: {len(results)} results, choose one and press Enter to play")
            elif page == 1:
                s.clear_search_results()
                s.restore_status_after_search()
                s.add_log(f"No results for '{keyword}'")
            else:
                s.is_loading_page = False
                s.total_pages = s.current_page
                s.add_log("No more results")

    async def _search_failed(self, request_id: int, page: int, message: str):
        async with self._state_lock:
            if not self._sequencer.is_current(request_id):
                return
            s = self._session
            if page == 1:
                s.fail(message)
                s.add_log(f"Search failed: {message}")
            else:
                s.is_loading_page = False
                s.add_log(f"Could not load page {page}: {message}")

    async def cancel_results(self):
        async with self._state_lock:
            if self._session.status is not Status.SEARCH_RESULTS:
                return
            request_id = self._sequencer.begin_request()
        async with self._task_lock:
            await self._supersede()  # a page fetch may be in flight
        async with self._state_lock:
            if not self._sequencer.is_current(request_id):
                return
            s = self._session
            s.clear_search_results()
            s.restore_status_after_search()
            s.add_log("Search cancelled")

    # ── Playback ──

    def _begin_play(self, title: str) -> int:
        """Must be called with the session lock held."""
        s = self._session
        s.set_status(Status.SEARCHING)
        s.current_song = title
        s.progress = 0.0
        return self._sequencer.begin_request()

    async def play_selected_result(self):
        async with self._state_lock:
            s = self._session
            if s.status is not Status.SEARCH_RESULTS:
                return
            result = s.get_selected_result()
            if result is None:
                return
            s.clear_search_results()
            s.saved_status = None
            s.add_log(f"Playing from search results: {result.title}")
            request_id = self._begin_play(result.title)
        await self._spawn(self._play_task(request_id, result.title))

    async def play_favorite(self):
        async with self._state_lock:
            s = self._session
            item = s.get_selected_favorite()
            if item is None:
                return
            s.add_log(f"Playing favorite: {item.title} [{item.source}]")
            s.current_source = item.source
            request_id = self._begin_play(item.title)
        await self._spawn(self._play_task(request_id, item.title))

    async def search_and_play(self, title: str, source: str | None = None):
        title = title.strip()
        if not title:
            return
        async with self._state_lock:
            if source:
                self._session.current_source = source
            request_id = self._begin_play(title)
        await self._spawn(self._play_task(request_id, title))

    async def _play_task(self, request_id: int, title: str):
        try:
            async with self._operation_log(request_id) as oplog:
                oplog("Stopping previous player")
                await self._client.shutdown()

                url = self._stream_cache.lookup(title)
                if url:
                    oplog("Using cached stream URL")
                else:
                    url = await self._gateway.resolve_stream(title, oplog)
                    self._stream_cache.insert(title, url)
                    oplog("Stream URL cached")

                oplog("Starting mpv")
                async with self._client.launch_guard():
                    process = await self._gateway.start_playback(url)
                    await self._client.attach(process)
        except MaboroshiError as e:
            await self._play_failed(request_id, str(e))
            return
        except Exception as e:
            log.exception("Unexpected playback error")
            await self._play_failed(request_id, str(e))
            return

        async with self._state_lock:
            if not self._sequencer.is_current(request_id):
                return
            s = self._session
            s.current_song = title
            s.set_status(Status.PLAYING)
            s.sync_selected_favorite()
            s.add_log(f"Now playing: {title}")

    async def _play_failed(self, request_id: int, message: str):
        async with self._state_lock:
            if not self._sequencer.is_current(request_id):
                return
            self._session.fail(message)
            self._session.add_log(f"Playback failed: {message}")

    # ── Transport controls ──

    async def toggle_pause(self):
        async with self._state_lock:
            status = self._session.status
        if status is Status.PLAYING:
            pause = True
        elif status is Status.PAUSED:
            pause = False
        else:
            return

        try:
            await self._client.send_command("set_property", "pause", pause)
        except MaboroshiError as e:
            await self._append_log(f"Pause toggle failed: {e}")
            return

        async with self._state_lock:
            if self._session.status in (Status.PLAYING, Status.PAUSED):
                self._session.set_status(Status.PAUSED if pause else Status.PLAYING)

    async def seek_forward(self):
        await self._seek(self.settings.seek_seconds)

    async def seek_backward(self):
        await self._seek(-self.settings.seek_seconds)

    async def _seek(self, seconds: int):
        async with self._state_lock:
            if self._session.status not in (Status.PLAYING, Status.PAUSED):
                return
        try:
            await self._client.send_command("seek", seconds, "relative")
        except MaboroshiError as e:
            await self._append_log(f"Seek failed: {e}")
            return
        direction = "forward" if seconds > 0 else "back"
        await self._append_log(f"Seek {direction} {abs(seconds)}s")

    async def volume_up(self):
        await self._change_volume(self.settings.volume_step)

    async def volume_down(self):
        await self._change_volume(-self.settings.volume_step)

    async def _change_volume(self, delta: int):
        async with self._state_lock:
            if self._session.status not in (Status.PLAYING, Status.PAUSED):
                return
        try:
            await self._client.send_command("add", "volume", delta)
        except MaboroshiError as e:
            await self._append_log(f"Volume change failed: {e}")
            return
        await self._append_log(f"Volume {'+' if delta > 0 else '-'}{abs(delta)}")

    # ── Selection, favorites, modes ──

    async def select_next(self):
        async with self._state_lock:
            s = self._session
            if s.status is Status.SEARCH_RESULTS:
                s.select_next_result()
            else:
                s.select_next_favorite()

    async def select_prev(self):
        async with self._state_lock:
            s = self._session
            if s.status is Status.SEARCH_RESULTS:
                s.select_prev_result()
            else:
                s.select_prev_favorite()

    async def toggle_favorite(self):
        """Search results: toggle the selected result.  Playing: toggle the
        current song.  Otherwise: remove the selected favorite."""
        async with self._state_lock:
            s = self._session
            if s.status is Status.SEARCH_RESULTS:
                result = s.get_selected_result()
                if result is None:
                    return
                s.toggle_favorite_title(result.title)
            elif s.status in (Status.PLAYING, Status.PAUSED):
                if not s.current_song:
                    return
                s.toggle_favorite_title(s.current_song)
            elif s.remove_selected_favorite() is None:
                return
            # Written under the lock so concurrent toggles hit the disk in order.
            try:
                self._favorites.save(s.favorites)
            except FavoritesError as e:
                log.warning("%s", e)
                s.add_log(str(e))

    async def toggle_play_mode(self):
        async with self._state_lock:
            self._session.toggle_play_mode()

    # ── Reconciliation tick ──

    async def tick(self):
        """Fold the mirror into the session; auto-advance when a song ends."""
        mirror = await self._client.current_mirror()
        next_song = None
        async with self._state_lock:
            s = self._session
            if s.status is Status.ERROR:
                next_song = s.next_song()
                if next_song:
                    s.add_log(f"Skipping after error, next: {next_song}")
                else:
                    s.set_status(Status.WAITING)
                    s.add_log("No more songs to play")
            elif s.status in (Status.PLAYING, Status.PAUSED):
                s.progress = mirror.progress
                s.volume = mirror.volume
                if mirror.pause_state is PauseState.STOPPED:
                    next_song = s.next_song()
                    if next_song:
                        s.add_log(f"Up next: {next_song}")
                    else:
                        s.set_status(Status.WAITING)
                        s.progress = 0.0
                        s.add_log("Playback finished")
                elif mirror.pause_state is PauseState.PAUSED:
                    s.set_status(Status.PAUSED)
                else:
                    s.set_status(Status.PLAYING)
            if next_song:
                request_id = self._begin_play(next_song)
        if next_song:
            await self._spawn(self._play_task(request_id, next_song))

    async def _tick_loop(self):
        while True:
            try:
                await self.tick()
            except Exception as e:
                log.error("Tick error: %s", e)
            await asyncio.sleep(self.settings.tick_interval)
