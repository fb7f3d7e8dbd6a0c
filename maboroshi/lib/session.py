# Maboroshi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Session state for the player.

Session is a plain guarded struct: the orchestrator (maboroshi.player)
holds the only reference and mutates it under its session lock.  Nothing
here awaits, so every method runs as one exclusive step on the event loop.

The next-song policy lives in choose_next_song() so it can be reasoned
about (and tested) without a session.
"""

import logging
import random
from collections import deque
from dataclasses import dataclass, asdict
from enum import Enum

from .cache import PageCache

log = logging.getLogger(__name__)

MAX_LOG_LINES = 50


class Status(Enum):
    WAITING = "waiting"
    SEARCHING = "searching"
    SEARCH_RESULTS = "search_results"
    PLAYING = "playing"
    PAUSED = "paused"
    ERROR = "error"


class PlayMode(Enum):
    SINGLE = "single"
    LIST_LOOP = "list_loop"
    SEQUENTIAL = "sequential"
    SHUFFLE = "shuffle"

    @property
    def label(self) -> str:
        return _MODE_LABELS[self]

    def next(self) -> "PlayMode":
        """Cycle order used by the mode toggle."""
        return _MODE_CYCLE[self]


_MODE_LABELS = {
    PlayMode.SINGLE: "single loop",
    PlayMode.LIST_LOOP: "list loop",
    PlayMode.SEQUENTIAL: "sequential",
    PlayMode.SHUFFLE: "shuffle",
}

_MODE_CYCLE = {
    PlayMode.SHUFFLE: PlayMode.SINGLE,
    PlayMode.SINGLE: PlayMode.LIST_LOOP,
    PlayMode.LIST_LOOP: PlayMode.SEQUENTIAL,
    PlayMode.SEQUENTIAL: PlayMode.SHUFFLE,
}

PLAY_MODE_ALIASES = {
    "single": PlayMode.SINGLE,
    "single_loop": PlayMode.SINGLE,
    "single-loop": PlayMode.SINGLE,
    "list_loop": PlayMode.LIST_LOOP,
    "list-loop": PlayMode.LIST_LOOP,
    "loop": PlayMode.LIST_LOOP,
    "list": PlayMode.LIST_LOOP,
    "sequential": PlayMode.SEQUENTIAL,
    "sequence": PlayMode.SEQUENTIAL,
    "seq": PlayMode.SEQUENTIAL,
    "shuffle": PlayMode.SHUFFLE,
    "random": PlayMode.SHUFFLE,
}

FALLBACK_PLAY_MODE = PlayMode.SHUFFLE


def parse_play_mode(text: str) -> tuple[PlayMode, bool]:
    """Return (mode, recognised).  Unknown strings give the fallback mode."""
    mode = PLAY_MODE_ALIASES.get((text or "").strip().lower())
    if mode is None:
        return FALLBACK_PLAY_MODE, False
    return mode, True


@dataclass(frozen=True)
class SearchResult:
    title: str


@dataclass
class FavoriteItem:
    title: str
    source: str

    def to_dict(self) -> dict:
        return asdict(self)


def choose_next_song(titles: list[str], current: str, mode: PlayMode,
                     rng=random) -> tuple[str, int | None] | None:
    """Pick the song that follows *current*.

    Returns (title, favorites index or None) or None when nothing should
    play next.  *rng* needs a ``randrange`` method.
    """
    if mode is PlayMode.SINGLE:
        if not current:
            return None
        idx = titles.index(current) if current in titles else None
        return current, idx

    if not titles:
        return None

    try:
        current_idx = titles.index(current)
    except ValueError:
        current_idx = None

    if mode is PlayMode.SHUFFLE:
        if len(titles) == 1:
            return titles[0], 0
        if current_idx is None:
            idx = rng.randrange(len(titles))
        else:
            # Draw from N-1 slots and step over the current one.
            idx = rng.randrange(len(titles) - 1)
            if idx >= current_idx:
                idx += 1
        return titles[idx], idx

    # LIST_LOOP / SEQUENTIAL
    if current_idx is None:
        return None
    next_idx = current_idx + 1
    if next_idx < len(titles):
        return titles[next_idx], next_idx
    if mode is PlayMode.LIST_LOOP:
        return titles[0], 0
    return None


class Session:
    """Everything the UI shows, owned by the orchestrator."""

    def __init__(self, favorites=None, play_mode=PlayMode.SHUFFLE,
                 source="yt", page_size=15, page_cache_size=10, rng=None):
        self.status = Status.WAITING
        self.error_message: str | None = None
        self.current_song = ""
        self.current_source = source
        self.progress = 0.0
        self.volume = 100
        self.logs: deque[str] = deque(maxlen=MAX_LOG_LINES)
        self.favorites: list[FavoriteItem] = list(favorites or [])
        self.selected_favorite = 0
        self.play_mode = play_mode
        self.search_results: list[SearchResult] = []
        self.selected_result = 0
        self.saved_status: Status | None = None
        self.last_keyword = ""
        self.page_size = page_size
        self.current_page = 1
        self.total_pages = 1
        self.page_cache = PageCache(page_cache_size)
        self.is_loading_page = False
        self._rng = rng or random.Random()

    # ── Status ──

    def set_status(self, status: Status) -> None:
        self.status = status
        if status is not Status.ERROR:
            self.error_message = None

    def fail(self, message: str) -> None:
        self.status = Status.ERROR
        self.error_message = message

    def save_status_before_search(self) -> None:
        if self.status not in (Status.SEARCHING, Status.SEARCH_RESULTS):
            self.saved_status = self.status

    def restore_status_after_search(self) -> None:
        saved, self.saved_status = self.saved_status, None
        self.set_status(saved or Status.WAITING)

    # ── Log ──

    def add_log(self, message: str) -> None:
        """Append a UI log line; a repeat of the last line is dropped."""
        if self.logs and self.logs[-1] == message:
            return
        self.logs.append(message)
        log.info(message)

    # ── Search results & pages ──

    def clear_search_results(self) -> None:
        self.search_results = []
        self.selected_result = 0
        self.last_keyword = ""
        self.page_cache.clear()
        self.is_loading_page = False

    def begin_search(self, keyword: str) -> None:
        self.save_status_before_search()
        self.clear_search_results()
        self.set_status(Status.SEARCHING)
        self.last_keyword = keyword
        self.current_page = 1
        self.total_pages = 1

    def apply_page(self, page: int, results: list[SearchResult]) -> None:
        """Show *page* and update how far paging may go.

        A short page (fewer than page_size results) is the last one.
        """
        self.page_cache.put(page, results)
        self.search_results = list(results)
        self.selected_result = 0
        self.current_page = page
        if len(results) < self.page_size:
            self.total_pages = page
        else:
            self.total_pages = max(self.total_pages, page + 1)
        self.is_loading_page = False
        self.set_status(Status.SEARCH_RESULTS)

    def has_next_page(self) -> bool:
        return self.current_page < self.total_pages

    def has_prev_page(self) -> bool:
        return self.current_page > 1

    def select_next_result(self) -> None:
        if self.search_results:
            self.selected_result = (self.selected_result + 1) % len(self.search_results)

    def select_prev_result(self) -> None:
        if self.search_results:
            self.selected_result = (self.selected_result - 1) % len(self.search_results)

    def get_selected_result(self) -> SearchResult | None:
        if 0 <= self.selected_result < len(self.search_results):
            return self.search_results[self.selected_result]
        return None

    # ── Favorites ──

    def favorite_titles(self) -> list[str]:
        return [item.title for item in self.favorites]

    def is_favorite(self, title: str | None = None) -> bool:
        title = self.current_song if title is None else title
        return any(item.title == title for item in self.favorites)

    def toggle_favorite_title(self, title: str, source: str | None = None) -> bool:
        """Add or remove *title*.  Returns True when it was added."""
        for pos, item in enumerate(self.favorites):
            if item.title == title:
                del self.favorites[pos]
                if self.selected_favorite >= len(self.favorites):
                    self.selected_favorite = max(0, len(self.favorites) - 1)
                self.add_log(f"Removed from favorites: {title}")
                return False
        self.favorites.append(FavoriteItem(title, source or self.current_source))
        self.add_log(f"Added to favorites: {title} ({source or self.current_source})")
        return True

    def remove_selected_favorite(self) -> FavoriteItem | None:
        if not 0 <= self.selected_favorite < len(self.favorites):
            return None
        item = self.favorites.pop(self.selected_favorite)
        if self.selected_favorite >= len(self.favorites):
            self.selected_favorite = max(0, len(self.favorites) - 1)
        self.add_log(f"Removed from favorites: {item.title}")
        return item

    def select_next_favorite(self) -> None:
        if self.favorites:
            self.selected_favorite = (self.selected_favorite + 1) % len(self.favorites)

    def select_prev_favorite(self) -> None:
        if self.favorites:
            self.selected_favorite = (self.selected_favorite - 1) % len(self.favorites)

    def get_selected_favorite(self) -> FavoriteItem | None:
        if 0 <= self.selected_favorite < len(self.favorites):
            return self.favorites[self.selected_favorite]
        return None

    def sync_selected_favorite(self) -> None:
        """Point the favorites cursor at the song that is playing."""
        titles = self.favorite_titles()
        if self.current_song in titles:
            self.selected_favorite = titles.index(self.current_song)

    # ── Play mode ──

    def toggle_play_mode(self) -> PlayMode:
        self.play_mode = self.play_mode.next()
        self.add_log(f"Play mode: {self.play_mode.label}")
        return self.play_mode

    def next_song(self) -> str | None:
        """Apply the play-mode policy and move the favorites cursor."""
        choice = choose_next_song(self.favorite_titles(), self.current_song,
                                  self.play_mode, self._rng)
        if choice is None:
            if (self.play_mode in (PlayMode.LIST_LOOP, PlayMode.SEQUENTIAL)
                    and self.favorites and not self.is_favorite()):
                self.add_log(f"'{self.current_song}' is not in favorites")
            return None
        title, idx = choice
        if idx is not None:
            if (self.play_mode is PlayMode.LIST_LOOP and idx == 0
                    and len(self.favorites) > 1):
                self.add_log("End of list, back to the first song")
            self.selected_favorite = idx
        return title

    # ── Snapshot ──

    def snapshot(self) -> dict:
        """JSON-friendly copy for readers outside the lock."""
        return {
            "status": self.status.value,
            "error": self.error_message,
            "current_song": self.current_song,
            "current_source": self.current_source,
            "is_favorite": self.is_favorite() if self.current_song else False,
            "progress": self.progress,
            "volume": self.volume,
            "play_mode": self.play_mode.value,
            "favorites": [item.to_dict() for item in self.favorites],
            "selected_favorite": self.selected_favorite,
            "search": {
                "keyword": self.last_keyword,
                "results": [r.title for r in self.search_results],
                "selected": self.selected_result,
                "page": self.current_page,
                "total_pages": self.total_pages,
                "loading": self.is_loading_page,
            },
            "logs": list(self.logs),
        }
