# Maboroshi
# SPDX-License-Identifier: GPL-3.0-or-later

"""Caches for resolved stream URLs and search result pages."""

import logging
import time
from dataclasses import dataclass

log = logging.getLogger(__name__)


@dataclass
class StreamCacheEntry:
    keyword: str
    url: str
    resolved_at: float


class StreamCache:
    """keyword -> resolved stream URL, with a TTL and a capacity bound.

    Expired entries are not swept; they read as absent and get replaced
    or evicted on a later insert.  All methods are synchronous, so on the
    event loop each call is one exclusive section.
    """

    def __init__(self, capacity=30, ttl=7200.0, clock=time.time):
        self.capacity = capacity
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, StreamCacheEntry] = {}

    def _valid(self, entry: StreamCacheEntry) -> bool:
        return self._clock() - entry.resolved_at < self.ttl

    def lookup(self, keyword: str) -> str | None:
        entry = self._entries.get(keyword)
        if entry is not None and self._valid(entry):
            return entry.url
        return None

    def insert(self, keyword: str, url: str) -> None:
        existing = self._entries.get(keyword)
        if existing is not None and self._valid(existing):
            # Resolved concurrently: refresh in place, no eviction.
            existing.url = url
            existing.resolved_at = self._clock()
            return

        self._entries[keyword] = StreamCacheEntry(keyword, url, self._clock())
        if len(self._entries) > self.capacity:
            oldest = min(self._entries.values(), key=lambda e: e.resolved_at)
            del self._entries[oldest.keyword]
            log.debug("Stream cache full, evicted %r", oldest.keyword)

    def __contains__(self, keyword: str):
        return keyword in self._entries

    def __len__(self):
        return len(self._entries)


class PageCache:
    """page number -> search results for the active keyword.

    Eviction drops the lowest page number, which matches forward paging
    through results; it is not an LRU.
    """

    def __init__(self, capacity=10):
        self.capacity = capacity
        self._pages: dict[int, list] = {}

    def get(self, page: int) -> list | None:
        return self._pages.get(page)

    def put(self, page: int, results: list) -> None:
        self._pages[page] = list(results)
        if len(self._pages) > self.capacity:
            del self._pages[min(self._pages)]

    def clear(self) -> None:
        self._pages.clear()

    def pages(self) -> list[int]:
        return sorted(self._pages)

    def __contains__(self, page: int):
        return page in self._pages

    def __len__(self):
        return len(self._pages)
