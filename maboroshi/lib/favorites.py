# Maboroshi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Favorites file: ``{"items": [{"title": ..., "source": ...}, ...]}``.

A missing file is an empty list.  A file that does not parse is renamed
to ``<name>.corrupt.<unix-ts>`` so the user can recover it, and loading
continues with an empty list.  Every mutation rewrites the whole file.
"""

import json
import logging
import os
import time
from pathlib import Path

from .errors import FavoritesError
from .session import FavoriteItem

log = logging.getLogger(__name__)


class FavoritesStore:
    def __init__(self, path, clock=time.time):
        self.path = Path(os.path.expanduser(str(path)))
        self._clock = clock

    def _backup_corrupted(self) -> Path:
        backup = self.path.with_name(f"{self.path.name}.corrupt.{int(self._clock())}")
        os.rename(self.path, backup)
        return backup

    def load(self) -> tuple[list[FavoriteItem], str | None]:
        """Return (items, warning).  Never raises."""
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return [], None
        except OSError as e:
            return [], f"Could not read favorites file ({self.path}): {e}"

        try:
            data = json.loads(content)
            items = [FavoriteItem(title=str(entry["title"]), source=str(entry["source"]))
                     for entry in data["items"]]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            try:
                backup = self._backup_corrupted()
            except OSError as backup_err:
                return [], (f"Favorites file is corrupt ({e}) and could not be "
                            f"backed up ({self.path}): {backup_err}")
            log.warning("Corrupt favorites file moved to %s", backup)
            return [], f"Favorites file was corrupt and has been backed up to {backup} (reason: {e})"

        return items, None

    def save(self, items: list[FavoriteItem]) -> None:
        data = {"items": [item.to_dict() for item in items]}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            raise FavoritesError(f"Could not save favorites ({self.path}): {e}") from e
