"""
Search Store — saved research sessions, most recent first.

The whole collection lives under one local-storage key as a JSON array
(camelCase layout). Every upsert/remove rewrites it immediately. The store
keeps at most MAX_SAVED_SEARCHES sessions; the oldest by timestamp fall off.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from pydantic import ValidationError

from config import LOCAL_STORAGE_SAVED_SEARCHES, MAX_SAVED_SEARCHES
from errors import StorageError
from models import SavedSearch, to_storage_dict
from storage import LocalStorage

logger = logging.getLogger(__name__)


class SearchStore:
    """Owns the persisted copy of every saved search."""

    def __init__(
        self,
        storage: LocalStorage,
        key: str = LOCAL_STORAGE_SAVED_SEARCHES,
        max_saved: int = MAX_SAVED_SEARCHES,
    ):
        self.storage = storage
        self.key = key
        self.max_saved = max_saved
        self._searches: list[SavedSearch] = []

    def load(self) -> list[SavedSearch]:
        """Read the persisted collection.

        A present-but-unreadable payload is discarded and the store starts
        empty; this never fails.
        """
        raw = self.storage.get_item(self.key)
        if not raw:
            self._searches = []
            return self.list()
        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError(f"expected a JSON array, got {type(data).__name__}")
            searches = [SavedSearch.model_validate(item) for item in data]
        except (ValueError, ValidationError) as e:
            # pydantic's ValidationError is a ValueError; listed for readability
            logger.error("Failed to parse saved searches, discarding them: %s", str(e)[:200])
            self._searches = []
            try:
                self.storage.remove_item(self.key)
            except StorageError as remove_error:
                logger.warning("Could not discard corrupt saved searches: %s", remove_error)
            return self.list()

        searches.sort(key=lambda s: s.timestamp, reverse=True)
        self._searches = searches[: self.max_saved]
        logger.info("Loaded %d saved searches", len(self._searches))
        return self.list()

    def list(self) -> list[SavedSearch]:
        """All saved searches, newest first (copies)."""
        return [s.model_copy(deep=True) for s in self._searches]

    def get(self, search_id: str) -> Optional[SavedSearch]:
        for search in self._searches:
            if search.id == search_id:
                return search.model_copy(deep=True)
        return None

    def upsert(self, search: SavedSearch) -> None:
        """Insert or replace ``search`` by id, re-sort, cap, and persist."""
        stored = search.model_copy(deep=True)
        others = [s for s in self._searches if s.id != stored.id]
        # Upserted search goes first so it wins timestamp ties (stable sort)
        updated = [stored] + others
        updated.sort(key=lambda s: s.timestamp, reverse=True)
        if len(updated) > self.max_saved:
            dropped = len(updated) - self.max_saved
            logger.info("Saved searches over limit, dropping %d oldest", dropped)
            updated = updated[: self.max_saved]
        self._write(updated)

    def remove(self, search_id: str) -> None:
        """Delete by id. Unknown ids are ignored."""
        updated = [s for s in self._searches if s.id != search_id]
        if len(updated) == len(self._searches):
            logger.debug("Search %s not found, nothing to remove", search_id)
            return
        self._write(updated)

    def _write(self, searches: list[SavedSearch]) -> None:
        payload = json.dumps([to_storage_dict(s) for s in searches], ensure_ascii=False)
        self.storage.set_item(self.key, payload)
        # Only swap after a successful write so memory matches disk
        self._searches = searches
