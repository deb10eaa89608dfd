"""
Local Storage — a small persistent string key/value store.

Same contract as a browser's localStorage: string keys, string values,
get / set / remove. Backed by one JSON file; every write happens before the
call returns, so there is no separate flush step.

Writes are read-modify-write under an exclusive lock on a sidecar
``<file>.lock``: the current file is re-read, the one key is changed, and the
result replaces the file via temp file + atomic rename. Two processes
writing different keys therefore don't drop each other's changes.

Pass ``path=None`` for a memory-only store (tests, dry runs).
"""

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional

from config import STORAGE_FILE
from errors import StorageError

logger = logging.getLogger(__name__)


class LocalStorage:
    """Persistent string key/value store."""

    def __init__(self, path: Optional[Path] = STORAGE_FILE):
        self.path = Path(path) if path is not None else None
        self._items: dict[str, str] = self._read()
        logger.debug("Loaded %d local storage keys", len(self._items))

    def _read(self) -> dict[str, str]:
        """Items currently on disk; unreadable or missing files read as empty."""
        if self.path is None or not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Could not read local storage %s, starting empty: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Local storage %s is not a key/value object, starting empty", self.path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    @contextmanager
    def _locked(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = self.path.with_name(self.path.name + ".lock")
        with open(lock_path, "a") as lock:
            fcntl.flock(lock.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock.fileno(), fcntl.LOCK_UN)

    def _write(self, items: dict[str, str]):
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".storage-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(items, f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _mutate(self, apply: Callable[[dict[str, str]], bool]) -> None:
        """Apply ``apply`` to the latest items and persist if it reports a change.

        Memory is only updated once the write has succeeded.
        """
        if self.path is None:
            items = dict(self._items)
            apply(items)
            self._items = items
            return
        try:
            with self._locked():
                items = self._read()
                if apply(items):
                    self._write(items)
        except OSError as e:
            raise StorageError(f"Could not write local storage {self.path}: {e}") from e
        self._items = items

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key`` and persist immediately.

        Raises:
            StorageError: if the backing file can't be written.
        """
        def apply(items):
            items[key] = value
            return True

        self._mutate(apply)

    def remove_item(self, key: str) -> None:
        """Delete ``key`` if present; a missing key is a no-op."""
        def apply(items):
            return items.pop(key, None) is not None

        self._mutate(apply)

    def keys(self) -> list[str]:
        return list(self._items)
