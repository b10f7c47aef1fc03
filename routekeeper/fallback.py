"""Flat key/value fallback backend persisted as a single JSON file."""

import errno
import json
import os
from typing import Any, Optional

from .errors import StorageError, StorageQuotaError


class FlatStore:
    """String-keyed store of string values with a byte capacity.

    With ``path=None`` (or ``":memory:"``) the store lives in memory only.
    """

    def __init__(self, path: Optional[str] = None, quota: int = 5 * 1024 * 1024,
                 logger=None):
        self.path = None if path == ":memory:" else path
        self.quota = quota
        self.logger = logger
        self._items: dict[str, str] = {}
        self._load()

    def _load(self):
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            self._log("Fallback store unreadable, starting empty", {"path": self.path, "error": str(e)})
            return
        if isinstance(data, dict):
            self._items = {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _flush(self, items: dict[str, str]):
        if not self.path:
            return
        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, "w") as f:
                json.dump(items, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if e.errno == errno.ENOSPC:
                raise StorageQuotaError(f"Fallback store full: {e}") from e
            raise StorageError(f"Fallback store write failed: {e}") from e

    @staticmethod
    def _size(items: dict[str, str]) -> int:
        return sum(len(k) + len(v) for k, v in items.items())

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str):
        items = dict(self._items)
        items[key] = value
        if self._size(items) > self.quota:
            raise StorageQuotaError(
                f"Fallback store quota exceeded writing '{key}' ({self._size(items)} > {self.quota} bytes)")
        self._flush(items)
        self._items = items

    def remove_item(self, key: str):
        if key not in self._items:
            return
        items = dict(self._items)
        del items[key]
        self._flush(items)
        self._items = items

    def clear(self):
        self._flush({})
        self._items = {}

    def keys(self) -> list[str]:
        return list(self._items)

    def usage(self) -> int:
        return self._size(self._items)

    def get_json(self, key: str, default: Any = None) -> Any:
        """Decode a JSON value; raises ValueError if the stored text is corrupt"""
        raw = self._items.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set_json(self, key: str, value: Any):
        self.set_item(key, json.dumps(value))

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)
