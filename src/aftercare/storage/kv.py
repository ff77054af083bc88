"""Durable string key/value store scoped to one profile directory.

The store is a single JSON object file mapping keys to string values, the
on-disk counterpart of a browser's ``localStorage``. Every write replaces the
file atomically (temp file + rename).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "storage.json"


class StorageError(Exception):
    """Raised when the key/value file cannot be written."""


class KeyValueStore:
    """File-backed key/value store.

    Args:
        path: Location of the JSON file. Parent directories are created on
            first write.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    def in_directory(cls, data_dir: Path) -> KeyValueStore:
        return cls(Path(data_dir) / DEFAULT_FILENAME)

    def _read(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("Cannot read key/value store %s: %s", self.path, exc)
            return {}

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Key/value store %s is corrupt, treating as empty: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning(
                "Key/value store %s does not hold an object, treating as empty", self.path
            )
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=".storage-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, ensure_ascii=False, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(f"Cannot write key/value store {self.path}: {exc}") from exc

    def get_item(self, key: str) -> str | None:
        return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)

    def keys(self) -> list[str]:
        return sorted(self._read())

    def clear(self) -> None:
        self._write({})
