"""Durable key/value store backed by a single JSON file.

Mirrors a browser's ``localStorage``: string keys, string values, whole file
rewritten on every ``set_item``. Writes go through a temporary file and an
atomic rename so a crash never leaves a half-written store behind.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class LocalStore:
    """String key/value storage persisted to ``path``."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Local store {self.path} does not hold a JSON object")
        return data

    def get_item(self, key: str) -> str | None:
        value = self._read().get(key)
        return None if value is None else str(value)

    def set_item(self, key: str, value: str) -> None:
        self.set_items({key: value})

    def set_items(self, items: dict[str, str]) -> None:
        """Write several keys in one file replacement."""
        try:
            data = self._read()
        except (OSError, ValueError) as exc:
            logger.warning("Local store %s unreadable, rewriting it: %s", self.path, exc)
            data = {}
        data.update(items)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
        os.replace(tmp_path, self.path)
