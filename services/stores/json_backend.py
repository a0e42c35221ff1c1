from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence

from .base import Record, RecordBackend

LOGGER = logging.getLogger(__name__)


class JsonFileBackend(RecordBackend):
    """Records kept as a list under ``root_key`` in a pretty-printed JSON file."""

    def __init__(self, path: Path, root_key: str, key_fields: Sequence[str]):
        super().__init__(key_fields)
        self._path = path
        self._root_key = root_key

    def _ensure_file(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists() or not self._path.read_text(encoding="utf-8").strip():
            self._write({self._root_key: []})

    def _read(self) -> Dict[str, List[Record]]:
        self._ensure_file()
        data = json.loads(self._path.read_text(encoding="utf-8"))
        data.setdefault(self._root_key, [])
        return data

    def _write(self, payload: Dict[str, Any]) -> None:
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def upsert(self, record: Record) -> Record:
        store = self._read()
        items = store[self._root_key]
        key = self.key_of(record)
        for index, item in enumerate(items):
            if self.key_of(item) == key:
                items[index] = record
                break
        else:
            items.append(record)
        self._write(store)
        LOGGER.debug("Stored %s in %s", key, self._path)
        return record

    def query(self, **filters: Any) -> List[Record]:
        items = self._read()[self._root_key]
        return [item for item in items if all(item.get(name) == value for name, value in filters.items())]
