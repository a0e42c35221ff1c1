from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Sequence

Record = Dict[str, Any]


class RecordBackend(ABC):
    """Keyed document store: records are replaced whole and queried by equality."""

    def __init__(self, key_fields: Sequence[str]):
        if not key_fields:
            raise ValueError("At least one key field is required")
        self.key_fields = tuple(key_fields)

    def key_of(self, record: Mapping[str, Any]) -> tuple:
        return tuple(record.get(name) for name in self.key_fields)

    @abstractmethod
    def upsert(self, record: Record) -> Record:
        """Insert ``record`` or replace the stored record with the same key."""
        raise NotImplementedError

    @abstractmethod
    def query(self, **filters: Any) -> List[Record]:
        """Return stored records whose fields equal every supplied filter."""
        raise NotImplementedError

    def get(self, **key: Any) -> Record | None:
        matches = self.query(**key)
        return matches[0] if matches else None
