from __future__ import annotations

import json
import logging
import re
import sqlite3
from pathlib import Path
from typing import Any, List, Sequence

from .base import Record, RecordBackend

LOGGER = logging.getLogger(__name__)
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SqliteBackend(RecordBackend):
    """SQLite table holding one JSON document per composite key."""

    def __init__(self, db_path: Path, table: str, key_fields: Sequence[str]):
        super().__init__(key_fields)
        for name in (table, *self.key_fields):
            if not _IDENTIFIER.match(name):
                raise ValueError(f"Invalid SQL identifier: {name!r}")
        self._db_path = db_path
        self._table = table
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _ensure_schema(self) -> None:
        key_columns = ", ".join(f"{name} TEXT NOT NULL" for name in self.key_fields)
        primary_key = ", ".join(self.key_fields)
        with self._connect() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    {key_columns},
                    document TEXT NOT NULL,
                    PRIMARY KEY ({primary_key})
                )
                """
            )

    def upsert(self, record: Record) -> Record:
        key = self.key_of(record)
        if any(value is None for value in key):
            raise ValueError(f"Record is missing key fields {self.key_fields}")
        columns = ", ".join((*self.key_fields, "document"))
        placeholders = ", ".join("?" for _ in range(len(self.key_fields) + 1))
        primary_key = ", ".join(self.key_fields)
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO {self._table}({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT({primary_key}) DO UPDATE SET document = excluded.document",
                (*(str(value) for value in key), json.dumps(record)),
            )
        LOGGER.debug("Stored %s in table %s", key, self._table)
        return record

    def query(self, **filters: Any) -> List[Record]:
        clauses = []
        params: List[Any] = []
        for name, value in filters.items():
            if not _IDENTIFIER.match(name):
                raise ValueError(f"Invalid filter field: {name!r}")
            if name in self.key_fields:
                clauses.append(f"{name} = ?")
                params.append(str(value))
            else:
                clauses.append(f"json_extract(document, '$.{name}') = ?")
                params.append(value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT document FROM {self._table}{where} ORDER BY rowid",
                params,
            ).fetchall()
        return [json.loads(row[0]) for row in rows]
