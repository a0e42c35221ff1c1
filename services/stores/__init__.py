"""Storage backends shared by the classification and user ledgers."""

from .base import RecordBackend
from .json_backend import JsonFileBackend
from .sqlite_backend import SqliteBackend

__all__ = [
    "RecordBackend",
    "JsonFileBackend",
    "SqliteBackend",
]
