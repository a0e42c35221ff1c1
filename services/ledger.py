from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from services.errors import InvalidArgument
from services.stores import JsonFileBackend, RecordBackend, SqliteBackend
from utils.config import AppConfig
from utils.headers import millis_to_iso, to_epoch_millis

LOGGER = logging.getLogger(__name__)
VALID_LABELS = ("good", "bad")


def _now() -> str:
    return millis_to_iso(to_epoch_millis(datetime.now(timezone.utc)))


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def merge_tokens(existing: Mapping[str, Any] | None, incoming: Mapping[str, Any] | None) -> Dict[str, Any]:
    merged = {**(existing or {}), **(incoming or {})}
    if isinstance(merged.get("expiry_date"), str):
        merged["expiry_date"] = int(merged["expiry_date"])
    return merged


class ClassificationLedger:
    """Per-user good/bad verdicts on Gmail messages."""

    def __init__(self, backend: RecordBackend):
        self._backend = backend

    def upsert_classification(self, entry: Mapping[str, Any]) -> Dict[str, Any]:
        user = _clean(entry.get("user"))
        if not user:
            raise InvalidArgument("Classification requires a user identifier.")
        label = (_clean(entry.get("label")) or "").lower()
        if label not in VALID_LABELS:
            raise InvalidArgument('Classification label must be either "good" or "bad".')
        message_id = entry.get("id")
        if not message_id:
            raise InvalidArgument("Classification requires a message id.")

        timestamp = _now()
        label_ids = entry.get("labelIds")
        payload = {
            "id": message_id,
            "label": label,
            "subject": entry.get("subject") or "(no subject)",
            "from": entry.get("from") or "Unknown sender",
            "snippet": entry.get("snippet") or "",
            "date": entry.get("date") or None,
            "body": entry.get("body") or "",
            "labelIds": list(label_ids) if isinstance(label_ids, (list, tuple)) else [],
            "updatedAt": timestamp,
            "user": user,
        }

        existing = self._backend.get(id=message_id, user=user)
        record = {**existing, **payload} if existing else {**payload, "createdAt": timestamp}
        self._backend.upsert(record)
        LOGGER.info("Recorded %s classification of %s for %s", label, message_id, user)
        return payload

    def get_classifications(self, label: str | None = None, user: str | None = None) -> List[Dict[str, Any]]:
        filters: Dict[str, Any] = {}
        if _clean(user):
            filters["user"] = _clean(user)
        if _clean(label):
            filters["label"] = _clean(label).lower()
        return self._backend.query(**filters)

    def list_classified_ids(self, user_id: str) -> FrozenSet[str]:
        return frozenset(item["id"] for item in self.get_classifications(user=user_id) if item.get("id"))


class UserStore:
    """Google profile and OAuth tokens per signed-in user."""

    def __init__(self, backend: RecordBackend):
        self._backend = backend

    def upsert_user_record(
        self,
        id: str,
        email: str = "",
        name: str = "",
        picture: str = "",
        tokens: Mapping[str, Any] | None = None,
    ) -> Dict[str, Any]:
        if not id:
            raise InvalidArgument("User id is required to upsert a user.")

        existing = self._backend.get(id=id)
        timestamp = _now()
        payload = {
            "id": id,
            "email": email or "",
            "name": name or "",
            "picture": picture or "",
            "tokens": merge_tokens(existing.get("tokens") if existing else None, tokens),
            "updatedAt": timestamp,
        }
        record = {**existing, **payload} if existing else {**payload, "createdAt": timestamp}
        LOGGER.info("Saved user %s", id)
        return self._backend.upsert(record)

    def save_user_tokens(self, user_id: str, tokens: Mapping[str, Any]) -> Dict[str, Any]:
        if not user_id:
            raise InvalidArgument("User id is required to save tokens.")
        existing = self._backend.get(id=user_id)
        if not existing:
            raise InvalidArgument("Cannot save tokens for unknown user.")
        record = {
            **existing,
            "tokens": merge_tokens(existing.get("tokens"), tokens),
            "updatedAt": _now(),
        }
        LOGGER.debug("Persisted refreshed tokens for %s", user_id)
        return self._backend.upsert(record)

    def get_user_by_id(self, user_id: str | None) -> Optional[Dict[str, Any]]:
        if not user_id:
            return None
        return self._backend.get(id=user_id)

    def get_user_tokens(self, user_id: str | None) -> Optional[Dict[str, Any]]:
        user = self.get_user_by_id(user_id)
        return (user or {}).get("tokens") or None


def open_ledgers(config: AppConfig) -> tuple[ClassificationLedger, UserStore]:
    """Build both ledgers on the storage backend selected in ``config``."""

    if config.storage_backend == "sqlite":
        classifications = SqliteBackend(config.db_path, "classifications", ("user", "id"))
        users = SqliteBackend(config.db_path, "users", ("id",))
    else:
        classifications = JsonFileBackend(config.classification_store, "items", ("user", "id"))
        users = JsonFileBackend(config.user_store, "users", ("id",))
    LOGGER.debug("Using %s storage backend", config.storage_backend)
    return ClassificationLedger(classifications), UserStore(users)
