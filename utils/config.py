from __future__ import annotations

import base64
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parent.parent
STORAGE_BACKENDS = ("json", "sqlite")


@dataclass(slots=True)
class AppConfig:
    host: str
    port: int
    credentials_file: Path
    inline_credentials: Optional[str]
    client_origin: str
    max_emails: int
    storage_backend: str
    classification_store: Path
    user_store: Path
    db_path: Path
    session_secret: str
    is_production: bool
    auto_open_auth: bool
    log_dir: Path
    log_level: str

    @property
    def cors_origin(self) -> str:
        return self.client_origin.rstrip("/")


def _resolve_path(value: str | None, fallback: str) -> Path:
    candidate = Path(value or fallback)
    if not candidate.is_absolute():
        candidate = PROJECT_ROOT / candidate
    return candidate


def _int_setting(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes"}


def _maybe_write_secret_file(target: Path, b64_value: str | None) -> None:
    if not b64_value:
        return
    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        decoded = base64.b64decode(b64_value)
    except Exception as exc:  # noqa: BLE001
        raise ValueError("Failed to decode base64 secret payload") from exc
    target.write_bytes(decoded)


def load_config(env_file: str | os.PathLike[str] | None = None) -> AppConfig:
    """Load configuration values from a .env file and environment variables."""

    if env_file:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)

    credentials_file = _resolve_path(os.getenv("CREDENTIALS_PATH"), "credentials.json")
    _maybe_write_secret_file(credentials_file, os.getenv("GOOGLE_CREDENTIALS_B64"))

    storage_backend = os.getenv("STORAGE_BACKEND", "json").strip().lower()
    if storage_backend not in STORAGE_BACKENDS:
        raise ValueError(f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}")

    environment = os.getenv("APP_ENV") or os.getenv("NODE_ENV") or ""
    log_dir = _resolve_path(os.getenv("LOG_DIR"), "logs")
    log_dir.mkdir(parents=True, exist_ok=True)

    return AppConfig(
        host=os.getenv("HOST", "127.0.0.1"),
        port=_int_setting("PORT", 5001),
        credentials_file=credentials_file,
        inline_credentials=os.getenv("GOOGLE_CREDENTIALS") or None,
        client_origin=os.getenv("CLIENT_ORIGIN", "http://localhost:5173"),
        max_emails=_int_setting("MAX_EMAILS", 50) or 50,
        storage_backend=storage_backend,
        classification_store=_resolve_path(os.getenv("CLASSIFICATION_STORE"), "data/classifications.json"),
        user_store=_resolve_path(os.getenv("USER_STORE"), "data/users.json"),
        db_path=_resolve_path(os.getenv("DB_PATH"), "data/triage.db"),
        session_secret=os.getenv("SESSION_SECRET", "dev-only-secret-change-me"),
        is_production=environment.strip().lower() == "production",
        auto_open_auth=_flag("AUTO_OPEN_AUTH"),
        log_dir=log_dir,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
