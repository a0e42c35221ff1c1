from __future__ import annotations

import base64

import pytest

from utils.config import PROJECT_ROOT, load_config

ENV_KEYS = (
    "PORT",
    "MAX_EMAILS",
    "STORAGE_BACKEND",
    "CLASSIFICATION_STORE",
    "USER_STORE",
    "CLIENT_ORIGIN",
    "NODE_ENV",
    "APP_ENV",
    "GOOGLE_CREDENTIALS",
    "GOOGLE_CREDENTIALS_B64",
    "CREDENTIALS_PATH",
    "AUTO_OPEN_AUTH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))


def test_defaults(tmp_path):
    config = load_config(tmp_path / "missing.env")

    assert config.port == 5001
    assert config.max_emails == 50
    assert config.storage_backend == "json"
    assert config.classification_store == PROJECT_ROOT / "data" / "classifications.json"
    assert config.is_production is False
    assert config.auto_open_auth is False
    assert config.cors_origin == "http://localhost:5173"


def test_env_file_values_are_loaded(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "PORT=8080\nMAX_EMAILS=20\nSTORAGE_BACKEND=sqlite\nNODE_ENV=production\n"
        f"USER_STORE={tmp_path / 'users.json'}\nCLIENT_ORIGIN=https://triage.example.com/\n",
        encoding="utf-8",
    )
    for key in ("PORT", "MAX_EMAILS", "STORAGE_BACKEND", "NODE_ENV", "USER_STORE", "CLIENT_ORIGIN"):
        monkeypatch.delenv(key, raising=False)

    config = load_config(env_file)

    assert config.port == 8080
    assert config.max_emails == 20
    assert config.storage_backend == "sqlite"
    assert config.is_production is True
    assert config.user_store == tmp_path / "users.json"
    assert config.cors_origin == "https://triage.example.com"


def test_invalid_values_raise(tmp_path, monkeypatch):
    monkeypatch.setenv("PORT", "eighty")
    with pytest.raises(ValueError, match="PORT"):
        load_config(tmp_path / "missing.env")

    monkeypatch.setenv("PORT", "80")
    monkeypatch.setenv("STORAGE_BACKEND", "postgres")
    with pytest.raises(ValueError, match="STORAGE_BACKEND"):
        load_config(tmp_path / "missing.env")


def test_base64_client_secrets_are_written(tmp_path, monkeypatch):
    target = tmp_path / "secrets" / "credentials.json"
    monkeypatch.setenv("CREDENTIALS_PATH", str(target))
    monkeypatch.setenv("GOOGLE_CREDENTIALS_B64", base64.b64encode(b'{"web": {}}').decode("ascii"))

    config = load_config(tmp_path / "missing.env")

    assert config.credentials_file == target
    assert target.read_text(encoding="utf-8") == '{"web": {}}'
