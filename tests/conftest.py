from __future__ import annotations

import asyncio
import base64
from typing import Any, Dict, List, Optional

import pytest

from models.email_message import MessagePage
from services.errors import UpstreamFailure
from utils.config import AppConfig


def encode(text: str) -> str:
    """Gmail-style body data: URL-safe base64 without padding."""

    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def raw_message(
    message_id: str,
    subject: str | None = None,
    body: str = "",
    headers: Optional[List[Dict[str, str]]] = None,
    internal_date: str | None = None,
) -> Dict[str, Any]:
    all_headers = list(headers or [])
    if subject is not None:
        all_headers.append({"name": "Subject", "value": subject})
    message: Dict[str, Any] = {
        "id": message_id,
        "threadId": f"thread-{message_id}",
        "labelIds": ["INBOX"],
        "snippet": f"snippet {message_id}",
        "payload": {
            "mimeType": "text/plain",
            "headers": all_headers,
            "body": {"data": encode(body)} if body else {},
        },
    }
    if internal_date is not None:
        message["internalDate"] = internal_date
    return message


class FakeMessageApi:
    """In-memory stand-in for the Gmail API, paging through ``pages`` in order."""

    def __init__(self, pages: List[List[str]] | None = None, messages: Dict[str, Dict[str, Any]] | None = None):
        self.pages = pages or []
        self.messages = messages or {}
        self.threads: Dict[str, Dict[str, Any]] = {}
        self.list_calls: List[Dict[str, Any]] = []
        self.detail_calls: List[str] = []
        self.delays: Dict[str, float] = {}
        self.failing: set[str] = set()

    async def list_message_ids(self, page_size, query=None, label_ids=None, page_token=None) -> MessagePage:
        self.list_calls.append(
            {"page_size": page_size, "query": query, "label_ids": label_ids, "page_token": page_token}
        )
        index = int(page_token) if page_token else 0
        if index >= len(self.pages):
            return MessagePage(ids=[])
        next_token = str(index + 1) if index + 1 < len(self.pages) else None
        return MessagePage(ids=list(self.pages[index]), next_page_token=next_token)

    async def get_message(self, message_id: str) -> Dict[str, Any]:
        self.detail_calls.append(message_id)
        await asyncio.sleep(self.delays.get(message_id, 0))
        if message_id in self.failing:
            raise UpstreamFailure(f"Requested entity {message_id} was not found.", status=404)
        return self.messages.get(message_id) or raw_message(message_id, subject=f"Subject {message_id}")

    async def get_thread(self, thread_id: str) -> Dict[str, Any]:
        return self.threads[thread_id]


@pytest.fixture
def fake_api() -> FakeMessageApi:
    return FakeMessageApi()


@pytest.fixture
def config_factory(tmp_path):

    def build(**overrides) -> AppConfig:
        values = dict(
            host="127.0.0.1",
            port=5001,
            credentials_file=tmp_path / "credentials.json",
            inline_credentials=None,
            client_origin="http://localhost:5173/",
            max_emails=50,
            storage_backend="json",
            classification_store=tmp_path / "data" / "classifications.json",
            user_store=tmp_path / "data" / "users.json",
            db_path=tmp_path / "data" / "triage.db",
            session_secret="test-secret",
            is_production=False,
            auto_open_auth=False,
            log_dir=tmp_path / "logs",
            log_level="INFO",
        )
        values.update(overrides)
        return AppConfig(**values)

    return build


CLIENT_CONFIG = {
    "web": {
        "client_id": "client-123.apps.googleusercontent.com",
        "client_secret": "shh",
        "redirect_uris": ["http://localhost:5001/auth/callback"],
        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
        "token_uri": "https://oauth2.googleapis.com/token",
    }
}
