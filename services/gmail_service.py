from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httplib2
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from models.email_message import MessagePage
from services.auth_service import AuthContext
from services.errors import UpstreamFailure

LOGGER = logging.getLogger(__name__)
GMAIL_USER = "me"


class GmailApi:
    """Async facade over the read-only Gmail endpoints the inbox needs.

    google-api-python-client is blocking and its default httplib2 transport is
    not thread-safe, so each request runs in a worker thread with its own
    authorized ``Http`` instance.
    """

    def __init__(self, auth: AuthContext, client=None):
        self._auth = auth
        self._client = client or build("gmail", "v1", credentials=auth.credentials, cache_discovery=False)

    @property
    def user_id(self) -> str:
        return self._auth.user_id

    async def list_message_ids(
        self,
        page_size: int,
        query: Optional[str] = None,
        label_ids: Optional[List[str]] = None,
        page_token: Optional[str] = None,
    ) -> MessagePage:
        params: Dict[str, Any] = {"userId": GMAIL_USER, "maxResults": page_size}
        if query:
            params["q"] = query
        if label_ids:
            params["labelIds"] = list(label_ids)
        if page_token:
            params["pageToken"] = page_token

        response = await self._execute(self._client.users().messages().list(**params), "list messages")
        ids = [message["id"] for message in response.get("messages", []) if message.get("id")]
        LOGGER.debug("Listed %s message ids for %s", len(ids), self.user_id)
        return MessagePage(ids=ids, next_page_token=response.get("nextPageToken"))

    async def get_message(self, message_id: str) -> Dict[str, Any]:
        request = self._client.users().messages().get(userId=GMAIL_USER, id=message_id, format="full")
        return await self._execute(request, f"get message {message_id}")

    async def get_thread(self, thread_id: str) -> Dict[str, Any]:
        request = self._client.users().threads().get(userId=GMAIL_USER, id=thread_id, format="full")
        return await self._execute(request, f"get thread {thread_id}")

    def _http(self) -> AuthorizedHttp:
        return AuthorizedHttp(self._auth.credentials, http=httplib2.Http())

    def _call(self, request) -> Dict[str, Any]:
        creds = self._auth.ensure_fresh()
        token = creds.token
        response = request.execute(http=self._http())
        # AuthorizedHttp refreshes on its own after a 401
        if creds.token != token:
            self._auth.report_refresh()
        return response

    async def _execute(self, request, action: str) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(self._call, request)
        except HttpError as exc:
            LOGGER.error("Failed to %s: %s", action, exc)
            raise UpstreamFailure(str(exc.reason or exc), status=exc.resp.status) from exc
