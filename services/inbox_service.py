from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Protocol

from models.email_message import DetailedMessage, MessageFilters, MessagePage, ThreadMessage
from services.errors import InvalidArgument
from utils.headers import (
    build_gmail_query,
    find_header,
    millis_to_iso,
    parse_datetime,
    parse_internal_date,
    to_epoch_millis,
)
from utils.mime import extract_body

MAX_PAGE_SIZE = 500
DEFAULT_TARGET = 50
NO_SUBJECT = "(no subject)"
UNKNOWN_SENDER = "Unknown sender"


class MessageApi(Protocol):
    async def list_message_ids(
        self,
        page_size: int,
        query: Optional[str] = None,
        label_ids: Optional[List[str]] = None,
        page_token: Optional[str] = None,
    ) -> MessagePage: ...

    async def get_message(self, message_id: str) -> Dict[str, Any]: ...

    async def get_thread(self, thread_id: str) -> Dict[str, Any]: ...


def _positive(value: Optional[int]) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return None


def shape_message(message_id: str, raw: Dict[str, Any]) -> DetailedMessage:
    payload = raw.get("payload") or {}
    headers = payload.get("headers") or []
    return DetailedMessage(
        id=message_id,
        thread_id=raw.get("threadId"),
        label_ids=tuple(raw.get("labelIds") or ()),
        subject=find_header(headers, "Subject") or NO_SUBJECT,
        sender=find_header(headers, "From") or UNKNOWN_SENDER,
        date=find_header(headers, "Date"),
        snippet=raw.get("snippet") or "",
        body=extract_body(payload),
    )


def message_timestamp(header_date: Optional[str], internal_date: Any) -> Optional[int]:
    """Epoch millis from the Date header, else from Gmail's internalDate."""

    parsed = parse_datetime(header_date)
    if parsed is not None:
        return to_epoch_millis(parsed)
    return parse_internal_date(internal_date)


def shape_thread_message(raw: Dict[str, Any], thread_id: str) -> ThreadMessage:
    payload = raw.get("payload") or {}
    headers = payload.get("headers") or []
    header_date = find_header(headers, "Date")
    timestamp = message_timestamp(header_date, raw.get("internalDate"))
    return ThreadMessage(
        id=raw.get("id"),
        thread_id=raw.get("threadId") or thread_id,
        label_ids=tuple(raw.get("labelIds") or ()),
        subject=find_header(headers, "Subject") or NO_SUBJECT,
        sender=find_header(headers, "From") or UNKNOWN_SENDER,
        to=find_header(headers, "To") or "",
        cc=find_header(headers, "Cc") or "",
        snippet=raw.get("snippet") or "",
        body=extract_body(payload),
        date=millis_to_iso(timestamp),
        header_date=header_date,
        timestamp=timestamp,
    )


class InboxService:
    """Fetch unclassified inbox messages and whole threads for one user."""

    def __init__(self, api: MessageApi, default_target: int = DEFAULT_TARGET):
        self._api = api
        self._default_target = _positive(default_target) or DEFAULT_TARGET

    async def fetch_unique_messages(
        self,
        target_count: Optional[int] = None,
        filters: Optional[MessageFilters] = None,
        exclude_ids: Iterable[str] = (),
        page_size: Optional[int] = None,
    ) -> List[DetailedMessage]:
        """Return up to ``target_count`` distinct messages not in ``exclude_ids``.

        Pages are requested one after another until enough candidates are
        collected or Gmail runs out; the details of every candidate are then
        fetched concurrently and returned in the order the ids were collected.
        """

        filters = filters or MessageFilters()
        target = _positive(target_count) or self._default_target
        size = min(max(_positive(page_size) or target, 1), MAX_PAGE_SIZE)
        excluded = frozenset(exclude_ids)
        query = build_gmail_query(filters.query, filters.after, filters.before) or None
        label_ids = list(filters.label_ids) or None

        seen: set[str] = set()
        candidates: List[str] = []
        page_token: Optional[str] = None

        while len(candidates) < target:
            page = await self._api.list_message_ids(size, query=query, label_ids=label_ids, page_token=page_token)
            if not page.ids:
                break
            for message_id in page.ids:
                if message_id in seen:
                    continue
                seen.add(message_id)
                if message_id in excluded:
                    continue
                candidates.append(message_id)
                if len(candidates) >= target:
                    break
            if not page.next_page_token:
                break
            page_token = page.next_page_token

        if not candidates:
            return []

        details = await asyncio.gather(*(self._api.get_message(message_id) for message_id in candidates))
        return [shape_message(message_id, raw) for message_id, raw in zip(candidates, details)]

    async def fetch_thread(self, thread_id: str) -> List[ThreadMessage]:
        """Return every message of a thread in ascending chronological order."""

        if not thread_id:
            raise InvalidArgument("Thread id is required.")

        response = await self._api.get_thread(thread_id)
        owner = response.get("id") or thread_id
        messages = [shape_thread_message(raw, owner) for raw in response.get("messages") or []]
        # list.sort is stable; messages without a timestamp order as the epoch
        messages.sort(key=lambda message: message.timestamp if message.timestamp is not None else 0)
        return messages
