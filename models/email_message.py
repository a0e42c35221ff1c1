from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Tuple


@dataclass(slots=True, frozen=True)
class DetailedMessage:
    """A Gmail message shaped for display and classification."""

    id: str
    thread_id: str | None
    subject: str
    sender: str
    body: str
    snippet: str
    label_ids: Tuple[str, ...] = ()
    date: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "labelIds": list(self.label_ids),
            "subject": self.subject,
            "from": self.sender,
            "date": self.date,
            "snippet": self.snippet,
            "body": self.body,
        }


@dataclass(slots=True, frozen=True)
class ThreadMessage(DetailedMessage):
    to: str = ""
    cc: str = ""
    header_date: str | None = None
    timestamp: int | None = None

    def to_dict(self) -> Dict[str, Any]:
        payload = DetailedMessage.to_dict(self)
        payload.update(to=self.to, cc=self.cc, headerDate=self.header_date, timestamp=self.timestamp)
        return payload


@dataclass(slots=True)
class MessageFilters:
    """Search filters applied to the inbox listing."""

    query: str = ""
    label_ids: List[str] = field(default_factory=list)
    after: datetime | str | None = None
    before: datetime | str | None = None


@dataclass(slots=True)
class MessagePage:
    ids: List[str]
    next_page_token: str | None = None
