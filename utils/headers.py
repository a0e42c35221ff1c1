from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Iterable, Optional, Sequence, Union

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)

DateInput = Union[datetime, str, None]


def find_header(headers: Sequence[Dict[str, str]] | None, name: str) -> Optional[str]:
    """Return the value of the first header called exactly ``name``."""

    for header in headers or []:
        if header.get("name") == name:
            return header.get("value") or None
    return None


def parse_datetime(value: DateInput) -> Optional[datetime]:
    """Parse ISO-8601 or RFC 2822 text into an aware datetime.

    Naive values are taken as UTC. Returns ``None`` for anything unparseable.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_epoch_millis(value: datetime) -> int:
    return (value - EPOCH) // _ONE_MS


def millis_to_iso(millis: Optional[int]) -> Optional[str]:
    """Format epoch milliseconds as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""

    if millis is None:
        return None
    try:
        moment = EPOCH + timedelta(milliseconds=millis)
    except OverflowError:
        return None
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_internal_date(value: object) -> Optional[int]:
    """Gmail's ``internalDate`` is epoch milliseconds encoded as a string."""

    if value is None or value == "":
        return None
    try:
        number = int(str(value).strip())
    except ValueError:
        return None
    return number


def build_gmail_query(query: str | None, after: DateInput = None, before: DateInput = None) -> str:
    """Combine free text with ``after:``/``before:`` epoch-second clauses."""

    parts = []
    if query and query.strip():
        parts.append(query.strip())
    for operator, value in (("after", after), ("before", before)):
        moment = parse_datetime(value)
        if moment is not None:
            parts.append(f"{operator}:{math.floor(moment.timestamp())}")
    return " ".join(parts).strip()


def split_label_ids(raw: Iterable[str] | str | None) -> list[str]:
    """Split comma-separated (and possibly repeated) label id parameters."""

    if not raw:
        return []
    values = [raw] if isinstance(raw, str) else list(raw)
    labels = []
    for value in values:
        labels.extend(label.strip() for label in value.split(","))
    return [label for label in labels if label]
