from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Mapping, Optional

from services.errors import BodyDecodeError

MimeNode = Mapping[str, Any]
TEXT_SLOTS = {"text/html": "html", "text/plain": "text"}


def decode_base64url(data: str) -> str:
    """Decode a Gmail ``body.data`` value (URL-safe base64, padding optional).

    Only the base64 layer is strict. Bytes that are not UTF-8 (legacy charsets)
    come back with replacement characters.
    """

    compact = "".join(data.split())
    padded = compact + "=" * (-len(compact) % 4)
    try:
        raw = base64.b64decode(padded, altchars=b"-_", validate=True)
    except binascii.Error as exc:
        raise BodyDecodeError(f"Unable to decode message body: {exc}") from exc
    return raw.decode("utf-8", errors="replace")


def _node_data(node: MimeNode) -> Optional[str]:
    body = node.get("body") or {}
    data = body.get("data")
    return decode_base64url(data) if data else None


def extract_body(payload: Optional[MimeNode]) -> str:
    """Return the best body found in a Gmail payload tree.

    The first ``text/html`` and the first ``text/plain`` leaf are collected in
    depth-first order; HTML wins when both exist. Other leaves (images,
    attachments) are never decoded.
    """

    if not payload:
        return ""

    found: Dict[str, Optional[str]] = {"html": None, "text": None}

    def collect(node: MimeNode) -> None:
        mime = (node.get("mimeType") or "").lower()
        children = node.get("parts") or []
        slot = TEXT_SLOTS.get(mime)

        if slot is not None:
            if not found[slot]:
                data = _node_data(node)
                if data:
                    found[slot] = data.strip()
        elif mime.startswith("multipart/") or (not mime and children):
            for child in children:
                collect(child)

    collect(payload)

    if not found["html"] and not found["text"]:
        inline = _node_data(payload)
        if inline and inline.strip():
            slot = "html" if payload.get("mimeType") == "text/html" else "text"
            found[slot] = inline.strip()

    return (found["html"] or found["text"] or "").strip()
