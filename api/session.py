from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

LOGGER = logging.getLogger(__name__)

SESSION_COOKIE = "triage_session"
STATE_COOKIE = "oauth_state"
SESSION_TTL = timedelta(days=30)
STATE_TTL = timedelta(minutes=10)
ALGORITHM = "HS256"


def sign_session(user_id: str, secret: str, now: Optional[datetime] = None) -> str:
    issued = now or datetime.now(timezone.utc)
    payload = {"userId": user_id, "iat": issued, "exp": issued + SESSION_TTL}
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def read_session(token: str | None, secret: str) -> Optional[str]:
    """Return the user id carried by a session token, or ``None`` if it is invalid."""

    if not token:
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        LOGGER.debug("Rejected invalid session token")
        return None
    user_id = payload.get("userId")
    return user_id if isinstance(user_id, str) and user_id else None


def cookie_options(is_production: bool) -> Dict[str, Any]:
    return {
        "httponly": True,
        "samesite": "none" if is_production else "lax",
        "secure": is_production,
        "path": "/",
    }
