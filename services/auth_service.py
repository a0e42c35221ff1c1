from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from services.errors import AuthorizationMissing, InvalidArgument, UpstreamFailure
from utils.config import AppConfig

LOGGER = logging.getLogger(__name__)
SCOPES: Iterable[str] = (
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "openid",
)
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Google reorders and extends granted scopes when include_granted_scopes is set.
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

TokenCallback = Callable[[Dict[str, Any]], None]


def load_client_config(config: AppConfig) -> Dict[str, Any]:
    """Read the OAuth client secrets, preferring the inline environment value."""

    if config.inline_credentials:
        return json.loads(config.inline_credentials)
    if not config.credentials_file.exists():
        raise FileNotFoundError(f"Missing OAuth client secrets: {config.credentials_file}")
    return json.loads(config.credentials_file.read_text(encoding="utf-8"))


def _client_section(client_config: Dict[str, Any]) -> Dict[str, Any]:
    section = client_config.get("installed") or client_config.get("web") or {}
    if not section.get("client_id") or not section.get("client_secret") or not section.get("redirect_uris"):
        raise ValueError(
            "Invalid OAuth2 credentials. Ensure credentials.json contains client_id, "
            "client_secret, and redirect URIs."
        )
    return section


def credentials_from_tokens(tokens: Dict[str, Any], client_config: Dict[str, Any]) -> Credentials:
    section = _client_section(client_config)
    expiry = None
    if tokens.get("expiry_date"):
        # google-auth compares against naive UTC datetimes
        expiry = datetime.fromtimestamp(int(tokens["expiry_date"]) / 1000, tz=timezone.utc).replace(tzinfo=None)
    scope = tokens.get("scope")
    return Credentials(
        token=tokens.get("access_token"),
        refresh_token=tokens.get("refresh_token"),
        id_token=tokens.get("id_token"),
        token_uri=section.get("token_uri", DEFAULT_TOKEN_URI),
        client_id=section["client_id"],
        client_secret=section["client_secret"],
        scopes=scope.split() if scope else list(SCOPES),
        expiry=expiry,
    )


def tokens_from_credentials(creds: Credentials) -> Dict[str, Any]:
    tokens: Dict[str, Any] = {"access_token": creds.token, "token_type": "Bearer"}
    if creds.refresh_token:
        tokens["refresh_token"] = creds.refresh_token
    if creds.id_token:
        tokens["id_token"] = creds.id_token
    if creds.scopes:
        tokens["scope"] = " ".join(creds.scopes)
    if creds.expiry:
        tokens["expiry_date"] = int(creds.expiry.replace(tzinfo=timezone.utc).timestamp() * 1000)
    return tokens


@dataclass(slots=True)
class AuthContext:
    """Credentials for one user plus the hook that persists refreshed tokens.

    ``ensure_fresh`` blocks on the token endpoint; callers on an event loop run
    it in a worker thread. The lock keeps a concurrent batch to one refresh.
    """

    user_id: str
    credentials: Credentials
    on_refresh: Optional[TokenCallback] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def ensure_fresh(self) -> Credentials:
        creds = self.credentials
        with self._lock:
            if creds.valid or not creds.refresh_token:
                return creds
            LOGGER.info("Refreshing Gmail token for user %s", self.user_id)
            try:
                creds.refresh(Request())
            except RefreshError as exc:
                raise AuthorizationMissing(f"Stored Gmail credentials are no longer valid: {exc}") from exc
            self.report_refresh()
        return creds

    def report_refresh(self) -> None:
        """Hand the current tokens to ``on_refresh``; failures are only logged."""

        if self.on_refresh is None:
            return
        try:
            self.on_refresh(tokens_from_credentials(self.credentials))
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Failed to persist refreshed tokens for %s: %s", self.user_id, exc)


class OAuthService:
    """Authorization-code flow against Google for the web client."""

    def __init__(self, client_config: Dict[str, Any]):
        self._client_config = client_config
        self._redirect_uri = _client_section(client_config)["redirect_uris"][0]

    def _flow(self, state: str | None = None) -> Flow:
        return Flow.from_client_config(
            self._client_config,
            scopes=list(SCOPES),
            redirect_uri=self._redirect_uri,
            state=state,
            autogenerate_code_verifier=False,
        )

    def generate_auth_url(self, state: str) -> str:
        url, _ = self._flow(state).authorization_url(
            access_type="offline",
            prompt="consent",
            include_granted_scopes="true",
        )
        return url

    def exchange_code(self, code: str) -> Tuple[Dict[str, Any], Dict[str, str]]:
        flow = self._flow()
        flow.fetch_token(code=code)
        creds = flow.credentials
        try:
            client = build("oauth2", "v2", credentials=creds, cache_discovery=False)
            data = client.userinfo().get().execute()
        except HttpError as exc:
            LOGGER.error("Failed to fetch Google profile: %s", exc)
            raise UpstreamFailure(str(exc.reason or exc), status=exc.resp.status) from exc

        if not data.get("id"):
            raise UpstreamFailure("Unable to retrieve Google user information.")

        profile = {
            "id": data["id"],
            "email": data.get("email") or "",
            "name": data.get("name") or data.get("email") or "",
            "picture": data.get("picture") or "",
        }
        LOGGER.info("Completed OAuth exchange for %s", profile["email"] or profile["id"])
        return tokens_from_credentials(creds), profile


class CredentialProvider:
    """Turn stored user tokens into an :class:`AuthContext`."""

    def __init__(self, client_config: Dict[str, Any], user_store):
        self._client_config = client_config
        self._user_store = user_store

    def authorize(self, user_id: str | None) -> AuthContext:
        if not user_id:
            raise InvalidArgument("Missing user identifier.")
        tokens = self._user_store.get_user_tokens(user_id)
        if not tokens:
            raise AuthorizationMissing("No stored Gmail credentials for this user. Please sign in.")

        def persist(next_tokens: Dict[str, Any]) -> None:
            self._user_store.save_user_tokens(user_id, next_tokens)

        LOGGER.debug("Loaded stored credentials for %s", user_id)
        return AuthContext(
            user_id=user_id,
            credentials=credentials_from_tokens(tokens, self._client_config),
            on_refresh=persist,
        )
