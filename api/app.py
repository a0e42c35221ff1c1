from __future__ import annotations

import logging
import secrets
import webbrowser
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response

from api.session import (
    SESSION_COOKIE,
    SESSION_TTL,
    STATE_COOKIE,
    STATE_TTL,
    cookie_options,
    read_session,
    sign_session,
)
from models.email_message import MessageFilters
from services.auth_service import OAuthService
from services.errors import AuthorizationMissing, InvalidArgument, TriageError, UpstreamFailure
from services.triage_service import TriageService
from utils.config import AppConfig
from utils.headers import parse_datetime, split_label_ids

LOGGER = logging.getLogger(__name__)

ERROR_STATUS = {
    InvalidArgument: 400,
    AuthorizationMissing: 401,
    UpstreamFailure: 502,
}


class NotAuthenticated(Exception):
    """The request carries no usable session."""


def _parse_int(raw: str | None) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def _public_user(user: Dict[str, Any]) -> Dict[str, str]:
    return {
        "id": user["id"],
        "email": user.get("email", ""),
        "name": user.get("name", ""),
        "picture": user.get("picture", ""),
    }


def create_app(config: AppConfig, triage: TriageService, oauth: OAuthService) -> FastAPI:
    """Build the HTTP service around an already wired :class:`TriageService`."""

    app = FastAPI(title="Inbox Triage")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.cors_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    cookies = cookie_options(config.is_production)

    def current_user(request: Request) -> Optional[Dict[str, Any]]:
        user_id = read_session(request.cookies.get(SESSION_COOKIE), config.session_secret)
        user = triage.users.get_user_by_id(user_id)
        if not user or not triage.users.get_user_tokens(user["id"]):
            return None
        return user

    def require_user(user: Optional[Dict[str, Any]] = Depends(current_user)) -> Dict[str, Any]:
        if user is None:
            raise NotAuthenticated()
        return user

    @app.exception_handler(NotAuthenticated)
    async def _unauthorized(_request: Request, _exc: NotAuthenticated) -> JSONResponse:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    @app.exception_handler(TriageError)
    async def _triage_error(_request: Request, exc: TriageError) -> JSONResponse:
        status = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500)
        LOGGER.error("Request failed with %s: %s", type(exc).__name__, exc)
        return JSONResponse({"error": str(exc) or "Unexpected server error"}, status_code=status)

    @app.exception_handler(Exception)
    async def _unexpected(_request: Request, exc: Exception) -> JSONResponse:
        LOGGER.exception("Unhandled error: %s", exc)
        return JSONResponse({"error": str(exc) or "Unexpected server error"}, status_code=500)

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/auth")
    def start_auth() -> RedirectResponse:
        state = secrets.token_hex(16)
        auth_url = oauth.generate_auth_url(state)
        if config.auto_open_auth:
            webbrowser.open(auth_url)
        response = RedirectResponse(auth_url, status_code=302)
        response.set_cookie(STATE_COOKIE, state, max_age=int(STATE_TTL.total_seconds()), **cookies)
        return response

    @app.get("/auth/callback")
    def auth_callback(request: Request, code: Optional[str] = None, state: Optional[str] = None) -> Response:
        stored_state = request.cookies.get(STATE_COOKIE)
        if not state or not stored_state or not secrets.compare_digest(state, stored_state):
            response: Response = PlainTextResponse("Invalid OAuth state.", status_code=400)
        elif not code:
            response = PlainTextResponse("Missing authorization code.", status_code=400)
        else:
            tokens, profile = oauth.exchange_code(code)
            triage.users.upsert_user_record(tokens=tokens, **profile)
            response = RedirectResponse(config.client_origin, status_code=302)
            response.set_cookie(
                SESSION_COOKIE,
                sign_session(profile["id"], config.session_secret),
                max_age=int(SESSION_TTL.total_seconds()),
                **cookies,
            )
        response.delete_cookie(STATE_COOKIE, **cookies)
        return response

    @app.post("/logout", status_code=204)
    def logout() -> Response:
        response = Response(status_code=204)
        response.delete_cookie(SESSION_COOKIE, **cookies)
        return response

    @app.get("/me")
    def me(user: Optional[Dict[str, Any]] = Depends(current_user)) -> JSONResponse:
        if user is None:
            return JSONResponse({"user": None}, status_code=401)
        return JSONResponse({"user": _public_user(user)})

    @app.get("/emails")
    async def list_emails(
        user: Dict[str, Any] = Depends(require_user),
        max_results: Optional[str] = Query(default=None, alias="maxResults"),
        search: str = "",
        label_ids: List[str] = Query(default=[], alias="labelIds"),
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> Dict[str, Any]:
        limit = _parse_int(max_results)
        filters = MessageFilters(
            query=search,
            label_ids=split_label_ids(label_ids),
            after=parse_datetime(since),
            before=parse_datetime(until),
        )
        emails, requested = await triage.unclassified_emails(user["id"], limit=limit, filters=filters)
        return {
            "emails": [email.to_dict() for email in emails],
            "requested": requested,
            "delivered": len(emails),
        }

    @app.get("/classifications")
    def list_classifications(
        user: Dict[str, Any] = Depends(require_user),
        label: Optional[str] = None,
    ) -> Dict[str, Any]:
        return {"items": triage.classifications.get_classifications(label=label, user=user["id"])}

    @app.post("/classifications", status_code=201)
    def create_classification(
        entry: Dict[str, Any] = Body(...),
        user: Dict[str, Any] = Depends(require_user),
    ) -> Dict[str, Any]:
        return {"item": triage.classify(user["id"], entry)}

    @app.get("/threads/{thread_id}")
    async def get_thread(thread_id: str, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
        messages = await triage.thread(user["id"], thread_id)
        return {"messages": [message.to_dict() for message in messages]}

    return app
