from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials

from conftest import CLIENT_CONFIG
from services.auth_service import (
    AuthContext,
    CredentialProvider,
    OAuthService,
    credentials_from_tokens,
    load_client_config,
    tokens_from_credentials,
)
from services.errors import AuthorizationMissing, InvalidArgument, UpstreamFailure
from services.ledger import UserStore
from services.stores import JsonFileBackend


def _expired_credentials() -> Credentials:
    return credentials_from_tokens(
        {"access_token": "old", "refresh_token": "refresh-1", "expiry_date": 1_000_000_000_000},
        CLIENT_CONFIG,
    )


def _fake_refresh(creds: Credentials):
    def refresh(_request):
        creds.token = "new"
        creds.expiry = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)

    return refresh


def test_tokens_convert_to_credentials_and_back():
    tokens = {
        "access_token": "abc",
        "refresh_token": "r",
        "scope": "openid https://www.googleapis.com/auth/gmail.readonly",
        "token_type": "Bearer",
        "expiry_date": 1700000000000,
    }

    creds = credentials_from_tokens(tokens, CLIENT_CONFIG)

    assert creds.token == "abc"
    assert creds.client_id == CLIENT_CONFIG["web"]["client_id"]
    assert creds.expiry == datetime(2023, 11, 14, 22, 13, 20)
    assert tokens_from_credentials(creds) == tokens


def test_invalid_client_config_is_rejected():
    with pytest.raises(ValueError, match="Invalid OAuth2 credentials"):
        OAuthService({"installed": {"client_id": "only-id"}})


def test_load_client_config_prefers_inline_value(config_factory):
    config = config_factory(inline_credentials='{"web": {"client_id": "inline"}}')
    assert load_client_config(config) == {"web": {"client_id": "inline"}}

    with pytest.raises(FileNotFoundError):
        load_client_config(config_factory())


def test_ensure_fresh_refreshes_and_reports_tokens():
    creds = _expired_credentials()
    creds.refresh = _fake_refresh(creds)
    seen = []
    context = AuthContext(user_id="u1", credentials=creds, on_refresh=seen.append)

    context.ensure_fresh()

    assert creds.token == "new"
    assert seen[0]["access_token"] == "new"
    assert seen[0]["refresh_token"] == "refresh-1"


def test_ensure_fresh_skips_valid_credentials():
    creds = _expired_credentials()
    creds.expiry = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)
    callback = MagicMock()

    AuthContext(user_id="u1", credentials=creds, on_refresh=callback).ensure_fresh()

    callback.assert_not_called()


def test_refresh_callback_failure_does_not_fail_request():
    creds = _expired_credentials()
    creds.refresh = _fake_refresh(creds)
    callback = MagicMock(side_effect=OSError("disk full"))

    AuthContext(user_id="u1", credentials=creds, on_refresh=callback).ensure_fresh()

    callback.assert_called_once()
    assert creds.token == "new"


def test_revoked_refresh_token_means_authorization_missing():
    creds = _expired_credentials()
    creds.refresh = MagicMock(side_effect=RefreshError("invalid_grant"))

    with pytest.raises(AuthorizationMissing):
        AuthContext(user_id="u1", credentials=creds).ensure_fresh()


def test_credential_provider_wires_refresh_to_user_store(tmp_path):
    users = UserStore(JsonFileBackend(tmp_path / "users.json", "users", ("id",)))
    users.upsert_user_record(id="u1", tokens={"access_token": "old", "refresh_token": "r"})
    provider = CredentialProvider(CLIENT_CONFIG, users)

    context = provider.authorize("u1")
    context.on_refresh({"access_token": "fresh", "expiry_date": 1})

    assert context.credentials.token == "old"
    assert users.get_user_tokens("u1") == {"access_token": "fresh", "refresh_token": "r", "expiry_date": 1}


def test_credential_provider_errors(tmp_path):
    users = UserStore(JsonFileBackend(tmp_path / "users.json", "users", ("id",)))
    users.upsert_user_record(id="no-tokens")
    provider = CredentialProvider(CLIENT_CONFIG, users)

    with pytest.raises(InvalidArgument):
        provider.authorize("")
    with pytest.raises(AuthorizationMissing):
        provider.authorize("no-tokens")
    with pytest.raises(AuthorizationMissing):
        provider.authorize("stranger")


def test_auth_url_requests_offline_consent():
    url = OAuthService(CLIENT_CONFIG).generate_auth_url("state-xyz")

    params = parse_qs(urlparse(url).query)
    assert params["state"] == ["state-xyz"]
    assert params["access_type"] == ["offline"]
    assert params["prompt"] == ["consent"]
    assert params["include_granted_scopes"] == ["true"]
    assert params["redirect_uri"] == ["http://localhost:5001/auth/callback"]
    assert "https://www.googleapis.com/auth/gmail.readonly" in params["scope"][0]


def test_exchange_code_returns_tokens_and_profile():
    flow = MagicMock()
    flow.credentials = Credentials(token="access", refresh_token="refresh", scopes=["openid"])
    client = MagicMock()
    client.userinfo.return_value.get.return_value.execute.return_value = {
        "id": "g-1",
        "email": "ada@example.com",
        "picture": "https://example.com/ada.png",
    }

    with patch("services.auth_service.Flow.from_client_config", return_value=flow), patch(
        "services.auth_service.build", return_value=client
    ):
        tokens, profile = OAuthService(CLIENT_CONFIG).exchange_code("code-1")

    flow.fetch_token.assert_called_once_with(code="code-1")
    assert tokens["access_token"] == "access"
    assert tokens["refresh_token"] == "refresh"
    assert profile == {
        "id": "g-1",
        "email": "ada@example.com",
        "name": "ada@example.com",
        "picture": "https://example.com/ada.png",
    }


def test_exchange_code_requires_profile_id():
    flow = MagicMock()
    flow.credentials = Credentials(token="access")
    client = MagicMock()
    client.userinfo.return_value.get.return_value.execute.return_value = {"email": "x@example.com"}

    with patch("services.auth_service.Flow.from_client_config", return_value=flow), patch(
        "services.auth_service.build", return_value=client
    ):
        with pytest.raises(UpstreamFailure):
            OAuthService(CLIENT_CONFIG).exchange_code("code-1")
