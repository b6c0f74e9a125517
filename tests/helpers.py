"""Shared builders for gate and middleware tests."""

from __future__ import annotations

import time

from typing import Any
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlencode, urlsplit

from fastapi import Depends, FastAPI
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request

from oauthgate.credentials import CredentialStore
from oauthgate.gate import OAuthGate
from oauthgate.middleware import OAuthGateMiddleware, get_current_user
from oauthgate.token_store import MemoryTokenStore
from oauthgate.types import AppUser, OAuthTokenSet


STATE_SECRET = "test-state-secret"
SESSION_SECRET = "test-session-secret"


def make_mock_provider(
    access_token: str = "gho_test",
    profile: dict[str, Any] | None = None,
) -> MagicMock:
    """Create a mock OAuthProvider whose authorize URL echoes its arguments."""
    provider = MagicMock()

    def build_authorize_url(redirect_uri: str, state: str | None = None) -> str:
        params = {"redirect_uri": redirect_uri}
        if state is not None:
            params["state"] = state
        return f"https://idp.test/authorize?{urlencode(params)}"

    provider.build_authorize_url.side_effect = build_authorize_url
    provider.exchange_code = AsyncMock(
        return_value=OAuthTokenSet(
            access_token=access_token,
            token_type="bearer",
            scope="user",
            issued_at=time.time(),
        )
    )
    provider.get_userinfo = AsyncMock(return_value=profile or {"id": 42, "login": "octocat"})
    provider.close = AsyncMock()
    return provider


def make_gate(
    credentials: CredentialStore,
    user_service: Any,
    token_store: MemoryTokenStore,
    provider_builder: Any,
    **kwargs: Any,
) -> OAuthGate:
    """Build a gate with test defaults."""
    kwargs.setdefault("state_secret", STATE_SECRET)
    return OAuthGate(
        credentials=credentials,
        user_service=user_service,
        token_store=token_store,
        provider_builder=provider_builder,
        **kwargs,
    )


def make_app(gate: OAuthGate) -> FastAPI:
    """FastAPI app protected by *gate* with cookie sessions."""
    app = FastAPI()

    @app.get("/")
    def home(user: AppUser = Depends(get_current_user)) -> dict[str, Any]:
        return {"page": "home", "role": user.role}

    @app.get("/dashboard")
    def dashboard(user: AppUser = Depends(get_current_user)) -> dict[str, Any]:
        return {"page": "dashboard", "id": user.id, "role": user.role}

    @app.get("/public/info")
    def public_info() -> dict[str, str]:
        return {"page": "info"}

    app.add_middleware(OAuthGateMiddleware, gate=gate)
    app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET)
    return app


def make_request(
    path: str,
    query: str = "",
    headers: dict[str, str] | None = None,
) -> Request:
    """Build a bare GET request for calling the gate directly."""
    raw_headers = [(b"host", b"testserver")]
    raw_headers.extend((k.lower().encode(), v.encode()) for k, v in (headers or {}).items())
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": query.encode(),
        "headers": raw_headers,
        "server": ("testserver", 80),
        "client": ("127.0.0.1", 50000),
    }
    return Request(scope)


def query_param(url: str, name: str) -> str | None:
    """First value of query parameter *name* in *url*."""
    values = parse_qs(urlsplit(url).query).get(name)
    return values[0] if values else None
