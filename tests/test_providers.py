"""Unit tests for OAuth2 provider clients."""

from __future__ import annotations

import asyncio

from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from oauthgate.exceptions import ConfigurationError, TokenExchangeError
from oauthgate.providers import (
    GenericOAuth2Provider,
    GitHubProvider,
    GoogleProvider,
    OAuthProvider,
    create_provider,
)
from oauthgate.types import ProviderCredential


# ── Helpers ──────────────────────────────────────────────────────────


def _mock_client(handler: Any) -> httpx.AsyncClient:
    """AsyncClient answering every request with *handler*."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _with_client(provider: OAuthProvider, handler: Any) -> list[httpx.Request]:
    """Install a mock client on *provider* and return the request log."""
    seen: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    provider._http_client = _mock_client(recording)  # pylint: disable=protected-access
    return seen


# ── Authorization URL ───────────────────────────────────────────────


class TestAuthorizeUrl:
    """Tests for authorization URL construction."""

    def test_github_authorize_url(self) -> None:
        """GitHub URL carries client id, callback, scope and state."""
        provider = GitHubProvider(client_id="gh-id", client_secret="s")
        url = provider.build_authorize_url("http://app.test/auth/github/callback", state="st")
        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://github.com/login/oauth/authorize"
        assert params["client_id"] == ["gh-id"]
        assert params["redirect_uri"] == ["http://app.test/auth/github/callback"]
        assert params["scope"] == ["user"]
        assert params["state"] == ["st"]
        assert params["response_type"] == ["code"]

    def test_state_omitted_when_none(self) -> None:
        """No state parameter is sent when none is given."""
        provider = GitHubProvider(client_id="gh-id")
        params = parse_qs(urlparse(provider.build_authorize_url("http://cb")).query)
        assert "state" not in params

    def test_extra_params(self) -> None:
        """Extra parameters are appended."""
        provider = GoogleProvider(client_id="gg-id")
        params = parse_qs(urlparse(provider.build_authorize_url("http://cb", extra_params={"prompt": "consent"})).query)
        assert params["prompt"] == ["consent"]
        assert params["scope"] == ["openid email profile"]


# ── Token exchange ──────────────────────────────────────────────────


class TestExchangeCode:
    """Tests for authorization code exchange."""

    def test_github_success(self) -> None:
        """A JSON token response becomes an OAuthTokenSet."""
        provider = GitHubProvider(client_id="gh-id", client_secret="gh-secret")
        seen = _with_client(
            provider,
            lambda request: httpx.Response(
                200, json={"access_token": "gho_abc", "token_type": "bearer", "scope": "user"}
            ),
        )
        tokens = asyncio.run(provider.exchange_code("abc123", "http://app.test/auth/github/callback"))
        assert tokens.access_token == "gho_abc"
        assert tokens.scope == "user"
        body = parse_qs(seen[0].content.decode())
        assert body["code"] == ["abc123"]
        assert body["client_secret"] == ["gh-secret"]
        assert seen[0].headers["accept"] == "application/json"

    def test_error_field(self) -> None:
        """GitHub's 200-with-error answer raises TokenExchangeError."""
        provider = GitHubProvider(client_id="gh-id", client_secret="s")
        _with_client(
            provider,
            lambda request: httpx.Response(
                200,
                json={"error": "bad_verification_code", "error_description": "The code is incorrect"},
            ),
        )
        with pytest.raises(TokenExchangeError, match="The code is incorrect"):
            asyncio.run(provider.exchange_code("bad", "http://cb"))

    def test_http_error(self) -> None:
        """Non-2xx responses raise TokenExchangeError."""
        provider = GitHubProvider(client_id="gh-id", client_secret="s")
        _with_client(provider, lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(TokenExchangeError, match="500"):
            asyncio.run(provider.exchange_code("c", "http://cb"))

    def test_transport_error(self) -> None:
        """Network failures raise TokenExchangeError."""
        provider = GitHubProvider(client_id="gh-id", client_secret="s")

        def fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        _with_client(provider, fail)
        with pytest.raises(TokenExchangeError):
            asyncio.run(provider.exchange_code("c", "http://cb"))

    def test_non_json(self) -> None:
        """A non-JSON body raises TokenExchangeError."""
        provider = GitHubProvider(client_id="gh-id", client_secret="s")
        _with_client(provider, lambda request: httpx.Response(200, text="access_token=x&scope=user"))
        with pytest.raises(TokenExchangeError, match="non-JSON"):
            asyncio.run(provider.exchange_code("c", "http://cb"))

    def test_missing_access_token(self) -> None:
        """A response without access_token raises TokenExchangeError."""
        provider = GitHubProvider(client_id="gh-id", client_secret="s")
        _with_client(provider, lambda request: httpx.Response(200, json={"token_type": "bearer"}))
        with pytest.raises(TokenExchangeError, match="access_token"):
            asyncio.run(provider.exchange_code("c", "http://cb"))

    def test_generic_grant_type(self) -> None:
        """Generic providers send a standard authorization_code grant."""
        provider = GenericOAuth2Provider(
            client_id="i",
            client_secret="s",
            authorize_url="https://idp.test/authorize",
            token_url="https://idp.test/token",
            name="idp",
        )
        seen = _with_client(
            provider,
            lambda request: httpx.Response(200, json={"access_token": "t", "expires_in": 60}),
        )
        tokens = asyncio.run(provider.exchange_code("c", "http://cb"))
        assert tokens.expires_in == 60
        assert str(seen[0].url) == "https://idp.test/token"
        body = parse_qs(seen[0].content.decode())
        assert body["grant_type"] == ["authorization_code"]
        assert body["redirect_uri"] == ["http://cb"]


# ── Userinfo ────────────────────────────────────────────────────────


class TestUserinfo:
    """Tests for profile fetching."""

    def test_bearer_header(self) -> None:
        """The access token is sent as a bearer credential."""
        provider = GitHubProvider(client_id="gh-id")
        seen = _with_client(provider, lambda request: httpx.Response(200, json={"id": 1, "login": "octocat"}))
        profile = asyncio.run(provider.get_userinfo("gho_abc"))
        assert profile == {"id": 1, "login": "octocat"}
        assert str(seen[0].url) == "https://api.github.com/user"
        assert seen[0].headers["authorization"] == "Bearer gho_abc"

    def test_http_error_propagates(self) -> None:
        """Profile errors surface as httpx errors."""
        provider = GitHubProvider(client_id="gh-id")
        _with_client(provider, lambda request: httpx.Response(401))
        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(provider.get_userinfo("bad"))

    def test_no_endpoint(self) -> None:
        """Providers without a userinfo endpoint return an empty profile."""
        provider = GenericOAuth2Provider(
            client_id="i",
            authorize_url="https://idp.test/a",
            token_url="https://idp.test/t",
        )
        assert asyncio.run(provider.get_userinfo("t")) == {}


# ── create_provider ─────────────────────────────────────────────────


class TestCreateProvider:
    """Tests for the provider factory."""

    def test_builtin_github(self) -> None:
        """'github' maps to GitHubProvider."""
        provider = create_provider(ProviderCredential("github", "i", "s"), ["user", "read:org"])
        assert isinstance(provider, GitHubProvider)
        assert provider.scopes == ["user", "read:org"]

    def test_builtin_google(self) -> None:
        """'google' maps to GoogleProvider."""
        assert isinstance(create_provider(ProviderCredential("google", "i", "s")), GoogleProvider)

    def test_userinfo_override(self) -> None:
        """A credential userinfo URL replaces the built-in one."""
        provider = create_provider(
            ProviderCredential("github", "i", "s", userinfo_url="https://ghe.test/api/v3/user")
        )
        assert provider.userinfo_url == "https://ghe.test/api/v3/user"

    def test_generic(self) -> None:
        """Other names need endpoints and get a generic client."""
        provider = create_provider(
            ProviderCredential(
                "gitlab",
                "i",
                "s",
                authorize_url="https://gitlab.test/oauth/authorize",
                token_url="https://gitlab.test/oauth/token",
            )
        )
        assert isinstance(provider, GenericOAuth2Provider)
        assert provider.name == "gitlab"

    def test_builtin_with_endpoints_becomes_generic(self) -> None:
        """Explicit endpoints on a built-in name select the generic client."""
        provider = create_provider(
            ProviderCredential(
                "github",
                "i",
                "s",
                authorize_url="https://ghe.test/login/oauth/authorize",
                token_url="https://ghe.test/login/oauth/access_token",
            )
        )
        assert isinstance(provider, GenericOAuth2Provider)
        assert provider.authorize_url.startswith("https://ghe.test")

    def test_unknown_without_endpoints(self) -> None:
        """Unknown providers without endpoints are a configuration error."""
        with pytest.raises(ConfigurationError):
            create_provider(ProviderCredential("twitter", "i", "s"))
