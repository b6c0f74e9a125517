"""OAuth2 provider clients.

Defines the OAuthProvider ABC and concrete implementations for GitHub,
Google and generic authorization-code providers configured by endpoint.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from .exceptions import ConfigurationError, TokenExchangeError
from .types import OAuthTokenSet


if TYPE_CHECKING:
    from .types import ProviderCredential


logger = logging.getLogger("oauthgate.auth")


class OAuthProvider(ABC):
    """Abstract base class for OAuth2 providers.

    Parameters
    ----------
    client_id : str
        The OAuth2 client ID.
    client_secret : str
        The OAuth2 client secret.
    scopes : list[str]
        Requested OAuth2 scopes.
    authorize_url : str
        The provider's authorization endpoint.
    token_url : str
        The provider's token exchange endpoint.
    userinfo_url : str
        The provider's user profile endpoint.
    """

    name: str = "oauth2"

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        scopes: list[str] | None = None,
        authorize_url: str = "",
        token_url: str = "",
        userinfo_url: str = "",
    ) -> None:
        """Initialize OAuth provider."""
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes or []
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.userinfo_url = userinfo_url
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    def build_authorize_url(
        self,
        redirect_uri: str,
        state: str | None = None,
        extra_params: dict[str, str] | None = None,
    ) -> str:
        """Build the full authorization URL.

        Parameters
        ----------
        redirect_uri : str
            The callback URL to redirect to after authorization.
        state : str, optional
            CSRF protection value, omitted from the URL when ``None``.
        extra_params : dict, optional
            Additional query parameters.

        Returns
        -------
        str
            The full authorization URL.
        """
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(self.scopes),
        }
        if state is not None:
            params["state"] = state
        if extra_params:
            params.update(extra_params)
        return f"{self.authorize_url}?{urlencode(params)}"

    @abstractmethod
    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokenSet:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        code : str
            The authorization code from the callback.
        redirect_uri : str
            The redirect URI used in the authorization request.

        Returns
        -------
        OAuthTokenSet
            The token set from the provider.

        Raises
        ------
        TokenExchangeError
            If the code exchange fails.
        """

    async def get_userinfo(self, access_token: str) -> dict[str, Any]:
        """Fetch user profile information from the provider.

        Parameters
        ----------
        access_token : str
            A valid access token.

        Returns
        -------
        dict[str, Any]
            User profile data from the provider.
        """
        if not self.userinfo_url:
            return {}
        client = await self._get_client()
        resp = await client.get(
            self.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            timeout=10.0,
        )
        resp.raise_for_status()
        return resp.json()  # type: ignore[no-any-return]

    async def _post_token_request(self, data: dict[str, str]) -> dict[str, Any]:
        try:
            client = await self._get_client()
            resp = await client.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=30.0,
            )
            resp.raise_for_status()
            raw = resp.json()
        except httpx.HTTPStatusError as exc:
            msg = f"Token exchange failed: {exc.response.status_code}"
            raise TokenExchangeError(msg, provider=self.name) from exc
        except httpx.HTTPError as exc:
            msg = f"Token exchange request failed: {exc}"
            raise TokenExchangeError(msg, provider=self.name) from exc
        except ValueError as exc:
            msg = "Token endpoint returned a non-JSON body"
            raise TokenExchangeError(msg, provider=self.name) from exc

        if "error" in raw:
            msg = f"Token error: {raw.get('error_description', raw['error'])}"
            raise TokenExchangeError(msg, provider=self.name)
        if "access_token" not in raw:
            msg = "Token response did not contain an access_token"
            raise TokenExchangeError(msg, provider=self.name)
        return raw  # type: ignore[no-any-return]


def _token_set_from_response(raw: dict[str, Any]) -> OAuthTokenSet:
    return OAuthTokenSet(
        access_token=raw["access_token"],
        token_type=raw.get("token_type", "bearer"),
        refresh_token=raw.get("refresh_token"),
        expires_in=raw.get("expires_in"),
        scope=raw.get("scope", ""),
        raw=raw,
        issued_at=time.time(),
    )


class GenericOAuth2Provider(OAuthProvider):
    """Standard authorization-code provider configured by endpoint URLs.

    Parameters
    ----------
    client_id : str
        The OAuth2 client ID.
    client_secret : str
        The OAuth2 client secret.
    scopes : list[str], optional
        Requested scopes.
    authorize_url : str
        Authorization endpoint.
    token_url : str
        Token endpoint.
    userinfo_url : str
        User profile endpoint.
    name : str
        Provider name used in logs and error context.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        scopes: list[str] | None = None,
        authorize_url: str = "",
        token_url: str = "",
        userinfo_url: str = "",
        name: str = "oauth2",
    ) -> None:
        """Initialize generic provider."""
        if not authorize_url or not token_url:
            msg = "Generic OAuth2 provider requires authorize_url and token_url"
            raise ConfigurationError(msg, provider=name)
        super().__init__(
            client_id=client_id,
            client_secret=client_secret,
            scopes=scopes,
            authorize_url=authorize_url,
            token_url=token_url,
            userinfo_url=userinfo_url,
        )
        self.name = name

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokenSet:
        """Exchange an authorization code via the token endpoint."""
        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_id,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret
        return _token_set_from_response(await self._post_token_request(data))


class GoogleProvider(GenericOAuth2Provider):
    """Google OAuth2 provider with preset endpoints."""

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        scopes: list[str] | None = None,
    ) -> None:
        """Initialize Google provider."""
        super().__init__(
            client_id=client_id,
            client_secret=client_secret,
            scopes=scopes or ["openid", "email", "profile"],
            authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",  # noqa: S106
            userinfo_url="https://openidconnect.googleapis.com/v1/userinfo",
            name="google",
        )


class GitHubProvider(OAuthProvider):
    """GitHub OAuth2 provider.

    GitHub answers the token exchange with an ``error`` field and a
    200 status on bad codes, and serves the profile from its REST API.
    """

    name = "github"

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        scopes: list[str] | None = None,
    ) -> None:
        """Initialize GitHub provider."""
        super().__init__(
            client_id=client_id,
            client_secret=client_secret,
            scopes=scopes or ["user"],
            authorize_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",  # noqa: S106
            userinfo_url="https://api.github.com/user",
        )

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokenSet:
        """Exchange an authorization code for a GitHub access token."""
        data: dict[str, str] = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        return _token_set_from_response(await self._post_token_request(data))


PROVIDER_CLASSES: dict[str, type[OAuthProvider]] = {
    "github": GitHubProvider,
    "google": GoogleProvider,
}


def create_provider(credential: ProviderCredential, scopes: list[str] | None = None) -> OAuthProvider:
    """Create an OAuthProvider for *credential*.

    Built-in providers are chosen by name; any other name needs explicit
    ``authorize_url`` and ``token_url`` endpoints in its credential.

    Parameters
    ----------
    credential : ProviderCredential
        Client credentials and optional endpoint overrides.
    scopes : list[str], optional
        Requested scopes.

    Returns
    -------
    OAuthProvider
        A configured provider instance.

    Raises
    ------
    ConfigurationError
        If the provider is unknown and has no endpoints configured.
    """
    provider_cls = PROVIDER_CLASSES.get(credential.name)
    if provider_cls is not None and not credential.authorize_url:
        provider = provider_cls(
            client_id=credential.client_id,
            client_secret=credential.client_secret,
            scopes=scopes,
        )
        if credential.userinfo_url:
            provider.userinfo_url = credential.userinfo_url
        return provider

    return GenericOAuth2Provider(
        client_id=credential.client_id,
        client_secret=credential.client_secret,
        scopes=scopes,
        authorize_url=credential.authorize_url,
        token_url=credential.token_url,
        userinfo_url=credential.userinfo_url,
        name=credential.name,
    )
