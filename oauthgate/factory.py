"""OAuth service handles and the per-request factory that builds them."""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from .exceptions import ConfigurationError, TokenError
from .providers import create_provider
from .session import SESSION_ID
from .types import ABSENT


if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from .credentials import CredentialStore
    from .providers import OAuthProvider
    from .session import SessionValueStore
    from .token_store import TokenStore
    from .types import OAuthTokenSet, ProviderCredential


logger = logging.getLogger("oauthgate.auth")


class OAuthService:
    """An OAuth client configured for one provider and one request context.

    Parameters
    ----------
    provider_name : str
        Lowercase provider name.
    provider : OAuthProvider
        Protocol client for the provider.
    callback_url : str
        Redirect URI registered with the provider for this request.
    token_store : TokenStore
        Backend holding the access token.
    storage_key : str
        Service identity the token is stored under.
    """

    def __init__(
        self,
        provider_name: str,
        provider: OAuthProvider,
        callback_url: str,
        token_store: TokenStore,
        storage_key: str,
    ) -> None:
        self.provider_name = provider_name
        self.provider = provider
        self.callback_url = callback_url
        self.token_store = token_store
        self.storage_key = storage_key

    def __repr__(self) -> str:
        return f"OAuthService(provider_name={self.provider_name!r}, callback_url={self.callback_url!r})"

    def authorization_uri(self, state: str | None = None) -> str:
        """URL the browser is sent to for provider login."""
        return self.provider.build_authorize_url(redirect_uri=self.callback_url, state=state)

    async def exchange_code_for_token(self, code: str) -> OAuthTokenSet:
        """Exchange *code* for an access token and persist it.

        Raises
        ------
        TokenExchangeError
            If the provider rejects the code or cannot be reached.
        """
        tokens = await self.provider.exchange_code(code=code, redirect_uri=self.callback_url)
        await self.token_store.save(self.storage_key, tokens)
        logger.debug("Stored access token for %s", self.provider_name)
        return tokens

    async def access_token(self) -> OAuthTokenSet | None:
        """The stored token set, if any."""
        return await self.token_store.load(self.storage_key)

    async def has_token(self) -> bool:
        """Whether the token store holds a token for this service identity."""
        return await self.token_store.exists(self.storage_key)

    async def get_userinfo(self) -> dict[str, Any]:
        """Fetch the provider profile with the stored access token.

        Raises
        ------
        TokenError
            If no token has been stored for this service yet.
        """
        tokens = await self.access_token()
        if tokens is None:
            msg = "No access token stored"
            raise TokenError(msg, provider=self.provider_name)
        return await self.provider.get_userinfo(tokens.access_token)


class OAuthServiceFactory:
    """Builds and caches the OAuth service handle for one request.

    The cache holds a single handle and lives as long as the factory;
    create a new factory per request.

    Parameters
    ----------
    credentials : CredentialStore
        Provider client credentials.
    token_store : TokenStore
        Backend for access tokens.
    session : SessionValueStore
        Namespaced session values for the current request.
    request_url : str
        Full URL of the current request; the callback URL is derived from it.
    redirect_base_url : str
        Scheme and host overriding those of *request_url*.
    provider_scopes : mapping, optional
        Per-provider scopes used when none are passed explicitly.
    provider_builder : callable
        ``(credential, scopes) -> OAuthProvider``.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        token_store: TokenStore,
        session: SessionValueStore,
        request_url: str,
        redirect_base_url: str = "",
        provider_scopes: Mapping[str, Sequence[str]] | None = None,
        provider_builder: Callable[[ProviderCredential, list[str] | None], OAuthProvider] = create_provider,
    ) -> None:
        self.credentials = credentials
        self.token_store = token_store
        self.session = session
        self.request_url = request_url
        self.redirect_base_url = redirect_base_url
        self.provider_scopes = dict(provider_scopes or {})
        self.provider_builder = provider_builder
        self._service: OAuthService | None = None

    def callback_url(self) -> str:
        """Current request URL with the query stripped and ``/callback`` appended."""
        parts = urlsplit(self.request_url)
        base = self.redirect_base_url.rstrip("/") or f"{parts.scheme}://{parts.netloc}"
        path = parts.path.rstrip("/")
        if not path.endswith("/callback"):
            path = f"{path}/callback"
        return f"{base}{path}"

    def create_service(
        self,
        provider_name: str,
        scopes: Sequence[str] | None = None,
    ) -> OAuthService | None:
        """Build and cache a handle for *provider_name*.

        Returns
        -------
        OAuthService or None
            None when no credentials are configured for the provider.
        """
        name = provider_name.lower()
        credential = self.credentials.get(name)
        if credential is None:
            logger.debug("No credentials configured for provider %s", name)
            return None

        if scopes is None:
            scopes = self.provider_scopes.get(name)
        try:
            # None selects the provider class defaults.
            provider = self.provider_builder(credential, list(scopes) if scopes else None)
        except ConfigurationError as exc:
            logger.warning("Cannot build provider %s: %s", name, exc)
            return None

        self._service = OAuthService(
            provider_name=name,
            provider=provider,
            callback_url=self.callback_url(),
            token_store=self.token_store,
            storage_key=f"{self.session.session_id}:{name}",
        )
        return self._service

    def get_or_create_by_type(self, provider_name: str) -> OAuthService | None:
        """Return the cached handle, creating one with default scopes if needed."""
        if self._service is None:
            return self.create_service(provider_name)
        return self._service

    def get_service(self) -> OAuthService | None:
        """The cached handle, or None."""
        return self._service

    def reset(self) -> None:
        """Drop the cached handle."""
        self._service = None

    async def is_authenticated(self, provider_name: str) -> bool:
        """Whether this session holds a stored token for *provider_name*.

        Read-only: the handle built for the check is not cached, and a
        session without an identifier is reported unauthenticated.
        """
        if not self.session.has_value(SESSION_ID):
            return False
        cached = self._service
        if cached is not None and cached.provider_name == provider_name.lower():
            service: OAuthService | None = cached
        else:
            service = self.create_service(provider_name)
            self._service = cached
        if service is None:
            return False
        return await service.has_token()

    # Session proxies, so the gate never reaches into the session directly.

    def store_value(self, name: str, value: Any) -> None:
        """Store a namespaced session value."""
        self.session.store_value(name, value)

    def get_value(self, name: str, default: Any = ABSENT) -> Any:
        """Read a namespaced session value, ``ABSENT`` when missing."""
        return self.session.get_value(name, default)

    def del_value(self, name: str) -> None:
        """Delete a namespaced session value; missing keys are ignored."""
        self.session.del_value(name)

    def pop_value(self, name: str, default: Any = ABSENT) -> Any:
        """Read and delete a namespaced session value."""
        return self.session.pop_value(name, default)
