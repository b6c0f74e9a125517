"""The auth gate: per-request OAuth2 login state machine.

Every request is classified as ignored, login start (``/auth/{provider}``),
login callback (``/auth/{provider}/callback``) or normal. The gate answers
the first three itself where needed and, for normal requests, resolves
the application user that downstream handlers see.

Flow:
    GET /auth/github?return=/dashboard  -> 302 to GitHub
    GET /auth/github/callback?code=...  -> 200, Authorization + Location
    GET /anything  (Authorization: token ...)  -> user attached, continue
"""

# pylint: disable=logging-too-many-args,too-many-instance-attributes,too-many-return-statements

from __future__ import annotations

import logging

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from starlette.responses import RedirectResponse, Response

from .credentials import CredentialStore
from .csrf import generate_state, verify_state
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    InvalidReturnUrlError,
    StateMismatchError,
    TokenError,
    TokenExchangeError,
    UnknownProviderError,
    UserResolutionError,
)
from .factory import OAuthService, OAuthServiceFactory
from .log import redact_sensitive_data
from .providers import create_provider
from .routes import RouteMatcher, is_valid_return_url, parse_authorization_header
from .session import (
    OAUTH_STATE,
    ORIGINAL_DESTINATION,
    RETURN_URL,
    SERVICE_TYPE,
    USER_TOKEN,
    SessionValueStore,
)
from .token_store import MemoryTokenStore, get_token_store
from .types import AppUser, RouteKind


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, MutableMapping, Sequence

    from starlette.requests import Request

    from .config import GateSettings
    from .providers import OAuthProvider
    from .token_store import TokenStore
    from .types import ProviderCredential
    from .users import UserService


logger = logging.getLogger("oauthgate.gate")


@dataclass
class GateDecision:
    """Outcome of one gate invocation.

    Attributes
    ----------
    kind : RouteKind
        How the request was classified.
    response : Response or None
        Response to send instead of calling the next handler.
    user : AppUser or None
        User to attach to the request (normal requests only).
    headers : dict[str, str]
        Headers to add to the downstream response.
    error : AuthenticationError or None
        Why the request was denied.
    """

    kind: RouteKind
    response: Response | None = None
    user: AppUser | None = None
    headers: dict[str, str] = field(default_factory=dict)
    error: AuthenticationError | None = None

    @property
    def proceed(self) -> bool:
        """Whether the next handler should run."""
        return self.response is None


class OAuthGate:
    """Authentication gate in front of an ASGI application.

    Parameters
    ----------
    credentials : CredentialStore
        Provider client credentials.
    user_service : UserService
        Creates users on callback and resolves bearer tokens.
    token_store : TokenStore, optional
        Access token storage (default: a new in-memory store).
    allowed_providers : iterable of str
        Provider names accepted on auth routes.
    ignored_routes : iterable of str
        Paths or patterns the gate lets through untouched.
    unauthenticated_route : str
        ``Location`` of every 403 response.
    return_route : str
        Post-login destination when no ``return`` parameter is given.
    validate_return_url : bool
        Reject unsafe ``return`` parameters.
    allowed_return_hosts : iterable of str
        Extra hosts accepted in absolute ``return`` URLs.
    deny_unauthenticated : bool
        Answer unauthenticated normal requests with 403 instead of a guest.
    callback_status : int
        Status of a successful callback response (200 or 302).
    verify_state : bool
        Send and check a signed single-use ``state`` parameter.
    state_secret : str
        HMAC key for ``state`` values; required when ``verify_state`` is set.
    redirect_base_url : str
        Scheme and host used for callback URLs.
    provider_scopes : mapping, optional
        Per-provider scopes.
    session_bucket : str
        Session namespace key.
    provider_builder : callable
        ``(credential, scopes) -> OAuthProvider``.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        user_service: UserService,
        token_store: TokenStore | None = None,
        allowed_providers: Iterable[str] = ("github",),
        ignored_routes: Iterable[str] = ("/", "/auth"),
        unauthenticated_route: str = "/",
        return_route: str = "",
        validate_return_url: bool = True,
        allowed_return_hosts: Iterable[str] = (),
        deny_unauthenticated: bool = False,
        callback_status: int = 200,
        verify_state: bool = True,
        state_secret: str = "",
        redirect_base_url: str = "",
        provider_scopes: Mapping[str, Sequence[str]] | None = None,
        session_bucket: str = "oauthgate",
        provider_builder: Callable[[ProviderCredential, list[str] | None], OAuthProvider] = create_provider,
    ) -> None:
        if callback_status not in (200, 302):
            msg = f"callback_status must be 200 or 302, got {callback_status}"
            raise ConfigurationError(msg)
        if verify_state and not state_secret:
            msg = "state_secret is required when verify_state is enabled"
            raise ConfigurationError(msg)

        self.credentials = credentials
        self.user_service = user_service
        self.token_store = token_store if token_store is not None else MemoryTokenStore()
        self.allowed_providers = frozenset(p.lower() for p in allowed_providers)
        self.routes = RouteMatcher(ignored_routes)
        self.unauthenticated_route = unauthenticated_route
        self.return_route = return_route
        self.validate_return_url = validate_return_url
        self.allowed_return_hosts = tuple(allowed_return_hosts)
        self.deny_unauthenticated = deny_unauthenticated
        self.callback_status = callback_status
        self.verify_state = verify_state
        self.state_secret = state_secret
        self.redirect_base_url = redirect_base_url
        self.provider_scopes = dict(provider_scopes or {})
        self.session_bucket = session_bucket
        self.provider_builder = provider_builder

    @classmethod
    def from_settings(
        cls,
        settings: GateSettings,
        user_service: UserService,
        token_store: TokenStore | None = None,
    ) -> OAuthGate:
        """Build a gate from ``GateSettings``."""
        if token_store is None:
            token_store = get_token_store(
                settings.token_store_backend,
                redis_url=settings.redis_url,
                prefix=settings.redis_prefix,
            )
        return cls(
            credentials=CredentialStore.from_settings(settings),
            user_service=user_service,
            token_store=token_store,
            allowed_providers=settings.allowed_providers,
            ignored_routes=settings.ignored_routes,
            unauthenticated_route=settings.unauthenticated_route,
            return_route=settings.return_route,
            validate_return_url=settings.validate_return_url,
            allowed_return_hosts=settings.allowed_return_hosts,
            deny_unauthenticated=settings.deny_unauthenticated,
            callback_status=settings.callback_status,
            verify_state=settings.verify_state,
            state_secret=settings.state_secret,
            redirect_base_url=settings.redirect_base_url,
            provider_scopes={name: settings.scopes_for(name) for name in settings.providers},
            session_bucket=settings.session_bucket,
        )

    def factory_for(self, request: Request, session: SessionValueStore) -> OAuthServiceFactory:
        """A fresh service factory bound to *request*."""
        return OAuthServiceFactory(
            credentials=self.credentials,
            token_store=self.token_store,
            session=session,
            request_url=str(request.url),
            redirect_base_url=self.redirect_base_url,
            provider_scopes=self.provider_scopes,
            provider_builder=self.provider_builder,
        )

    async def process(
        self,
        request: Request,
        session: MutableMapping[str, Any] | None = None,
    ) -> GateDecision:
        """Classify *request* and decide what happens to it.

        Parameters
        ----------
        request : Request
            The incoming request.
        session : MutableMapping, optional
            The request session. Required for auth routes; normal requests
            without one can still authenticate with a bearer token.

        Returns
        -------
        GateDecision
            Either a response to send or the user to continue with.

        Raises
        ------
        InvalidReturnUrlError
            If a login start carries an unsafe ``return`` parameter.
        ConfigurationError
            If an auth route is hit without a session.
        """
        kind, provider = self.routes.classify(request.url.path)

        if kind is RouteKind.IGNORED:
            return GateDecision(kind=kind)

        if kind is RouteKind.NORMAL:
            store = SessionValueStore({} if session is None else session, self.session_bucket)
            return await self._normal(request, store)

        provider = (provider or "").lower()
        if provider not in self.allowed_providers:
            msg = "Unknown oAuthServiceType"
            return self._deny(kind, UnknownProviderError(msg, provider=provider))
        if provider not in self.credentials:
            msg = "Provider has no configured credentials"
            return self._deny(kind, UnknownProviderError(msg, provider=provider))

        if session is None:
            msg = "Auth routes need a session; install SessionMiddleware outside the gate"
            raise ConfigurationError(msg, path=request.url.path)
        store = SessionValueStore(session, self.session_bucket)

        if kind is RouteKind.LOGIN_START:
            return self._login_start(request, provider, store)
        return await self._login_callback(request, provider, store)

    def _deny(self, kind: RouteKind, error: AuthenticationError) -> GateDecision:
        logger.warning("Denying %s request: %s", kind.value, error)
        return GateDecision(
            kind=kind,
            error=error,
            response=Response(status_code=403, headers={"Location": self.unauthenticated_route}),
        )

    def _login_start(self, request: Request, provider: str, session: SessionValueStore) -> GateDecision:
        return_url = request.query_params.get("return")
        if (
            return_url is not None
            and self.validate_return_url
            and not is_valid_return_url(return_url, request.url.hostname, self.allowed_return_hosts)
        ):
            msg = "Invalid return url"
            raise InvalidReturnUrlError(msg, url=return_url, provider=provider)

        factory = self.factory_for(request, session)
        service = factory.get_or_create_by_type(provider)
        if service is None:
            msg = "Could not build OAuth service"
            return self._deny(RouteKind.LOGIN_START, UnknownProviderError(msg, provider=provider))

        factory.del_value(ORIGINAL_DESTINATION)
        factory.del_value(RETURN_URL)
        destination = return_url or self.return_route
        if destination:
            factory.store_value(ORIGINAL_DESTINATION, destination)
        if return_url:
            factory.store_value(RETURN_URL, return_url)

        state: str | None = None
        if self.verify_state:
            state = generate_state(self.state_secret, provider)
            factory.store_value(OAUTH_STATE, state)

        logger.debug("Starting %s login, destination %r", provider, destination or "/")
        return GateDecision(
            kind=RouteKind.LOGIN_START,
            response=RedirectResponse(url=service.authorization_uri(state), status_code=302),
        )

    async def _login_callback(
        self,
        request: Request,
        provider: str,
        session: SessionValueStore,
    ) -> GateDecision:
        kind = RouteKind.LOGIN_CALLBACK
        params = request.query_params
        logger.debug("Callback for %s with %s", provider, redact_sensitive_data(dict(params)))
        factory = self.factory_for(request, session)

        if self.verify_state:
            stored = factory.pop_value(OAUTH_STATE)
            if not verify_state(self.state_secret, provider, params.get("state"), stored):
                msg = "Invalid or reused state parameter"
                return self._deny(kind, StateMismatchError(msg, provider=provider))

        if params.get("error"):
            detail = params.get("error_description") or params["error"]
            msg = f"Provider returned an error: {detail}"
            return self._deny(kind, AuthenticationError(msg, provider=provider))

        code = params.get("code")
        if not code:
            msg = "Authorization code not provided"
            return self._deny(kind, AuthenticationError(msg, provider=provider))

        service = factory.get_or_create_by_type(provider)
        if service is None:
            msg = "Could not build OAuth service"
            return self._deny(kind, UnknownProviderError(msg, provider=provider))

        try:
            return await self._complete_login(factory, service, code)
        finally:
            await service.provider.close()

    async def _complete_login(
        self,
        factory: OAuthServiceFactory,
        service: OAuthService,
        code: str,
    ) -> GateDecision:
        kind = RouteKind.LOGIN_CALLBACK
        provider = service.provider_name
        try:
            await service.exchange_code_for_token(code)
        except Exception as exc:
            logger.exception("Token exchange failed for %s", provider)
            error = (
                exc
                if isinstance(exc, TokenError)
                else TokenExchangeError(str(exc), provider=provider)
            )
            return self._deny(kind, error)

        try:
            user = await self.user_service.create_user(service)
        except Exception as exc:
            logger.exception("User creation failed for %s", provider)
            await service.token_store.delete(service.storage_key)
            error = (
                exc
                if isinstance(exc, UserResolutionError)
                else UserResolutionError(str(exc), provider=provider)
            )
            return self._deny(kind, error)

        destination = factory.pop_value(ORIGINAL_DESTINATION)
        factory.del_value(RETURN_URL)
        if not isinstance(destination, str) or not destination:
            destination = "/"

        factory.store_value(SERVICE_TYPE, provider)
        headers = {"Location": destination}
        if user.token:
            factory.store_value(USER_TOKEN, user.token)
            headers["Authorization"] = f"Bearer {user.token}"

        logger.info("User %s authenticated via %s", user.id, provider)
        return GateDecision(
            kind=kind,
            response=Response(status_code=self.callback_status, headers=headers),
            user=user,
        )

    async def _normal(self, request: Request, session: SessionValueStore) -> GateDecision:
        token = parse_authorization_header(request.headers.get("authorization"))

        if token is None:
            service_type = session.get_value(SERVICE_TYPE)
            if isinstance(service_type, str) and service_type in self.allowed_providers:
                factory = self.factory_for(request, session)
                if await factory.is_authenticated(service_type):
                    stored = factory.get_value(USER_TOKEN)
                    token = stored if isinstance(stored, str) and stored else None

        if token is None and self.deny_unauthenticated:
            return self._deny(RouteKind.NORMAL, AuthenticationError("Not authenticated"))

        user = await self.user_service.find_or_new(token)
        if user.is_guest and self.deny_unauthenticated:
            return self._deny(RouteKind.NORMAL, AuthenticationError("Unknown bearer token"))

        headers = {"Authorization": f"Bearer {user.token}"} if user.token else {}
        return GateDecision(kind=RouteKind.NORMAL, user=user, headers=headers)
