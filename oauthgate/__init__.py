"""oauthgate: OAuth2 login gate middleware for ASGI applications.

Redirects unauthenticated users to an OAuth2 provider, handles the
callback, and attaches an application user to every request.
"""

from __future__ import annotations

from .config import GateSettings, ProviderSettings, get_settings
from .credentials import CredentialStore
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    InvalidReturnUrlError,
    OAuthGateException,
    StateMismatchError,
    TokenError,
    TokenExchangeError,
    UnknownProviderError,
    UserResolutionError,
)
from .factory import OAuthService, OAuthServiceFactory
from .gate import GateDecision, OAuthGate
from .log import enable_debug, get_logger, set_level
from .middleware import OAuthGateMiddleware, get_current_user, install_oauth_gate
from .providers import GenericOAuth2Provider, GitHubProvider, GoogleProvider, OAuthProvider
from .session import SessionValueStore
from .token_store import MemoryTokenStore, RedisTokenStore, TokenStore, get_token_store
from .types import ABSENT, AppUser, OAuthTokenSet, ProviderCredential, RouteKind
from .users import MemoryUserService, UserService


__version__ = "0.1.0"

__all__ = [
    "ABSENT",
    "AppUser",
    "AuthenticationError",
    "ConfigurationError",
    "CredentialStore",
    "GateDecision",
    "GateSettings",
    "GenericOAuth2Provider",
    "GitHubProvider",
    "GoogleProvider",
    "InvalidReturnUrlError",
    "MemoryTokenStore",
    "MemoryUserService",
    "OAuthGate",
    "OAuthGateException",
    "OAuthGateMiddleware",
    "OAuthProvider",
    "OAuthService",
    "OAuthServiceFactory",
    "OAuthTokenSet",
    "ProviderCredential",
    "ProviderSettings",
    "RedisTokenStore",
    "RouteKind",
    "SessionValueStore",
    "StateMismatchError",
    "TokenError",
    "TokenExchangeError",
    "TokenStore",
    "UnknownProviderError",
    "UserResolutionError",
    "UserService",
    "enable_debug",
    "get_current_user",
    "get_logger",
    "get_settings",
    "get_token_store",
    "install_oauth_gate",
    "set_level",
]
