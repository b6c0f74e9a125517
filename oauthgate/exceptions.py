"""oauthgate exception hierarchy.

All oauthgate-specific exceptions inherit from OAuthGateException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class OAuthGateException(Exception):
    """Base exception for all oauthgate errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize oauthgate exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider, path, url, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(OAuthGateException):
    """Invalid gate or provider configuration.

    Raised at construction time, never while handling a request.
    """


class AuthenticationError(OAuthGateException):
    """Base exception for all authentication failures."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The OAuth2 provider name (e.g., "github").
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, **context)
        self.provider = provider


class UnknownProviderError(AuthenticationError):
    """Provider is not allow-listed or has no configured credentials."""


class InvalidReturnUrlError(AuthenticationError):
    """The ``return`` query parameter is not a safe redirect target.

    This is the one login failure that is surfaced to the caller rather
    than turned into a 403 redirect.
    """

    def __init__(self, message: str, url: str, provider: str | None = None, **context: Any) -> None:
        """Initialize invalid return URL error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        url : str
            The rejected URL.
        provider : str, optional
            The provider the login was started for.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, url=url, **context)
        self.url = url


class StateMismatchError(AuthenticationError):
    """The callback ``state`` parameter failed verification."""


class TokenError(AuthenticationError):
    """Base exception for token-related failures."""


class TokenExchangeError(TokenError):
    """Exchanging an authorization code for an access token failed."""


class UserResolutionError(AuthenticationError):
    """The user service could not create or locate an application user."""
