"""User resolution: mapping OAuth sessions and bearer tokens to app users."""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import secrets

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from .exceptions import TokenError, UserResolutionError
from .types import AppUser


if TYPE_CHECKING:
    from collections.abc import Callable

    from .factory import OAuthService


logger = logging.getLogger("oauthgate.auth")


@runtime_checkable
class UserService(Protocol):
    """Contract the gate uses to materialize application users.

    ``create_user`` is where an implementation decides whether a provider
    account may become a user at all (organization or team membership,
    for example) and raises ``UserResolutionError`` if not.
    """

    async def create_user(self, service: OAuthService) -> AppUser:
        """Create or update the user behind an authenticated service handle."""
        ...

    async def find_or_new(self, token: str | None) -> AppUser:
        """Return the user owning *token*, or a guest user. Never raises."""
        ...


def _profile_user_id(provider: str, profile: dict[str, Any]) -> str | None:
    raw = profile.get("id") or profile.get("sub") or profile.get("login") or profile.get("email")
    if raw is None:
        return None
    return f"{provider}:{raw}"


class MemoryUserService:
    """In-process user service for development and tests.

    Users are keyed by ``<provider>:<profile id>``. Each login issues a new
    opaque application token; earlier tokens of the same user stay valid.

    Parameters
    ----------
    token_factory : callable, optional
        Produces new application tokens (default ``secrets.token_urlsafe``).
    allow : callable, optional
        ``(provider, profile) -> bool`` predicate rejecting accounts.
    """

    def __init__(
        self,
        token_factory: Callable[[], str] | None = None,
        allow: Callable[[str, dict[str, Any]], bool] | None = None,
    ) -> None:
        self._token_factory = token_factory or (lambda: secrets.token_urlsafe(32))
        self._allow = allow
        self._users: dict[str, AppUser] = {}
        self._tokens: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def create_user(self, service: OAuthService) -> AppUser:
        """Fetch the provider profile and create or refresh the matching user."""
        try:
            profile = await service.get_userinfo()
        except (httpx.HTTPError, TokenError) as exc:
            msg = f"Could not fetch user profile: {exc}"
            raise UserResolutionError(msg, provider=service.provider_name) from exc

        user_id = _profile_user_id(service.provider_name, profile)
        if user_id is None:
            msg = "Provider profile has no usable identifier"
            raise UserResolutionError(msg, provider=service.provider_name)
        if self._allow is not None and not self._allow(service.provider_name, profile):
            msg = "Account is not allowed to sign in"
            raise UserResolutionError(msg, provider=service.provider_name, user_id=user_id)

        token = self._token_factory()
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                user = AppUser(id=user_id, role="user", provider=service.provider_name)
                self._users[user_id] = user
                logger.info("Created user %s", user_id)
            user.profile = profile
            user.token = token
            self._tokens[token] = user_id
        return user

    async def find_or_new(self, token: str | None) -> AppUser:
        """Return the user for *token*, or a fresh guest user."""
        if token:
            async with self._lock:
                user_id = self._tokens.get(token)
                user = self._users.get(user_id) if user_id else None
            if user is not None:
                return AppUser(
                    id=user.id,
                    token=token,
                    role=user.role,
                    provider=user.provider,
                    profile=user.profile,
                )
        return AppUser()

    async def get(self, user_id: str) -> AppUser | None:
        """Look up a user by application ID."""
        async with self._lock:
            return self._users.get(user_id)
