"""Type definitions shared across oauthgate modules."""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final


class _AbsentType:
    """Type of the ``ABSENT`` sentinel.

    Distinguishes "no value stored" from stored ``None``, ``False``
    or empty strings.
    """

    _instance: _AbsentType | None = None

    def __new__(cls) -> _AbsentType:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT: Final = _AbsentType()


class RouteKind(str, Enum):
    """Per-request classification made by the auth gate."""

    IGNORED = "ignored"
    LOGIN_START = "login_start"
    LOGIN_CALLBACK = "login_callback"
    NORMAL = "normal"


@dataclass(frozen=True)
class ProviderCredential:
    """OAuth2 client credentials for one provider.

    Attributes
    ----------
    name : str
        Lowercase provider name (e.g. "github").
    client_id : str
        The OAuth2 client ID.
    client_secret : str
        The OAuth2 client secret.
    authorize_url : str
        Authorization endpoint override for providers without a built-in class.
    token_url : str
        Token endpoint override.
    userinfo_url : str
        Userinfo endpoint override.
    """

    name: str
    client_id: str
    client_secret: str = field(default="", repr=False)
    authorize_url: str = ""
    token_url: str = ""
    userinfo_url: str = ""


@dataclass
class OAuthTokenSet:
    """OAuth2 token set returned by a provider.

    Attributes
    ----------
    access_token : str
        The access token for API requests.
    token_type : str
        Token type, typically "bearer".
    refresh_token : str or None
        Optional refresh token.
    expires_in : int or None
        Token lifetime in seconds from issuance.
    scope : str
        Space or comma separated list of granted scopes.
    raw : dict[str, Any]
        The raw token response from the provider.
    issued_at : float
        Unix timestamp when the token was issued.
    """

    access_token: str
    token_type: str = "bearer"  # noqa: S105
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str = ""
    raw: dict[str, Any] = field(default_factory=dict)
    issued_at: float = field(default_factory=time.time)

    @property
    def is_expired(self) -> bool:
        """Check if the access token has expired."""
        if self.expires_in is None:
            return False
        return time.time() > (self.issued_at + self.expires_in)


@dataclass
class AppUser:
    """Application user attached to each request by the gate.

    Attributes
    ----------
    id : str or None
        Application user ID, ``None`` for the guest user.
    token : str or None
        Opaque application token echoed back in the ``Authorization`` header.
    role : str
        "guest" for unauthenticated requests, "user" otherwise.
    provider : str or None
        Provider the user logged in with.
    profile : dict[str, Any]
        Provider profile data captured at first login.
    """

    id: str | None = None
    token: str | None = None
    role: str = "guest"
    provider: str | None = None
    profile: dict[str, Any] = field(default_factory=dict)

    @property
    def is_guest(self) -> bool:
        """Whether this is the default identity for unauthenticated requests."""
        return self.id is None
