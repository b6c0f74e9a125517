"""Route matching, return-URL validation and Authorization header parsing."""

from __future__ import annotations

import re

from collections.abc import Iterable
from urllib.parse import urlsplit

from .types import RouteKind


AUTH_ROUTE = "/auth/{provider}"
CALLBACK_ROUTE = "/auth/{provider}/callback"

TOKEN_SCHEMES = frozenset({"bearer", "token"})

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def regex_route(route: str) -> re.Pattern[str]:
    """Compile a route template into an anchored pattern.

    ``{name}`` placeholders become named groups matching one path segment
    of word characters. Anything else is kept as regex syntax, so ignore
    list entries may be literal paths or patterns.

    Parameters
    ----------
    route : str
        Route template, e.g. ``/auth/{provider}/callback``.

    Returns
    -------
    re.Pattern
        Pattern anchored with ``^...$``.
    """
    body = _PLACEHOLDER.sub(lambda m: f"(?P<{m.group(1)}>\\w+)", route)
    return re.compile(f"^{body}$")


class RouteMatcher:
    """Classifies request paths for the auth gate.

    Parameters
    ----------
    ignored_routes : iterable of str
        Paths or patterns that bypass the gate.
    auth_route : str
        Login-start template.
    callback_route : str
        Login-callback template.
    """

    def __init__(
        self,
        ignored_routes: Iterable[str] = ("/", "/auth"),
        auth_route: str = AUTH_ROUTE,
        callback_route: str = CALLBACK_ROUTE,
    ) -> None:
        self.ignored = [regex_route(r) for r in ignored_routes]
        self.auth = regex_route(auth_route)
        self.callback = regex_route(callback_route)

    def is_ignored(self, path: str) -> bool:
        """Whether *path* matches any ignore list entry."""
        return any(p.match(path) for p in self.ignored)

    def classify(self, path: str) -> tuple[RouteKind, str | None]:
        """Classify *path*, returning the kind and the captured provider name."""
        if self.is_ignored(path):
            return RouteKind.IGNORED, None
        match = self.auth.match(path)
        if match:
            return RouteKind.LOGIN_START, match.group("provider")
        match = self.callback.match(path)
        if match:
            return RouteKind.LOGIN_CALLBACK, match.group("provider")
        return RouteKind.NORMAL, None


def _has_unsafe_chars(url: str) -> bool:
    return any(ord(c) <= 0x20 or ord(c) == 0x7F for c in url) or "\\" in url


def is_valid_return_url(
    url: str,
    request_host: str | None = None,
    allowed_hosts: Iterable[str] = (),
) -> bool:
    """Check that *url* is safe to use as a post-login redirect target.

    Relative URLs must be absolute paths (``/dashboard``); protocol-relative
    ``//host`` forms are rejected. Absolute URLs must use http(s) and point
    at the request host or one of *allowed_hosts*.

    Parameters
    ----------
    url : str
        Candidate redirect target from the ``return`` query parameter.
    request_host : str, optional
        Host name of the current request.
    allowed_hosts : iterable of str
        Additional host names accepted in absolute URLs.

    Returns
    -------
    bool
        True if the URL may be stored and redirected to later.
    """
    if not url or _has_unsafe_chars(url):
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False

    if not parts.scheme and not parts.netloc:
        return url.startswith("/") and not url.startswith("//")

    if parts.scheme not in ("http", "https") or not parts.hostname:
        return False

    hosts = {h.lower() for h in allowed_hosts}
    if request_host:
        hosts.add(request_host.lower())
    return parts.hostname.lower() in hosts


def parse_authorization_header(value: str | None) -> str | None:
    """Extract the credential from an ``Authorization`` header.

    The header may hold several comma-separated ``scheme value`` pairs;
    the first pair whose scheme is ``bearer`` or ``token`` (any case) wins.

    Returns
    -------
    str or None
        The credential, or None if no acceptable pair is present.
    """
    if not value:
        return None
    for part in value.split(","):
        pieces = part.strip().split(None, 1)
        if len(pieces) != 2:
            continue
        scheme, credential = pieces
        credential = credential.strip()
        if scheme.lower() in TOKEN_SCHEMES and credential:
            return credential
    return None
