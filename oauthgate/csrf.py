"""Signed single-use OAuth2 ``state`` values.

A state is ``<nonce>.<signature>`` where the signature is an HMAC-SHA256
of ``<nonce>:<provider>`` under the gate secret. The value is stored in
the session at login start and must come back unchanged on the callback.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets


def _sign(secret: str, nonce: str, provider: str) -> str:
    return hmac.new(
        secret.encode(),
        f"{nonce}:{provider.lower()}".encode(),
        hashlib.sha256,
    ).hexdigest()


def generate_state(secret: str, provider: str) -> str:
    """Generate a signed state bound to *provider*.

    Parameters
    ----------
    secret : str
        HMAC key.
    provider : str
        Provider name the login was started for.

    Returns
    -------
    str
        URL-safe state value.
    """
    nonce = secrets.token_urlsafe(24)
    return f"{nonce}.{_sign(secret, nonce, provider)}"


def verify_state(secret: str, provider: str, received: str | None, stored: object) -> bool:
    """Verify a callback state.

    Parameters
    ----------
    secret : str
        HMAC key used by ``generate_state``.
    provider : str
        Provider named by the callback path.
    received : str or None
        ``state`` query parameter of the callback.
    stored : object
        Value stored in the session at login start (may be ``ABSENT``).

    Returns
    -------
    bool
        True only if the signature is valid for *provider* and the value
        matches what this session stored.
    """
    if not received or not isinstance(stored, str):
        return False
    # compare_digest only accepts ASCII str, so compare UTF-8 bytes.
    if not hmac.compare_digest(received.encode(), stored.encode()):
        return False
    nonce, sep, signature = received.rpartition(".")
    if not sep or not nonce:
        return False
    return hmac.compare_digest(signature.encode(), _sign(secret, nonce, provider).encode())
