"""Namespaced key/value view over a request session.

The gate never touches the session mapping directly; every value it
keeps lives under one bucket key so it cannot clobber application data.
"""

from __future__ import annotations

import secrets

from collections.abc import MutableMapping
from typing import Any

from .types import ABSENT


ORIGINAL_DESTINATION = "originalDestination"
RETURN_URL = "oauth_return_url"
SERVICE_TYPE = "oauth_service_type"
OAUTH_STATE = "oauth_state"
USER_TOKEN = "oauth_user_token"
SESSION_ID = "sid"


class SessionValueStore:
    """Session values scoped under a single namespace key.

    Parameters
    ----------
    session : MutableMapping
        The per-request session mapping (e.g. Starlette's ``request.session``).
        Values must be JSON-serializable for cookie-backed sessions.
    bucket : str
        Namespace key inside the session (default "oauthgate").
    """

    def __init__(self, session: MutableMapping[str, Any], bucket: str = "oauthgate") -> None:
        self._session = session
        self.bucket = bucket

    def _bucket(self) -> dict[str, Any] | None:
        data = self._session.get(self.bucket)
        return data if isinstance(data, dict) else None

    def _writable_bucket(self) -> dict[str, Any]:
        data = self._bucket()
        if data is None:
            data = {}
            self._session[self.bucket] = data
        return data

    def _commit(self, data: dict[str, Any]) -> None:
        # Reassign so mappings that track writes by key (cookie sessions) notice nested changes.
        self._session[self.bucket] = data

    def store_value(self, name: str, value: Any) -> None:
        """Store *value* under *name*."""
        data = self._writable_bucket()
        data[name] = value
        self._commit(data)

    def get_value(self, name: str, default: Any = ABSENT) -> Any:
        """Return the value stored under *name*, or *default* (``ABSENT``)."""
        data = self._bucket()
        if data is None or name not in data:
            return default
        return data[name]

    def del_value(self, name: str) -> None:
        """Delete *name*; missing keys are ignored."""
        data = self._bucket()
        if data is None or name not in data:
            return
        del data[name]
        self._commit(data)

    def pop_value(self, name: str, default: Any = ABSENT) -> Any:
        """Return and delete the value stored under *name*."""
        value = self.get_value(name, default)
        self.del_value(name)
        return value

    def has_value(self, name: str) -> bool:
        """Whether a value is stored under *name*."""
        return self.get_value(name) is not ABSENT

    def clear(self) -> None:
        """Drop the whole bucket, leaving other session data untouched."""
        self._session.pop(self.bucket, None)

    @property
    def session_id(self) -> str:
        """Stable random identifier for this browser session.

        Created on first access; used to key server-side token storage.
        """
        sid = self.get_value(SESSION_ID)
        if not isinstance(sid, str) or not sid:
            sid = secrets.token_urlsafe(24)
            self.store_value(SESSION_ID, sid)
        return sid
