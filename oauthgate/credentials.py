"""Provider credential store.

Holds OAuth2 client id/secret pairs indexed by lowercase provider name.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .types import ProviderCredential


if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from .config import GateSettings


class CredentialStore:
    """Immutable, case-insensitive lookup of provider credentials.

    Parameters
    ----------
    credentials : iterable of ProviderCredential
        Credentials loaded at startup.
    """

    def __init__(self, credentials: Iterable[ProviderCredential] = ()) -> None:
        self._credentials: dict[str, ProviderCredential] = {}
        for cred in credentials:
            name = cred.name.lower()
            if name != cred.name:
                cred = ProviderCredential(
                    name=name,
                    client_id=cred.client_id,
                    client_secret=cred.client_secret,
                    authorize_url=cred.authorize_url,
                    token_url=cred.token_url,
                    userinfo_url=cred.userinfo_url,
                )
            self._credentials[name] = cred

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Mapping[str, str]]) -> CredentialStore:
        """Build a store from ``{name: {"client_id": ..., "client_secret": ...}}``.

        The legacy ``key``/``secret`` spelling is accepted as well.
        """
        return cls(
            ProviderCredential(
                name=name,
                client_id=conf.get("client_id", conf.get("key", "")),
                client_secret=conf.get("client_secret", conf.get("secret", "")),
                authorize_url=conf.get("authorize_url", ""),
                token_url=conf.get("token_url", ""),
                userinfo_url=conf.get("userinfo_url", ""),
            )
            for name, conf in mapping.items()
        )

    @classmethod
    def from_settings(cls, settings: GateSettings) -> CredentialStore:
        """Build a store from the ``providers`` section of the settings."""
        return cls(settings.credentials())

    def get(self, provider_name: str) -> ProviderCredential | None:
        """Look up credentials for *provider_name*, ignoring case."""
        return self._credentials.get(provider_name.lower())

    def __contains__(self, provider_name: object) -> bool:
        return isinstance(provider_name, str) and provider_name.lower() in self._credentials

    def __len__(self) -> int:
        return len(self._credentials)

    def names(self) -> list[str]:
        """All configured provider names."""
        return sorted(self._credentials)
