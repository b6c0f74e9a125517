"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import os

from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest

from oauthgate.config import clear_settings
from oauthgate.credentials import CredentialStore
from oauthgate.token_store import MemoryTokenStore, reset_token_store
from oauthgate.types import ProviderCredential
from oauthgate.users import MemoryUserService
from tests.helpers import make_mock_provider


if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Run every test in an empty directory with no OAUTHGATE env vars."""
    for key in list(os.environ):
        if key.startswith("OAUTHGATE"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    clear_settings()
    reset_token_store()
    yield
    clear_settings()
    reset_token_store()


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture()
def credentials() -> CredentialStore:
    """Credentials for GitHub and Google."""
    return CredentialStore(
        [
            ProviderCredential(name="github", client_id="gh-id", client_secret="gh-secret"),
            ProviderCredential(name="google", client_id="gg-id", client_secret="gg-secret"),
        ]
    )


@pytest.fixture()
def token_store() -> MemoryTokenStore:
    """Fresh in-memory token store."""
    return MemoryTokenStore()


@pytest.fixture()
def mock_provider() -> MagicMock:
    """Mock provider used by every service the gate builds."""
    return make_mock_provider()


@pytest.fixture()
def provider_builder(mock_provider: MagicMock) -> MagicMock:
    """Provider builder spy returning ``mock_provider``."""
    return MagicMock(return_value=mock_provider)


@pytest.fixture()
def user_service() -> MemoryUserService:
    """User service issuing predictable application tokens."""
    counter = iter(range(1, 1000))
    return MemoryUserService(token_factory=lambda: f"app-token-{next(counter)}")
