"""Configuration system for oauthgate using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.oauthgate] section (project-level)
3. ./oauthgate.toml (project-level, explicit)
4. File named by OAUTHGATE_CONFIG_FILE
5. Environment variables (highest priority)

Environment variables use the OAUTHGATE__ prefix with nested delimiter __.
Example: OAUTHGATE__ALLOWED_PROVIDERS=github,google
Example: OAUTHGATE__PROVIDERS__GITHUB__CLIENT_ID=abc123
"""

from __future__ import annotations

import logging
import os
import secrets
import tomllib

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .types import ProviderCredential


logger = logging.getLogger("oauthgate.config")


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    gate_toml = Path("oauthgate.toml")
    if gate_toml.exists():
        files.append(gate_toml)

    env_config = os.environ.get("OAUTHGATE_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("oauthgate", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class _TomlSettingsSource(PydanticBaseSettingsSource):
    """Settings source backed by the merged TOML configuration files."""

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return self._data

    @property
    def _data(self) -> dict[str, Any]:
        if not hasattr(self, "_cached"):
            self._cached = _load_toml_config()
        return self._cached


def _split_comma_separated(v: Any) -> list[str]:
    if isinstance(v, str):
        return [s.strip() for s in v.split(",") if s.strip()]
    return list(v or [])


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "client_secret",
    "state_secret",
    "redis_url",
}

_REDACTED = "********"


class ProviderSettings(BaseModel):
    """Client credentials and optional endpoint overrides for one provider.

    TOML section: [tool.oauthgate.providers.<name>]
    """

    client_id: str = Field(default="", description="OAuth2 client ID from the provider")
    client_secret: str = Field(default="", description="OAuth2 client secret")
    scopes: str = Field(
        default="",
        description="Space-separated scopes; empty uses default_scopes, then the provider's own defaults",
    )
    authorize_url: str = Field(
        default="",
        description="Authorization endpoint (only for providers without a built-in class)",
    )
    token_url: str = Field(default="", description="Token exchange endpoint override")
    userinfo_url: str = Field(default="", description="User profile endpoint override")


class GateSettings(BaseSettings):
    """Auth gate settings.

    Environment prefix: OAUTHGATE__
    """

    model_config = SettingsConfigDict(
        env_prefix="OAUTHGATE__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    providers: dict[str, ProviderSettings] = Field(
        default_factory=dict,
        description="Provider name -> client credentials",
    )
    allowed_providers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["github"],
        description="Provider names accepted on /auth/{provider} routes",
    )
    ignored_routes: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["/", "/auth"],
        description="Anchored path patterns that bypass the gate entirely",
    )
    unauthenticated_route: str = Field(
        default="/",
        description="Location sent with every 403 response",
    )
    return_route: str = Field(
        default="",
        description="Post-login destination used when no 'return' parameter is given",
    )
    validate_return_url: bool = Field(
        default=True,
        description="Reject login requests whose 'return' parameter is not a safe URL",
    )
    allowed_return_hosts: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Extra hosts accepted in absolute 'return' URLs (request host is always accepted)",
    )
    deny_unauthenticated: bool = Field(
        default=False,
        description="Answer unauthenticated requests with 403 instead of a guest identity",
    )
    callback_status: int = Field(
        default=200,
        description="Status code of a successful callback response",
    )
    verify_state: bool = Field(
        default=True,
        description="Send and verify a signed single-use 'state' parameter",
    )
    state_secret: str = Field(
        default="",
        description=(
            "HMAC key for 'state' signing; generated per process when empty "
            "(required with the redis token store)"
        ),
    )
    redirect_base_url: str = Field(
        default="",
        description=(
            "Scheme and host used for callback URLs instead of the request Host header. "
            "Example: https://myapp.example.com"
        ),
    )
    session_bucket: str = Field(
        default="oauthgate",
        description="Session key under which all gate values are namespaced",
    )
    default_scopes: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description=(
            "Scopes requested when a provider has none configured; "
            "empty uses the provider defaults (GitHub: user, Google: openid email profile)"
        ),
    )

    token_store_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Access token storage backend: memory or redis",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the redis token store",
    )
    redis_prefix: str = Field(
        default="oauthgate",
        description="Key prefix for all Redis keys (namespace isolation)",
    )

    @field_validator(
        "allowed_providers",
        "ignored_routes",
        "allowed_return_hosts",
        "default_scopes",
        mode="before",
    )
    @classmethod
    def parse_comma_separated(cls, v: Any) -> list[str]:
        """Parse comma-separated strings from env vars."""
        return _split_comma_separated(v)

    @field_validator("callback_status")
    @classmethod
    def check_callback_status(cls, v: int) -> int:
        """Callbacks answer with 200 or a 302 redirect."""
        if v not in (200, 302):
            msg = f"callback_status must be 200 or 302, got {v}"
            raise ValueError(msg)
        return v

    @field_validator("allowed_providers", mode="after")
    @classmethod
    def lowercase_providers(cls, v: list[str]) -> list[str]:
        """Provider names are matched case-insensitively."""
        return [p.lower() for p in v]

    @field_validator("providers", mode="after")
    @classmethod
    def lowercase_provider_keys(cls, v: dict[str, ProviderSettings]) -> dict[str, ProviderSettings]:
        """Index provider credentials by lowercase name."""
        return {name.lower(): conf for name, conf in v.items()}

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Place TOML files between environment variables and defaults."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            _TomlSettingsSource(settings_cls),
            file_secret_settings,
        )

    @model_validator(mode="after")
    def fill_state_secret(self) -> GateSettings:
        """Generate a per-process state secret if not provided.

        A generated secret differs between workers, so a shared token
        store (redis) with state verification needs an explicit one.
        """
        if self.state_secret:
            return self
        if self.verify_state and self.token_store_backend == "redis":
            msg = (
                "state_secret must be set when verify_state is enabled with the redis "
                "token store; every worker has to sign state with the same key"
            )
            raise ValueError(msg)
        self.state_secret = secrets.token_hex(32)
        return self

    def credentials(self) -> list[ProviderCredential]:
        """Build the immutable credential list loaded by the credential store."""
        return [
            ProviderCredential(
                name=name,
                client_id=conf.client_id,
                client_secret=conf.client_secret,
                authorize_url=conf.authorize_url,
                token_url=conf.token_url,
                userinfo_url=conf.userinfo_url,
            )
            for name, conf in self.providers.items()
        ]

    def scopes_for(self, provider_name: str) -> list[str]:
        """Scopes to request for *provider_name*."""
        conf = self.providers.get(provider_name.lower())
        if conf is not None and conf.scopes:
            return [s.strip() for s in conf.scopes.split() if s.strip()]
        return list(self.default_scopes)

    def redacted(self) -> dict[str, Any]:
        """Dump settings with secrets replaced, for logging and display."""
        data = self.model_dump()
        for name in _SENSITIVE_FIELDS & data.keys():
            data[name] = _REDACTED
        for conf in data["providers"].values():
            for name in _SENSITIVE_FIELDS & conf.keys():
                conf[name] = _REDACTED
        return data

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["oauthgate Configuration", "=" * 60, ""]
        data = self.redacted()
        providers = data.pop("providers")
        for field_name, field_value in data.items():
            value_str = str(field_value)
            if len(value_str) > 50:
                value_str = value_str[:47] + "..."
            lines.append(f"  {field_name:22} = {value_str}")
        for name, conf in providers.items():
            lines.append(f"\nProvider: {name}")
            lines.append("-" * 40)
            lines.extend(f"  {k:22} = {v}" for k, v in conf.items())
        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> GateSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return GateSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> GateSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
