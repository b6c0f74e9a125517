"""Server-side storage for provider access tokens.

Tokens are keyed by service identity, ``<session id>:<provider name>``,
so one browser session never sees another session's token. A token past
its ``expires_in`` lifetime counts as absent: the memory store evicts it
on read and the Redis store lets the key expire with the token.
"""

from __future__ import annotations

import asyncio
import json
import math
import threading
import time

from abc import ABC, abstractmethod
from typing import Any

from .types import OAuthTokenSet


class TokenStore(ABC):
    """Async key/value store of ``OAuthTokenSet`` per service identity."""

    @abstractmethod
    async def save(self, key: str, tokens: OAuthTokenSet) -> None:
        """Store *tokens* under *key*, replacing any previous set."""

    @abstractmethod
    async def load(self, key: str) -> OAuthTokenSet | None:
        """Tokens stored under *key*, or None if missing or expired."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Forget *key*; unknown keys are ignored."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether an unexpired token set is stored under *key*."""


def _serialize_tokens(tokens: OAuthTokenSet) -> str:
    return json.dumps(
        {
            "access_token": tokens.access_token,
            "token_type": tokens.token_type,
            "refresh_token": tokens.refresh_token,
            "expires_in": tokens.expires_in,
            "scope": tokens.scope,
            "raw": tokens.raw,
            "issued_at": tokens.issued_at,
        }
    )


def _deserialize_tokens(data: str) -> OAuthTokenSet:
    obj = json.loads(data)
    return OAuthTokenSet(
        access_token=obj["access_token"],
        token_type=obj.get("token_type", "bearer"),
        refresh_token=obj.get("refresh_token"),
        expires_in=obj.get("expires_in"),
        scope=obj.get("scope", ""),
        raw=obj.get("raw", {}),
        issued_at=obj.get("issued_at", time.time()),
    )


def _remaining_lifetime(tokens: OAuthTokenSet) -> int | None:
    """Whole seconds until *tokens* expire, or None if they never do."""
    if tokens.expires_in is None or tokens.expires_in <= 0:
        return None
    return max(0, math.ceil(tokens.issued_at + tokens.expires_in - time.time()))


class MemoryTokenStore(TokenStore):
    """In-process token store for development and single-worker servers.

    Entries are kept as JSON so callers always get an independent copy.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def save(self, key: str, tokens: OAuthTokenSet) -> None:
        async with self._lock:
            self._tokens[key] = _serialize_tokens(tokens)

    async def load(self, key: str) -> OAuthTokenSet | None:
        async with self._lock:
            data = self._tokens.get(key)
            if data is None:
                return None
            tokens = _deserialize_tokens(data)
            if tokens.is_expired:
                del self._tokens[key]
                return None
        return tokens

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._tokens.pop(key, None)

    async def exists(self, key: str) -> bool:
        return await self.load(key) is not None


class RedisTokenStore(TokenStore):
    """Redis-backed token store shared by every worker.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for namespacing (default "oauthgate").
    pool_size : int
        Connection pool size (default 10).
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "oauthgate",
        pool_size: int = 10,
    ) -> None:
        try:
            from redis.asyncio import Redis as RedisClient
        except ImportError:
            msg = "Redis backend requires the 'redis' package. Install with: pip install oauthgate[redis]"
            raise ImportError(msg) from None

        self._prefix = prefix
        self._redis: Any = RedisClient.from_url(
            redis_url,
            max_connections=pool_size,
            decode_responses=True,
        )

    def _key(self, key: str) -> str:
        return f"{self._prefix}:oauth:tokens:{key}"

    async def save(self, key: str, tokens: OAuthTokenSet) -> None:
        """Store *tokens*; keys of expiring tokens get the remaining lifetime as TTL."""
        redis_key = self._key(key)
        ttl = _remaining_lifetime(tokens)
        if ttl is None:
            await self._redis.set(redis_key, _serialize_tokens(tokens))
        elif ttl > 0:
            await self._redis.setex(redis_key, ttl, _serialize_tokens(tokens))
        else:
            await self._redis.delete(redis_key)

    async def load(self, key: str) -> OAuthTokenSet | None:
        data = await self._redis.get(self._key(key))
        if data is None:
            return None
        return _deserialize_tokens(data)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def exists(self, key: str) -> bool:
        return bool(await self._redis.exists(self._key(key)))


_token_store_instance: TokenStore | None = None
_token_store_lock = threading.Lock()


def get_token_store(backend: str = "memory", **kwargs: Any) -> TokenStore:
    """Factory function for token stores.

    Returns a singleton instance. Call ``reset_token_store()`` to clear
    the cached instance (e.g. in tests).

    Parameters
    ----------
    backend : str
        Storage backend: "memory" or "redis".
    **kwargs : Any
        ``redis_url``, ``prefix`` and ``pool_size`` for the redis backend.

    Returns
    -------
    TokenStore
        A configured token store instance.
    """
    global _token_store_instance  # noqa: PLW0603

    with _token_store_lock:
        if _token_store_instance is not None:
            return _token_store_instance

        if backend == "memory":
            _token_store_instance = MemoryTokenStore()
        elif backend == "redis":
            _token_store_instance = RedisTokenStore(
                redis_url=kwargs.get("redis_url", "redis://localhost:6379/0"),
                prefix=kwargs.get("prefix", "oauthgate"),
                pool_size=kwargs.get("pool_size", 10),
            )
        else:
            msg = f"Unknown token store backend: {backend}"
            raise ValueError(msg)

        return _token_store_instance


def reset_token_store() -> None:
    """Reset the singleton token store instance."""
    global _token_store_instance  # noqa: PLW0603

    with _token_store_lock:
        _token_store_instance = None
