"""
cache/store.py -- Redis-backed cache of resolved identities.

Avoids a userinfo lookup and a token exchange on every request by storing the
exchange result under the credential hash with a caller-supplied TTL. Redis
enforces expiry (SET ... EX); this module never tracks time itself.

Usage:
    cache = CredentialCache(redis.Redis.from_url("redis://localhost:6379/0"))
    record = cache.get(credential_hash)      # CachedIdentity or None
    cache.set(credential_hash, record, ttl=300)

The redis client is thread safe and pools its connections, so one
CredentialCache is shared by every request in the process.
"""

from __future__ import annotations

import json
import logging

import redis

from core.models import CachedIdentity

logger = logging.getLogger("tokengate.cache")

KEY_PREFIX = "authz:pat:"


class CacheError(RuntimeError):
    """Raised when the backing store fails or holds an unreadable value."""


def create_redis_client(url: str, pool_size: int = 10, timeout: float = 2.0) -> redis.Redis:
    """Build a pooled Redis client from a redis:// URL.

    Socket timeouts bound every cache call so a slow Redis degrades to an
    exchange instead of stalling the request.
    """
    return redis.Redis.from_url(
        url,
        max_connections=pool_size,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
    )


def _key(credential_hash: str) -> str:
    return f"{KEY_PREFIX}{credential_hash}"


class CredentialCache:
    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    def get(self, credential_hash: str) -> CachedIdentity | None:
        """Return the cached identity, or None on a miss (expired or never set)."""
        try:
            raw = self._client.get(_key(credential_hash))
        except redis.RedisError as e:
            raise CacheError(f"failed to get from redis: {e}") from e
        if raw is None:
            return None

        try:
            data = json.loads(raw)
        except ValueError as e:
            raise CacheError(f"failed to decode cached identity: {e}") from e
        if not isinstance(data, dict):
            raise CacheError("failed to decode cached identity: not an object")

        return CachedIdentity(
            access_token=data.get("access_token") or "",
            user_id=data.get("user_id") or "",
            email=data.get("email") or "",
            groups=list(data.get("groups") or []),
            preferred_username=data.get("preferred_username") or "",
        )

    def set(self, credential_hash: str, record: CachedIdentity, ttl: int) -> None:
        """Store a record, replacing any existing entry; Redis expires it after ttl seconds."""
        payload = json.dumps(
            {
                "access_token": record.access_token,
                "user_id": record.user_id,
                "email": record.email,
                "groups": record.groups,
                "preferred_username": record.preferred_username,
            },
            separators=(",", ":"),
        )
        try:
            self._client.set(_key(credential_hash), payload, ex=ttl)
        except redis.RedisError as e:
            raise CacheError(f"failed to set redis cache: {e}") from e

    def ping(self) -> bool:
        """Return True if Redis answers. Used by the health endpoint."""
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    def close(self) -> None:
        self._client.close()
