"""
core/authorizer.py -- The authorization decision pipeline.

    credential -> normalize -> hash -> cache
        hit:  headers from the cached record                        -> allow
        miss: [userinfo ->] token exchange -> id_token claims
              -> cache write -> headers from the new record         -> allow
        any policy failure                                          -> deny(reason)

At most one exchange path runs per request. The path is fixed at wiring time
by ExchangeConfig: "delegated" resolves the caller through userinfo and then
exchanges with the admin PAT as actor; "simple" exchanges the caller's
credential directly.

Policy failures (IdP errors, unparseable tokens, an expired deadline) become
Decision.denied(). Cache failures are degraded to a miss on read and ignored
on write. Anything else is a bug and propagates; the transports render it as
an internal error.

Reason strings never contain the credential.
"""

from __future__ import annotations

import logging
import time

from cache.store import CacheError, CredentialCache
from core.credentials import ClaimsError, hash_credential, normalize_credential, parse_id_token_claims
from core.models import CachedIdentity, Decision, ExchangeConfig, ExchangeMode
from idp.client import TOKEN_TYPE_USER_ID, IdentityClient, IdPError

logger = logging.getLogger("tokengate.authorizer")

REASON_EMPTY_CREDENTIAL = "empty credential"
REASON_NOT_CONFIGURED = "exchange path not configured"
REASON_DEADLINE_EXCEEDED = "request deadline exceeded"


class DeadlineExceeded(Exception):
    """The request deadline passed before the next outbound step."""


def build_headers(record: CachedIdentity, header_keys: dict[str, str]) -> dict[str, str]:
    """Render a record into wire headers. Empty values are left out.

    Both the cache-hit and the cache-miss path go through here, so the same
    identity always yields the same header set.
    """
    values = (
        ("user_id", record.user_id),
        ("user_email", record.email),
        ("user_groups", ",".join(record.groups)),
        ("user_preferred_username", record.preferred_username),
        ("user_jwt", record.access_token),
    )
    headers: dict[str, str] = {}
    for logical, value in values:
        if value:
            headers[header_keys[logical]] = value
    return headers


class Authorizer:
    """Turns a bearer credential into an allow/deny Decision.

    Args:
        cache:    Credential cache shared by all requests.
        idp:      IdP client, or None when no exchange path is wired.
        exchange: Exchange strategy selected at startup.
    """

    def __init__(
        self,
        cache: CredentialCache,
        idp: IdentityClient | None,
        exchange: ExchangeConfig,
    ) -> None:
        self._cache = cache
        self._idp = idp
        self._exchange = exchange

    @property
    def exchange_configured(self) -> bool:
        return self._idp is not None and self._exchange.configured

    def authorize(
        self,
        credential: str | None,
        cache_ttl: int,
        header_keys: dict[str, str],
        deadline: float | None = None,
    ) -> Decision:
        """Decide one request.

        deadline is an absolute time.monotonic() value. Outbound IdP calls are
        given at most the remaining time, and nothing is cached once it passes.
        """
        token = normalize_credential(credential)
        if not token:
            return Decision.denied(REASON_EMPTY_CREDENTIAL)

        key = hash_credential(token)

        try:
            cached = self._cache.get(key)
        except CacheError as e:
            logger.warning("Cache read failed, treating as miss: %s", e)
            cached = None
        if cached is not None:
            return Decision.allowed(build_headers(cached, header_keys))

        if self._idp is None or not self._exchange.configured:
            logger.warning("Cache miss with no exchange path configured")
            return Decision.denied(REASON_NOT_CONFIGURED)

        try:
            record = self._resolve(self._idp, token, deadline)
        except DeadlineExceeded:
            logger.warning("Request deadline exceeded during authorization")
            return Decision.denied(REASON_DEADLINE_EXCEEDED)
        except _Denied as d:
            logger.warning("Authorization denied: %s", d.reason)
            return Decision.denied(d.reason)

        remaining = _remaining(deadline)
        if remaining is not None and remaining <= 0:
            logger.warning("Request deadline exceeded before cache write")
            return Decision.denied(REASON_DEADLINE_EXCEEDED)

        try:
            self._cache.set(key, record, cache_ttl)
        except CacheError as e:
            logger.warning("Cache write failed: %s", e)

        return Decision.allowed(build_headers(record, header_keys))

    def _resolve(self, idp: IdentityClient, token: str, deadline: float | None) -> CachedIdentity:
        """Run the configured exchange path and return the record to cache."""
        if self._exchange.mode is ExchangeMode.delegated:
            try:
                info = idp.get_user_info(token, timeout=_timeout(idp, deadline))
            except IdPError as e:
                raise _Denied(f"user info lookup failed: {e}") from e
            if not info.username:
                raise _Denied("user info lookup failed: no username in userinfo response")

            try:
                result = idp.exchange_with_actor(
                    info.username,
                    TOKEN_TYPE_USER_ID,
                    self._exchange.actor_token,
                    timeout=_timeout(idp, deadline),
                )
            except IdPError as e:
                raise _Denied(f"token exchange failed: {e}") from e
        else:
            try:
                result = idp.exchange(token, timeout=_timeout(idp, deadline))
            except IdPError as e:
                raise _Denied(f"token exchange failed: {e}") from e

        try:
            claims = parse_id_token_claims(result.id_token)
        except ClaimsError as e:
            raise _Denied(f"id token parse failed: {e}") from e

        return CachedIdentity.from_claims(result.access_token, claims)


class _Denied(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def _remaining(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    return deadline - time.monotonic()


def _timeout(idp: IdentityClient, deadline: float | None) -> float:
    """Per-call timeout: the client default, capped by the time left."""
    remaining = _remaining(deadline)
    if remaining is None:
        return idp.timeout
    if remaining <= 0:
        raise DeadlineExceeded()
    return min(idp.timeout, remaining)
