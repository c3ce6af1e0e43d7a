"""
core/models.py -- Domain dataclasses for the authorization decision pipeline.

Pattern: Data class (pure data container, zero I/O). The engine in
core/authorizer.py owns the behavior; transports only read Decision.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class IdentityClaims:
    """Unverified id_token payload returned by the IdP token exchange."""

    sub: str = ""
    email: str = ""
    groups: list[str] = field(default_factory=list)
    preferred_username: str = ""


@dataclass
class CachedIdentity:
    """A previously resolved identity, keyed by the credential hash.

    Carries the full claim set plus the exchanged access token so a cache hit
    renders exactly the same headers as the miss that produced it.
    """

    access_token: str = ""
    user_id: str = ""
    email: str = ""
    groups: list[str] = field(default_factory=list)
    preferred_username: str = ""

    @classmethod
    def from_claims(cls, access_token: str, claims: IdentityClaims) -> "CachedIdentity":
        return cls(
            access_token=access_token,
            user_id=claims.sub,
            email=claims.email,
            groups=list(claims.groups),
            preferred_username=claims.preferred_username,
        )


@dataclass
class Decision:
    """Outcome of one authorization check.

    allow=True carries wire headers to inject; allow=False carries a reason.
    """

    allow: bool
    headers: dict[str, str] = field(default_factory=dict)
    reason: str = ""

    @classmethod
    def allowed(cls, headers: dict[str, str]) -> "Decision":
        return cls(allow=True, headers=headers)

    @classmethod
    def denied(cls, reason: str) -> "Decision":
        return cls(allow=False, reason=reason)


class ExchangeMode(str, Enum):
    simple = "simple"  # subject-only exchange of the caller's credential
    delegated = "delegated"  # userinfo lookup + actor exchange with admin PAT


@dataclass(frozen=True)
class ExchangeConfig:
    """Exchange strategy, selected once at wiring time."""

    mode: ExchangeMode = ExchangeMode.delegated
    actor_token: str = ""

    @property
    def configured(self) -> bool:
        if self.mode is ExchangeMode.delegated:
            return bool(self.actor_token)
        return True
