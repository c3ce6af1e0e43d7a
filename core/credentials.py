"""
core/credentials.py -- Credential normalization, hashing, and id_token claims.

Trust boundary:
  parse_id_token_claims() does NOT verify the id_token signature. The token
  comes straight from the IdP's token endpoint over a direct TLS call made by
  this process, so the transport is the trust anchor. Do not "harden" this by
  verifying against a key we do not pin; if tokens ever arrive through an
  untrusted hop, switch to jwt.decode() with the IdP's JWKS instead.

Credentials:
  The raw bearer is only ever hashed (SHA-256, hex). The digest is the cache
  key; the raw value is never logged or stored.
"""

from __future__ import annotations

import hashlib
import json

from jose.utils import base64url_decode

from core.models import IdentityClaims

_BEARER_PREFIX = "bearer "
_JWT_SEGMENTS = 3


class ClaimsError(ValueError):
    """Raised when an id_token cannot be decoded into claims."""


def normalize_credential(raw: str | None) -> str:
    """Strip surrounding whitespace and an optional "Bearer " scheme prefix.

    "Bearer  abc", " abc " and "abc" all normalize to "abc".
    """
    if not raw:
        return ""
    value = raw.lstrip()
    if value[: len(_BEARER_PREFIX)].lower() == _BEARER_PREFIX:
        value = value[len(_BEARER_PREFIX) :]
    return value.strip()


def hash_credential(credential: str) -> str:
    """Return the SHA-256 hex digest of a normalized credential."""
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()


def parse_id_token_claims(id_token: str) -> IdentityClaims:
    """Decode the payload segment of an id_token without verifying it.

    Raises ClaimsError on an empty token, a token that is not three
    dot-separated segments, or a payload that is not a JSON object.
    """
    if not id_token:
        raise ClaimsError("id token is empty")
    if len(id_token.split(".")) != _JWT_SEGMENTS:
        raise ClaimsError("invalid jwt format")

    # Only the payload segment is read; header and signature are never decoded.
    try:
        payload = json.loads(base64url_decode(id_token.split(".")[1].encode("ascii")))
    except ValueError as e:
        raise ClaimsError(f"failed to decode jwt payload: {e}") from e
    if not isinstance(payload, dict):
        raise ClaimsError("failed to decode jwt payload: not a JSON object")

    return IdentityClaims(
        sub=_as_str(payload.get("sub")),
        email=_as_str(payload.get("email")),
        groups=_as_groups(payload.get("groups")),
        preferred_username=_as_str(payload.get("preferred_username")),
    )


def _as_str(value) -> str:
    return value if isinstance(value, str) else ""


def _as_groups(value) -> list[str]:
    if isinstance(value, list):
        return [str(g) for g in value if g is not None and str(g)]
    if isinstance(value, str) and value:
        return [value]
    return []
