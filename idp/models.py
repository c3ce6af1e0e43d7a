"""
idp/models.py -- Records returned by the identity provider client.

Pure data containers. Field names follow this service's vocabulary, not the
IdP's wire JSON; idp/client.py owns the mapping between the two.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class TokenResult:
    """Token endpoint response for an RFC 8693 token exchange."""

    access_token: str = ""
    token_type: str = ""
    issued_token_type: str = ""
    refresh_token: str = ""
    id_token: str = ""
    expires_in: int = 0
    scope: str = ""


@dataclass
class UserInfo:
    """OIDC userinfo response. username is the preferred_username claim."""

    sub: str = ""
    username: str = ""
    email: str = ""
    name: str = ""


@dataclass
class MachineUser:
    """A machine (service) user that owns PATs on behalf of one human user.

    username is the human user's id, which makes the machine user look-up-able
    by the human identity alone.
    """

    id: str
    username: str
    name: str = ""
    description: str = ""


@dataclass
class PersonalAccessToken:
    """IdP-side PAT metadata. The raw token value is never part of this record."""

    id: str
    user_id: str
    expiration_date: datetime | None = None
    created_at: datetime | None = None
