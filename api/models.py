"""
API request and response models for the tokengate HTTP surface.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py and
pat/models.py, which own the internal domain representation. Route handlers
map between the two.

PAT timestamps travel as Unix epoch seconds, matching the Connect JSON
clients already in use.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from pat.models import PAT

# ---------------------------------------------------------------------------
# PAT management -- request models
# ---------------------------------------------------------------------------


class CreatePATRequest(BaseModel):
    """Request body for POST /pat.v1.PATService/CreatePAT."""

    expiration_date: int = Field(description="Expiration as Unix epoch seconds. Must be in the future.")


class ListPATsRequest(BaseModel):
    """Request body for POST /pat.v1.PATService/ListPATs (no fields)."""


class DeletePATRequest(BaseModel):
    """Request body for POST /pat.v1.PATService/DeletePAT."""

    model_config = ConfigDict(str_strip_whitespace=True)

    pat_id: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# PAT management -- response models
# ---------------------------------------------------------------------------


def _epoch(value: Optional[datetime]) -> int:
    return int(value.timestamp()) if value is not None else 0


class PATResponse(BaseModel):
    """One PAT. user_id is the owning machine user, as stored by the IdP."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    human_user_id: str
    expiration_date: int
    created_at: int

    @classmethod
    def from_pat(cls, pat: PAT) -> "PATResponse":
        return cls(
            id=pat.id,
            user_id=pat.machine_user_id,
            human_user_id=pat.human_user_id,
            expiration_date=_epoch(pat.expiration_date),
            created_at=_epoch(pat.created_at),
        )


class CreatePATResponse(BaseModel):
    """The raw token is returned here once and is not retrievable afterwards."""

    model_config = ConfigDict(frozen=True)

    pat: PATResponse
    token: str


class ListPATsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    pats: list[PATResponse] = Field(default_factory=list)


class DeletePATResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /healthz.

    status is "ok" when every component reports "ok", otherwise "degraded".
    """

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
