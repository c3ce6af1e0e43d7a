"""
api/routes/pat.py -- PAT management routes (Connect-style JSON over POST).

  POST /pat.v1.PATService/CreatePAT  {"expiration_date": <epoch>} -> {"pat", "token"}
  POST /pat.v1.PATService/ListPATs   {}                           -> {"pats": [...]}
  POST /pat.v1.PATService/DeletePAT  {"pat_id": "..."}            -> {"success": true}

The caller is identified by the proxy's trusted headers (auth/dependencies.py).
PATError subclasses carry a code; _raise_pat_error() maps it to a status.

Rate limits are applied via slowapi, per caller (api/limiter.py). The
@limiter.limit() decorator must sit BELOW @router.post: FastAPI registers
whatever function the route decorator receives, and only slowapi's wrapper
enforces route limits.
"""

import logging
from datetime import datetime, timezone
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request

from api.limiter import limiter
from api.models import (
    CreatePATRequest,
    CreatePATResponse,
    DeletePATRequest,
    DeletePATResponse,
    ErrorDetail,
    ListPATsRequest,
    ListPATsResponse,
    PATResponse,
)
from auth.dependencies import get_caller
from auth.models import Caller
from core.config import get_settings
from pat.service import PATError, PATManager

logger = logging.getLogger("tokengate.api.pat")

router = APIRouter(dependencies=[Depends(get_caller)])

_STATUS_BY_CODE = {
    "invalid_argument": 400,
    "machine_user_not_found": 404,
    "pat_not_found": 404,
    "already_exists": 409,
    "internal": 500,
}


def _pat_manager(request: Request) -> PATManager:
    """Return the wired PATManager, or 503 when no admin credential is configured."""
    manager = getattr(request.app.state, "pat_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=503,
            detail=ErrorDetail(
                code="unavailable",
                message="PAT management is not configured.",
            ).model_dump(),
        )
    return manager


def _raise_pat_error(exc: PATError) -> NoReturn:
    status = _STATUS_BY_CODE.get(exc.code, 500)
    if status >= 500:
        logger.error("PAT operation failed: %s", exc)
        message = "PAT operation failed."
    else:
        message = str(exc)
    raise HTTPException(
        status_code=status,
        detail=ErrorDetail(code=exc.code, message=message).model_dump(),
    ) from exc


@router.post("/pat.v1.PATService/CreatePAT", response_model=CreatePATResponse)
@limiter.limit(lambda: get_settings().pat_create_rate_limit)
def create_pat(
    request: Request,
    body: CreatePATRequest,
    caller: Caller = Depends(get_caller),
) -> CreatePATResponse:
    """Create a PAT for the caller. The raw token is returned only in this response."""
    try:
        expiration = datetime.fromtimestamp(body.expiration_date, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(
                code="invalid_argument",
                message="expiration date is out of range",
            ).model_dump(),
        )

    manager = _pat_manager(request)
    logger.info("Creating PAT for user %s", caller.user_id)
    try:
        pat, token = manager.create_pat(
            caller.user_id,
            caller.email,
            caller.preferred_username,
            expiration,
        )
    except PATError as e:
        _raise_pat_error(e)

    return CreatePATResponse(pat=PATResponse.from_pat(pat), token=token)


@router.post("/pat.v1.PATService/ListPATs", response_model=ListPATsResponse)
def list_pats(
    request: Request,
    body: ListPATsRequest | None = None,
    caller: Caller = Depends(get_caller),
) -> ListPATsResponse:
    """List the caller's PATs. Never includes raw token values."""
    manager = _pat_manager(request)
    try:
        pats = manager.list_pats(caller.user_id)
    except PATError as e:
        _raise_pat_error(e)

    return ListPATsResponse(pats=[PATResponse.from_pat(p) for p in pats])


@router.post("/pat.v1.PATService/DeletePAT", response_model=DeletePATResponse)
def delete_pat(
    request: Request,
    body: DeletePATRequest,
    caller: Caller = Depends(get_caller),
) -> DeletePATResponse:
    """Delete one of the caller's PATs."""
    manager = _pat_manager(request)
    logger.info("Deleting PAT %s for user %s", body.pat_id, caller.user_id)
    try:
        manager.delete_pat(caller.user_id, body.pat_id)
    except PATError as e:
        _raise_pat_error(e)

    return DeletePATResponse(success=True)
