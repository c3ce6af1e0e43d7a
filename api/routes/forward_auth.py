"""
api/routes/forward_auth.py -- HTTP forward-auth check.

The edge proxy forwards the original request's headers here (any method, any
sub-path) and acts on the status code:

  200 -> allow; the proxy copies the identity headers onto the upstream request
  401 -> deny; the proxy returns this response to the client

The route is a plain `def` so FastAPI runs it in the thread pool. The engine
makes blocking Redis and IdP calls.
"""

import logging
import time

from fastapi import APIRouter, HTTPException, Request, Response

from api.models import ErrorDetail
from core.authorizer import Authorizer
from core.config import get_settings

logger = logging.getLogger("tokengate.api.forward_auth")

router = APIRouter()

REASON_MISSING_HEADER = "missing authorization header"

_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _deny(reason: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=ErrorDetail(code="unauthorized", message=reason).model_dump(),
    )


@router.api_route("/oauth2/token-exchange/{path:path}", methods=_METHODS, include_in_schema=False)
def forward_auth(request: Request, path: str) -> Response:
    """Authorize the forwarded request and answer 200 with identity headers or 401."""
    settings = get_settings()
    authorizer: Authorizer = request.app.state.authorizer

    credential = request.headers.get("Authorization")
    if credential is None:
        if settings.missing_credential_policy == "allow":
            return Response(status_code=200)
        raise _deny(REASON_MISSING_HEADER)

    decision = authorizer.authorize(
        credential,
        settings.cache_ttl_seconds,
        settings.header_keys(),
        deadline=time.monotonic() + settings.request_timeout_seconds,
    )
    if not decision.allow:
        raise _deny(decision.reason)

    return _allow(decision.headers)


def _allow(headers: dict[str, str]) -> Response:
    """200 with identity headers. Values are written as UTF-8 bytes.

    Starlette encodes header values as Latin-1, which rejects names and groups
    outside that range. The proxy copies the bytes through unchanged.
    """
    response = Response(status_code=200)
    for name, value in headers.items():
        response.raw_headers.append((name.lower().encode("latin-1"), value.encode("utf-8")))
    return response
