"""
auth/dependencies.py -- FastAPI Depends() helpers for caller identity.

The PAT management surface sits behind the same edge proxy as everything
else. The proxy authenticates the human user and forwards the result as:

  X-Auth-Request-User                -- user id (required)
  X-Auth-Request-Email               -- email (optional)
  X-Auth-Request-Preferred-Username  -- display name (optional)

These headers are trusted as-is. Exposing this service without the proxy in
front lets any client claim any identity.

try_get_caller() is the soft variant (returns None when the user header is
missing). get_caller() wraps it and raises HTTP 401.

Layer rule: no imports from api/, rpc/, core/, idp/, pat/, or cache/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Caller

HEADER_USER = "X-Auth-Request-User"
HEADER_EMAIL = "X-Auth-Request-Email"
HEADER_PREFERRED_USERNAME = "X-Auth-Request-Preferred-Username"


def try_get_caller(request: Request) -> Caller | None:
    """Build a Caller from the trusted headers, or None if the user id is absent."""
    user_id = request.headers.get(HEADER_USER, "").strip()
    if not user_id:
        return None
    return Caller(
        user_id=user_id,
        email=request.headers.get(HEADER_EMAIL, "").strip(),
        preferred_username=request.headers.get(HEADER_PREFERRED_USERNAME, "").strip(),
    )


def get_caller(request: Request) -> Caller:
    """Require a caller. Raises HTTP 401 if the proxy did not assert a user.

    Use as a FastAPI dependency:
        @router.post("/pat.v1.PATService/ListPATs")
        def route(caller: Caller = Depends(get_caller)): ...
    """
    caller = try_get_caller(request)
    if caller is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthenticated", "message": "user not authenticated"},
        )
    return caller
