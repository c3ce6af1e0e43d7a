"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/pat.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. Counters are per process; with several replicas the effective
limit is multiplied by the replica count.

Every request arrives through the edge proxy, so the remote address is the
proxy's. Limits are keyed on the proxy's trusted user header instead, and
fall back to the remote address only when that header is absent.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from auth.dependencies import try_get_caller


def caller_key(request: Request) -> str:
    """Rate-limit bucket for a request: the authenticated user, else the peer."""
    caller = try_get_caller(request)
    if caller is not None:
        return f"user:{caller.user_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=caller_key, storage_uri="memory://")
