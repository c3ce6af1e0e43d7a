"""
rpc/responses.py -- Builders for ext_authz CheckResponse messages.

allow_request() injects identity headers into the upstream request.
deny_request() short-circuits the request at the proxy with an HTTP status
and a plain-text body.
"""

from __future__ import annotations

from envoy.config.core.v3 import base_pb2
from envoy.service.auth.v3 import external_auth_pb2 as auth_pb2
from envoy.type.v3 import http_status_pb2
from google.rpc import code_pb2, status_pb2

# HTTP status -> google.rpc code placed in CheckResponse.status on denial.
_RPC_CODE_BY_HTTP_STATUS = {
    401: code_pb2.UNAUTHENTICATED,
    403: code_pb2.PERMISSION_DENIED,
    500: code_pb2.INTERNAL,
}


def allow_request(headers: dict[str, str] | None = None) -> auth_pb2.CheckResponse:
    """Build an OK response that sets each header on the upstream request.

    Headers overwrite any client-supplied value of the same name, so a caller
    cannot forge identity headers.
    """
    ok_response = auth_pb2.OkHttpResponse()
    for key, value in (headers or {}).items():
        ok_response.headers.append(
            base_pb2.HeaderValueOption(header=base_pb2.HeaderValue(key=key, value=value))
        )
    return auth_pb2.CheckResponse(
        status=status_pb2.Status(code=code_pb2.OK),
        ok_response=ok_response,
    )


def deny_request(http_status: int, body: str) -> auth_pb2.CheckResponse:
    """Build a denied response with the given HTTP status and body."""
    denied_response = auth_pb2.DeniedHttpResponse(
        status=http_status_pb2.HttpStatus(code=http_status),
        body=body,
    )
    return auth_pb2.CheckResponse(
        status=status_pb2.Status(
            code=_RPC_CODE_BY_HTTP_STATUS.get(http_status, code_pb2.PERMISSION_DENIED),
            message=body,
        ),
        denied_response=denied_response,
    )
