"""
rpc/server.py -- Envoy ext_authz gRPC server (envoy.service.auth.v3.Authorization).

Check() reads the Authorization header from the HTTP attributes Envoy sends,
runs the shared Authorizer and renders the Decision:

  allow        -> ok_response with identity headers, rpc status OK
  deny         -> denied_response 401 + reason, rpc status UNAUTHENTICATED
  engine fault -> denied_response 500 "internal server error", rpc status INTERNAL

A CheckRequest without HTTP attributes is a malformed call and is aborted
with INVALID_ARGUMENT instead of being answered.

Handlers run on a ThreadPoolExecutor; the engine is blocking and thread safe.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from concurrent import futures

import grpc
from envoy.service.auth.v3 import external_auth_pb2 as auth_pb2
from envoy.service.auth.v3 import external_auth_pb2_grpc as auth_pb2_grpc

from core.authorizer import Authorizer
from core.config import Settings, configure_logging, get_settings
from core.wiring import build_components
from rpc.responses import allow_request, deny_request

logger = logging.getLogger("tokengate.rpc")

REASON_MISSING_HEADER = "missing authorization header"
REASON_INTERNAL = "internal server error"


def extract_authorization(request: auth_pb2.CheckRequest) -> str | None:
    """Return the Authorization header value, or None if the request has none.

    Envoy lowercases header names in the `headers` map; the original casing
    is checked too for non-Envoy callers. When Envoy is configured to send
    `header_map` instead, that is searched as a fallback.
    """
    http = request.attributes.request.http
    for name in ("authorization", "Authorization"):
        if name in http.headers:
            return http.headers[name]

    for header in http.header_map.headers:
        if header.key.lower() == "authorization":
            if header.raw_value:
                return header.raw_value.decode("utf-8", errors="replace")
            return header.value
    return None


class AuthorizationServicer(auth_pb2_grpc.AuthorizationServicer):
    """ext_authz Check backed by the shared Authorizer."""

    def __init__(self, authorizer: Authorizer, settings: Settings) -> None:
        self._authorizer = authorizer
        self._settings = settings
        self._header_keys = settings.header_keys()

    def Check(self, request: auth_pb2.CheckRequest, context: grpc.ServicerContext) -> auth_pb2.CheckResponse:
        if not (request.HasField("attributes") and request.attributes.request.HasField("http")):
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, "missing HTTP request")

        credential = extract_authorization(request)
        if credential is None:
            if self._settings.missing_credential_policy == "allow":
                logger.info("No authorization header, allowed by policy")
                return allow_request()
            logger.warning("Authorization denied: %s", REASON_MISSING_HEADER)
            return deny_request(401, REASON_MISSING_HEADER)

        try:
            decision = self._authorizer.authorize(
                credential,
                self._settings.cache_ttl_seconds,
                self._header_keys,
                deadline=self._deadline(context),
            )
        except Exception:
            logger.exception("Authorization check failed")
            return deny_request(500, REASON_INTERNAL)

        if not decision.allow:
            logger.warning("Authorization denied: %s", decision.reason)
            return deny_request(401, decision.reason)

        logger.info("Authorization allowed")
        return allow_request(decision.headers)

    def _deadline(self, context: grpc.ServicerContext) -> float:
        """Absolute monotonic deadline: the caller's, capped by the configured timeout."""
        budget = self._settings.request_timeout_seconds
        remaining = context.time_remaining()
        if remaining is not None:
            budget = min(budget, remaining)
        return time.monotonic() + budget


def create_server(authorizer: Authorizer, settings: Settings) -> grpc.Server:
    """Build (but do not start) a gRPC server bound to settings.grpc_addr."""
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=settings.grpc_max_workers))
    auth_pb2_grpc.add_AuthorizationServicer_to_server(AuthorizationServicer(authorizer, settings), server)
    server.add_insecure_port(settings.grpc_addr)
    return server


def serve(settings: Settings | None = None) -> None:
    """Run the gRPC server until SIGTERM or SIGINT, then stop gracefully."""
    settings = settings or get_settings()
    configure_logging(settings)

    components = build_components(settings)
    server = create_server(components.authorizer, settings)
    server.start()
    logger.info("gRPC ext_authz server listening on %s", settings.grpc_addr)

    stop_requested = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Received signal %s, shutting down", signum)
        stop_requested.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    stop_requested.wait()
    server.stop(settings.grpc_grace_seconds).wait()
    components.close()
    logger.info("gRPC server stopped")
