#!/usr/bin/env python3
"""
tokengate -- PAT token-exchange authorization front-end.

Usage:
  python main.py serve-http
  python main.py serve-grpc
  python main.py check <credential>
  echo "$PAT" | python main.py check -

All settings come from environment variables or .env (see core/config.py):
  REDIS_URL, IDP_ISSUER, IDP_CLIENT_ID, IDP_CLIENT_SECRET, ADMIN_PAT, ...
"""

import argparse
import json
import sys
import time
from typing import Optional

from core.config import configure_logging, get_settings


def _serve_http() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "api.main:app",
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )


def _serve_grpc() -> None:
    from rpc.server import serve

    serve(get_settings())


def _check(credential: str) -> int:
    """Run one decision with the configured wiring and print it as JSON.

    Returns the process exit code: 0 for allow, 1 for deny.
    """
    from core.wiring import build_components

    settings = get_settings()
    configure_logging(settings)
    if credential == "-":
        credential = sys.stdin.read()

    components = build_components(settings)
    try:
        decision = components.authorizer.authorize(
            credential,
            settings.cache_ttl_seconds,
            settings.header_keys(),
            deadline=time.monotonic() + settings.request_timeout_seconds,
        )
    finally:
        components.close()

    print(json.dumps({"allow": decision.allow, "headers": decision.headers, "reason": decision.reason}, indent=2))
    return 0 if decision.allow else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tokengate",
        description="PAT token-exchange authorization front-end.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve-http
  python main.py serve-grpc
  python main.py check "Bearer $PAT"
  ADMIN_PAT=... EXCHANGE_MODE=delegated python main.py serve-grpc
        """,
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.add_parser("serve-http", help="Serve forward-auth, PAT management and /healthz over HTTP")
    subparsers.add_parser("serve-grpc", help="Serve the Envoy ext_authz Check API over gRPC")
    check = subparsers.add_parser("check", help="Authorize one credential and print the decision")
    check.add_argument(
        "credential",
        metavar="CREDENTIAL",
        help='Bearer credential, with or without the "Bearer " prefix. Use - to read it from stdin.',
    )
    args = parser.parse_args(argv)

    if args.command == "serve-http":
        _serve_http()
    elif args.command == "serve-grpc":
        _serve_grpc()
    elif args.command == "check":
        return _check(args.credential)
    else:
        parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
