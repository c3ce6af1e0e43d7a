"""
core/wiring.py -- Composition root for the decision engine and PAT manager.

The HTTP lifespan (api/main.py), the gRPC server (rpc/server.py) and the
`check` CLI command all build their collaborators here, so every entry point
runs the same wiring. The Redis client and the IdP session are built once
per process and passed in; nothing downstream constructs its own.
"""

from __future__ import annotations

from dataclasses import dataclass

from cache.store import CredentialCache, create_redis_client
from core.authorizer import Authorizer
from core.config import Settings
from core.models import ExchangeConfig, ExchangeMode
from idp.client import IdentityClient
from pat.service import PATManager


@dataclass
class Components:
    cache: CredentialCache
    idp: IdentityClient
    authorizer: Authorizer
    pat_manager: PATManager | None  # None when no admin credential is configured

    def close(self) -> None:
        self.idp.close()
        self.cache.close()


def build_components(settings: Settings) -> Components:
    """Build the process-wide cache, IdP client, engine and PAT manager.

    Nothing connects eagerly: the Redis pool and the IdP session open
    connections on first use, so a down dependency degrades requests instead
    of blocking startup.
    """
    cache = CredentialCache(
        create_redis_client(
            settings.redis_url,
            pool_size=settings.redis_pool_size,
            timeout=settings.redis_timeout_seconds,
        )
    )
    idp = IdentityClient(
        issuer=settings.idp_issuer,
        client_id=settings.idp_client_id,
        client_secret=settings.idp_client_secret,
        admin_token=settings.admin_pat,
        organization_id=settings.idp_organization_id,
        timeout=settings.idp_timeout_seconds,
        retries=settings.idp_retries,
    )
    exchange = ExchangeConfig(
        mode=ExchangeMode(settings.exchange_mode),
        actor_token=settings.admin_pat,
    )
    return Components(
        cache=cache,
        idp=idp,
        authorizer=Authorizer(cache, idp, exchange),
        pat_manager=PATManager(idp) if settings.admin_pat else None,
    )
