"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for tokengate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The HTTP
      app and the gRPC server both wire their clients from this instance.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. admin_pat -> ADMIN_PAT). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Delegated exchange mode without an admin credential is a
      configuration fault: production refuses to start, dev mode warns and
      every cache miss is denied with "exchange path not configured".

Layer rule: core/ is the kernel. This module may not import from api/, rpc/,
auth/, or pat/.
"""

import json
import logging
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger("tokengate.config")

_DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces the
    exchange-path wiring rule at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    version: str = "0.3.0"

    # ------------------------------------------------------------------
    # Servers
    # ------------------------------------------------------------------

    http_host: str = "0.0.0.0"  # noqa: S104 -- bind address for the container
    http_port: int = 8123
    # Upper bound for one forward-auth check, cache and IdP calls included.
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    grpc_addr: str = "0.0.0.0:9001"
    grpc_max_workers: int = Field(default=16, gt=0)
    grpc_grace_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Credential cache (Redis)
    # ------------------------------------------------------------------

    redis_url: str = "redis://localhost:6379/0"
    redis_pool_size: int = Field(default=10, gt=0)
    redis_timeout_seconds: float = Field(default=2.0, gt=0)

    # ------------------------------------------------------------------
    # Identity provider
    # ------------------------------------------------------------------

    idp_issuer: str = "http://localhost:8080"
    idp_client_id: str = ""
    idp_client_secret: str = ""
    idp_organization_id: str = ""
    idp_timeout_seconds: float = Field(default=10.0, gt=0)
    idp_retries: int = Field(default=2, ge=0)

    # Delegated administrative credential. Used as the actor token in
    # delegated exchanges and as the bearer for machine-user / PAT management.
    # Empty string is the sentinel for "not configured".
    admin_pat: str = ""

    # "delegated": userinfo lookup + actor token exchange (machine users).
    # "simple": subject-only exchange of the caller's credential.
    exchange_mode: Literal["simple", "delegated"] = "delegated"

    # ------------------------------------------------------------------
    # Authorization decision
    # ------------------------------------------------------------------

    cache_ttl_seconds: int = Field(default=300, gt=0)

    header_user_id: str = "x-user-id"
    header_user_email: str = "x-user-email"
    header_user_groups: str = "x-user-groups"
    header_user_preferred_username: str = "x-user-preferred-username"
    header_user_jwt: str = "x-user-jwt"

    # What to do when a check arrives with no Authorization header at all.
    # "deny" answers 401; "allow" answers 200 without identity headers.
    missing_credential_policy: Literal["deny", "allow"] = "deny"

    # ------------------------------------------------------------------
    # PAT management surface
    # ------------------------------------------------------------------

    # Empty list means any origin (without credentials). The env var takes a
    # comma-separated list or a JSON array.
    cors_allowed_origins: Annotated[list[str], NoDecode] = Field(default_factory=list)
    pat_create_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    log_level: str = "INFO"
    log_format: str = _DEFAULT_LOG_FORMAT

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def split_origins(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if value.startswith("["):
                return json.loads(value)
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @model_validator(mode="after")
    def validate_exchange_path(self) -> "Settings":
        """Refuse to start in delegated mode without an admin credential.

        Dev mode (DEBUG=true): log a warning and keep going. The engine then
            denies every cache miss with "exchange path not configured".

        Production mode: raise, so a half-wired deployment never serves
            traffic.
        """
        if self.exchange_mode == "delegated" and not self.admin_pat:
            if self.debug:
                logger.warning("ADMIN_PAT is not set -- delegated token exchange is disabled")
            else:
                raise ValueError(
                    "ADMIN_PAT is required when EXCHANGE_MODE=delegated. "
                    "Set ADMIN_PAT in your environment or .env file, "
                    "or set EXCHANGE_MODE=simple."
                )
        return self

    def header_keys(self) -> dict[str, str]:
        """Return the logical -> wire header name mapping."""
        return {
            "user_id": self.header_user_id,
            "user_email": self.header_user_email,
            "user_groups": self.header_user_groups,
            "user_preferred_username": self.header_user_preferred_username,
            "user_jwt": self.header_user_jwt,
        }


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()


def configure_logging(settings: Settings) -> None:
    """Configure root logging once per process from settings."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format=settings.log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
