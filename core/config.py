"""
core/config.py -- ServiceDesk settings.

Settings is a pydantic-settings model: every field can be set through the
environment variable of the same name in upper case (DATABASE_URL,
DEV_MODE, ATOMIC_USER_WRITES ...) or through a .env file in the working
directory. Other modules read configuration through get_settings() only.

get_settings() builds Settings on first use and caches it for the life of the
process. The rate limiter and the logging setup read it at import time.

Development mode:
  DEV_MODE is the only switch that enables the fallback development identity
  and the missing-table authorization bypass. It is read once at process start
  and is never inferred from the request host or headers.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or cmdb/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("servicedesk.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'servicedesk.db'}"


class Settings(BaseSettings):
    """Process configuration. Every field has a default; only DATABASE_URL
    normally needs setting outside development."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    dev_mode: bool = False

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Off when pointing at a pre-provisioned database whose schema is owned
    # by the DBA scripts.
    auto_create_schema: bool = True
    # Wrap user creation + group memberships in one transaction. When off,
    # membership inserts are best-effort and never undo the created user.
    atomic_user_writes: bool = True

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    principal_header: str = "x-ms-client-principal"
    dev_identity_email: str = "agent@test.com"
    dev_identity_id: str = "test-agent-id"
    dev_identity_role: str = "agent"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_allow_origins: list[str] = ["*"]
    rate_limit_enabled: bool = True
    read_rate_limit: str = "120/minute"
    write_rate_limit: str = "60/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def guard_dev_mode(self) -> "Settings":
        """Refuse DEV_MODE against a server database unless DEBUG is also set.

        DEV_MODE substitutes a fixed identity for unauthenticated requests.
        """
        if self.dev_mode:
            if not self.database_url.startswith("sqlite") and not self.debug:
                raise ValueError(
                    "DEV_MODE requires a SQLite DATABASE_URL. "
                    "Set DEBUG=true to use development mode against another database."
                )
            logger.warning(
                "Development mode enabled: requests without a principal header run as %s",
                self.dev_identity_email,
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the cached Settings. Tests call get_settings.cache_clear() after
    changing the environment."""
    return Settings()
