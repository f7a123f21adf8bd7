"""
core/config.py -- Auth service settings, read once from the environment.

Every environment variable the service understands is a field on Settings.
Other modules call get_settings(); none of them touch os.environ.

How it is put together:
  get_settings() is wrapped in lru_cache, so the first call builds Settings
      and later calls share that instance.

  Settings extends pydantic-settings BaseSettings. An env var or a line in
      .env fills the field of the same name, upper-cased (SECRET_KEY ->
      secret_key), and pydantic coerces the type. List fields such as
      ALLOWED_HOSTS take a JSON array.

  A model_validator(mode="after") runs once every field is known and applies
      the SECRET_KEY rule: under DEBUG a throwaway key is generated and a
      warning logged; otherwise startup fails.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and the
  refresh-token HMAC both rely on key entropy.

  Rate limit strings use the `limits` notation ("5 per 15 minutes", "3/hour").
  They are read per request by api/limiter.py, so tests may override them on
  the cached Settings instance.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or resources/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tigra.config")


class Settings(BaseSettings):
    """Auth service settings.

    Every field has a default, so tests build Settings without a .env file.
    Only SECRET_KEY has no usable default outside DEBUG.
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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    app_version: str = "1.0.0"
    api_prefix: str = "/api/v1"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///tigra_auth.db"
    # Upper bound on any single store wait (SQLite busy timeout / pool checkout).
    store_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    # Dead refresh records are kept this long past expiry for audit, then purged.
    refresh_token_retention_seconds: int = 30 * 24 * 3600
    purge_interval_seconds: int = 6 * 3600

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    # bcrypt work factor. 12 lands in the tens-of-milliseconds range on
    # current hardware; tests lower it to keep the suite fast.
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    # "memory://" for a single process, "redis://host:6379" when several
    # workers or instances must share counters.
    rate_limit_storage_uri: str = "memory://"
    register_rate_limit: str = "3/hour"
    login_rate_limit: str = "5 per 15 minutes"
    refresh_rate_limit: str = "10 per 15 minutes"
    public_rate_limit: str = "100 per 15 minutes"
    authenticated_rate_limit: str = "1000 per 15 minutes"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Seed admin (optional -- both must be set to take effect)
    # ------------------------------------------------------------------

    admin_email: str = ""
    admin_password: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Apply the SECRET_KEY policy and sanity-check token lifetimes.

        DEBUG=true without a key: generate one and warn. Issued tokens die
        with the process.

        Otherwise a missing key is fatal. Keys under 32 characters are
        rejected in both modes, and the access lifetime must be shorter than
        the refresh lifetime.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.access_token_expire_seconds <= 0 or self.refresh_token_expire_seconds <= 0:
            raise ValueError("Token lifetimes must be positive.")
        if self.access_token_expire_seconds >= self.refresh_token_expire_seconds:
            raise ValueError("ACCESS_TOKEN_EXPIRE_SECONDS must be shorter than REFRESH_TOKEN_EXPIRE_SECONDS.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the shared Settings instance, building it on first use.

    Tests either set env vars before the first call or monkeypatch fields on
    the returned instance; get_settings.cache_clear() forces a re-read.
    """
    return Settings()
