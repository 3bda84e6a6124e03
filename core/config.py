"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for homegate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, radarr_base_url -> RADARR_BASE_URL).

  @model_validator(mode="after"): cross-field validation once every field is
      resolved. SECRET_KEY follows the dev/production split below; public URLs
      and the marker cookie domain are derived from DOMAIN_NAME when unset.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. It signs the
  gateway session cookie.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
  hard startup failure.

  CREDENTIAL_ENCRYPTION_KEY is not validated here. The vault cipher checks
  it when it is constructed at startup.

Layer rule: core/ is the kernel. This module may not import from api/, gateway/,
auth/, vault/, audit/, bridge/, or cache/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("homegate.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. A backend service is enabled only
    when its *_base_url is set.
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
    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    credential_encryption_key: str = ""

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///homegate.db"
    cache_db_path: str = "homegate_cache.db"
    # 0 = entries written without an explicit TTL never expire.
    cache_default_ttl: int = 0
    audit_retention_days: int = 90
    purge_interval_seconds: int = 3600

    # ------------------------------------------------------------------
    # Session and cookies
    # ------------------------------------------------------------------

    domain_name: str = ""
    cookie_domain: str = ""
    secure_cookies: bool = True
    session_max_age: int = 60 * 60 * 24

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "testserver"]
    cors_origins: list[str] = []

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------

    backend_timeout_seconds: float = 10.0

    jellyfin_base_url: str = ""
    jellyfin_public_url: str = ""
    jellyfin_bridge_path: str = "/sso-bridge.html"
    jellyfin_client_header: str = (
        'MediaBrowser Client="homegate", Device="Server", DeviceId="homegate-gateway", Version="1.0.0"'
    )

    radarr_base_url: str = ""
    radarr_public_url: str = ""
    radarr_cookie_name: str = "RadarrAuth"

    sonarr_base_url: str = ""
    sonarr_public_url: str = ""
    sonarr_cookie_name: str = "SonarrAuth"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def derive_domain_defaults(self) -> "Settings":
        """Fill public URLs and the cookie domain from DOMAIN_NAME when unset.

        A service's public URL defaults to https://{service}.{domain_name}.
        The marker cookie domain defaults to .{domain_name} so every service
        subdomain sees it.
        """
        if not self.domain_name:
            return self
        if not self.cookie_domain:
            self.cookie_domain = f".{self.domain_name}"
        for service in ("jellyfin", "radarr", "sonarr"):
            field = f"{service}_public_url"
            if not getattr(self, field):
                setattr(self, field, f"https://{service}.{self.domain_name}")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
