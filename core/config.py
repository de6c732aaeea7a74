"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the KEV catalog service happen here. No
module should call os.getenv() or os.environ.get() directly -- import
get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. db_host -> DB_HOST). The legacy variable names used by earlier
      deployments (INTERNAL_HOST, USER, PW, DB) are accepted as aliases.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. The feed URL must use HTTPS outside of
      debug mode.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or catalog/.
"""

import logging
import tempfile
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url

logger = logging.getLogger("kevcatalog.config")

KEV_CSV_URL = "https://www.cisa.gov/sites/default/files/csv/known_exploited_vulnerabilities.csv"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Connection parameters default to a
    local MySQL server; DATABASE_URL overrides them wholesale (tests point it
    at SQLite).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    # Full SQLAlchemy URL. Empty string means "build it from the parts below".
    database_url: str = ""
    db_driver: str = "mysql+pymysql"
    db_host: str = Field(default="localhost", validation_alias=AliasChoices("DB_HOST", "INTERNAL_HOST"))
    db_port: int | None = None
    db_user: str = Field(default="root", validation_alias=AliasChoices("DB_USER", "USER"))
    db_password: str = Field(default="", validation_alias=AliasChoices("DB_PASSWORD", "PW"))
    db_name: str = Field(default="kev", validation_alias=AliasChoices("DB_NAME", "DB"))
    db_connect_timeout: int = 10

    # ------------------------------------------------------------------
    # Feed
    # ------------------------------------------------------------------

    kev_url: str = KEV_CSV_URL
    kev_temp_dir: Path = Path(tempfile.gettempdir()) / "kev_catalog"
    feed_timeout_seconds: int = 60

    # 0 disables the background loop; the catalog then refreshes only at
    # startup and through POST /update-kev.
    refresh_on_startup: bool = True
    refresh_interval_hours: int = 24

    # ------------------------------------------------------------------
    # API
    # ------------------------------------------------------------------

    # Off by default: key issuance has always been open. Turning it on means
    # the first key must come from `python main.py issue-key`.
    require_auth_for_key_issuance: bool = False
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_feed_url(self) -> "Settings":
        """Require an HTTPS feed URL unless running in debug mode.

        The catalog is replaced wholesale from whatever the URL returns, so a
        plaintext transport would let anyone on the path rewrite it.
        """
        if not self.kev_url.lower().startswith("https://"):
            if not self.debug:
                raise ValueError("KEV_URL must use https://. To allow plain HTTP, set DEBUG=true.")
            logger.warning("WARNING: KEV_URL is not HTTPS (%s). Allowed because DEBUG=true.", self.kev_url)
        if self.refresh_interval_hours < 0:
            raise ValueError("REFRESH_INTERVAL_HOURS must be 0 (disabled) or positive.")
        return self

    def sqlalchemy_url(self) -> URL:
        """Return the SQLAlchemy URL for the catalog/credential database.

        URL.create() quotes the password correctly, so credentials containing
        '@' or '/' do not need manual escaping in the environment.
        """
        if self.database_url:
            return make_url(self.database_url)
        return URL.create(
            self.db_driver,
            username=self.db_user,
            password=self.db_password or None,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
