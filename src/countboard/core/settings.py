"""Runtime configuration for Countboard.

Every option is read from the environment (or a local ``.env``) through the
alias next to it. Only ``SECRET_KEY`` is mandatory.
"""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings for the API, the store and the write queue."""

    # Application metadata
    app_name: str = Field(default="Countboard", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Token signing
    secret_key: str = Field(alias="SECRET_KEY")
    share_secret_key: str | None = Field(default=None, alias="SHARE_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 30,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Counter store
    database_url: str = Field(default="sqlite:///./countboard.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Period keys are computed in this zone, never in the host's
    reference_timezone: str = Field(default="America/New_York", alias="REFERENCE_TIMEZONE")
    period_key_iteration_limit: int = Field(
        default=1000,
        gt=0,
        alias="PERIOD_KEY_ITERATION_LIMIT",
    )

    # Client-side write queue
    mutation_debounce_seconds: float = Field(
        default=0.3,
        ge=0,
        alias="MUTATION_DEBOUNCE_SECONDS",
    )
    mutation_max_attempts: int = Field(default=3, ge=1, alias="MUTATION_MAX_ATTEMPTS")
    mutation_backoff_base_seconds: float = Field(
        default=0.25,
        ge=0,
        alias="MUTATION_BACKOFF_BASE_SECONDS",
    )
    mutation_backoff_max_seconds: float = Field(
        default=5.0,
        ge=0,
        alias="MUTATION_BACKOFF_MAX_SECONDS",
    )
    api_base_url: str = Field(default="http://localhost:8000", alias="COUNTBOARD_API_BASE_URL")
    api_timeout_seconds: float = Field(default=10.0, alias="COUNTBOARD_API_TIMEOUT_SECONDS")

    # CORS for browser clients
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @field_validator("reference_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown IANA timezone {value!r}") from exc
        return value

    @property
    def effective_database_url(self) -> str:
        """Return the test database URL when testing mode is on, else the main one."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def database_url_sync(self) -> str:
        """Return ``effective_database_url`` with async drivers swapped for sync ones.

        Alembic runs synchronously even when the URL was written for asyncpg
        or aiosqlite.
        """
        url = self.effective_database_url
        for async_driver, sync_driver in (
            ("postgresql+asyncpg", "postgresql+psycopg"),
            ("sqlite+aiosqlite", "sqlite"),
        ):
            if url.startswith(async_driver):
                return sync_driver + url[len(async_driver):]
        return url

    @property
    def effective_share_secret(self) -> str:
        """Return the key used to sign and verify share tokens."""
        return self.share_secret_key or self.secret_key


settings = Settings()  # type: ignore[call-arg]
