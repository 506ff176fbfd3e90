"""Application settings and configuration.

This module defines all configuration options for the Waypost federation engine.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Waypost", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Public identity of this instance; actor URIs are built from it
    domain: str = Field(default="localhost:8000", alias="DOMAIN")
    url_scheme: str = Field(default="https", alias="URL_SCHEME")

    # Database configuration
    database_url: str = Field(default="sqlite:///./waypost.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Queue broker (Redis lists)
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    broker_enabled: bool = Field(default=True, alias="BROKER_ENABLED")
    inbox_queue_name: str = Field(default="waypost:inbox", alias="INBOX_QUEUE_NAME")
    outbox_queue_name: str = Field(default="waypost:outbox", alias="OUTBOX_QUEUE_NAME")
    broker_reconnect_attempts: int = Field(default=5, alias="BROKER_RECONNECT_ATTEMPTS")
    broker_reconnect_backoff_seconds: float = Field(
        default=0.5,
        alias="BROKER_RECONNECT_BACKOFF_SECONDS",
    )

    # Background workers
    workers_enabled: bool = Field(default=True, alias="WORKERS_ENABLED")
    inbox_batch_size: int = Field(default=10, alias="INBOX_BATCH_SIZE")
    outbox_batch_size: int = Field(default=10, alias="OUTBOX_BATCH_SIZE")
    worker_poll_interval_seconds: float = Field(
        default=5.0,
        alias="WORKER_POLL_INTERVAL_SECONDS",
    )
    claim_timeout_seconds: int = Field(default=600, alias="CLAIM_TIMEOUT_SECONDS")
    # 0 keeps retrying failed outbox rows indefinitely
    outbox_max_attempts: int = Field(default=0, alias="OUTBOX_MAX_ATTEMPTS")

    # Federation policy
    auto_accept_follows: bool = Field(default=True, alias="AUTO_ACCEPT_FOLLOWS")
    signature_max_clock_skew_seconds: int = Field(
        default=43_200,
        alias="SIGNATURE_MAX_CLOCK_SKEW_SECONDS",
    )

    # Outbound HTTP
    http_timeout_seconds: float = Field(default=10.0, alias="HTTP_TIMEOUT_SECONDS")
    http_user_agent: str = Field(default="Waypost/0.1", alias="HTTP_USER_AGENT")

    # Remote actor cache
    actor_cache_ttl_seconds: int = Field(default=3_600, alias="ACTOR_CACHE_TTL_SECONDS")
    actor_cache_max_entries: int = Field(default=1_024, alias="ACTOR_CACHE_MAX_ENTRIES")

    # JWT authentication for the client API
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 30,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def base_url(self) -> str:
        """Return the public origin used to build actor and activity URIs."""
        return f"{self.url_scheme}://{self.domain}"

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()  # type: ignore[call-arg]
