"""Application configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed settings exposed via dependency injection throughout the app."""

    # Read .env with BOM tolerance; case-sensitive keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=True,
    )

    APP_NAME: str = "Contacts Audience API"
    ENV: str = "dev"  # dev | staging | prod
    DEBUG: bool = False

    # JWT (tokens are issued by the dashboard's auth service)
    SECRET_KEY: str  # set via env/.env
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_ISSUER: str = "campaign-dashboard"
    JWT_AUDIENCE: str = "contacts-audience"
    ADMIN_ROLE: str = "admin"

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = Field(default_factory=list)

    # DB
    DB_HOST: str = "127.0.0.1"
    DB_PORT: int = 3306
    DB_USER: str = "appadmin"
    DB_PASSWORD: str = ""  # set via env/.env
    DB_NAME: str = "contacts"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ISOLATION_LEVEL: str = "READ COMMITTED"
    DB_RETRY_ATTEMPTS: int = 4
    DB_RETRY_BASE_DELAY: float = 0.05
    DB_RETRY_JITTER: float = 0.025
    INNODB_LOCK_WAIT_TIMEOUT_SEC: int = 10
    SELECT_MAX_EXECUTION_TIME_MS: int = 5000
    DB_NOWAIT_LOCKS: bool = False
    IDEMPOTENCY_TTL_MINUTES: int = 5
    MAX_BODY_BYTES: int = 2 * 1024 * 1024

    # Predicate evaluator (the contact store's query engine)
    EVALUATOR_BASE_URL: str | None = Field(default=None, description="Evaluator API base URL")
    EVALUATOR_API_KEY: str | None = Field(default=None, description="Evaluator API key")
    EVALUATOR_TIMEOUT_SEC: float = 15.0

    # Paging
    SEGMENT_PAGE_SIZE: int = 20
    DUPLICATE_PAGE_SIZE: int = 10
    FIELD_VALUE_PAGE_SIZE: int = 50

    # Typeahead for filter values. See audience.core.rate_limit.limiter for syntax.
    FIELD_VALUE_SEARCH_RATE: str = "20/second"
    VALUE_SEARCH_DEBOUNCE_SEC: float = 0.3

    @property
    def DATABASE_URL(self) -> str:
        return (
            f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4"
        )


settings = Settings()
