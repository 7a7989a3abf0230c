"""
Centralized configuration using pydantic-settings.

How it works:
- Reads environment variables automatically (e.g., JOB_API_URL env var → Settings.JOB_API_URL)
- Falls back to defaults defined here if env vars are not set
- Can also read from a .env file in the project root

Components take their collaborators through constructors; this module only
supplies the defaults (RetryPolicy.from_settings(), ImageValidator(), ...).
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── PostgreSQL ──────────────────────────────────────────────
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "pixeljobs"
    POSTGRES_PASSWORD: str = "pixeljobs"
    POSTGRES_DB: str = "pixeljobs"

    # ── Redis ───────────────────────────────────────────────────
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # ── External AI job API ─────────────────────────────────────
    JOB_API_URL: str = "https://api.pikcel.ai"
    JOB_API_KEY: str = ""

    # ── Destination catalog (GraphQL admin API) ─────────────────
    CATALOG_GRAPHQL_URL: str = "https://example.myshopify.com/admin/api/2025-01/graphql.json"
    CATALOG_ACCESS_TOKEN: str = ""
    CATALOG_TOKEN_HEADER: str = "X-Shopify-Access-Token"

    # ── HTTP ────────────────────────────────────────────────────
    HTTP_TIMEOUT: float = 30.0

    # ── Retry (transient network failures only) ─────────────────
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 1.0      # seconds before the 2nd attempt
    RETRY_BACKOFF_FACTOR: float = 2.0  # 1s, 2s, 4s, ...

    # ── Image validation ────────────────────────────────────────
    MAX_IMAGE_BYTES: int = 20 * 1024 * 1024
    ALLOWED_IMAGE_TYPES: list[str] = ["image/jpeg", "image/png", "image/webp"]

    # ── Polling (owned by the caller, see worker/poller.py) ─────
    SYNC_INTERVAL_BULK: float = 5.0    # seconds between poller ticks
    POLL_BATCH_SIZE: int = 50

    # ── Delivery ────────────────────────────────────────────────
    DELIVERY_LOCK_TTL: int = 120       # seconds a delivery lock may be held
    DELIVERY_FAILURES_KEPT: int = 500  # newest failed deliveries kept per shop

    # ── App ─────────────────────────────────────────────────────
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        """Async connection string (asyncpg driver)."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton: import this everywhere
settings = Settings()
