"""Application settings and lazy settings loader."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration.

    Note: docker-compose passes env vars into containers; we validate presence here.
    """

    # Load `.env` if present; always allow `env.example` for local defaults.
    model_config = SettingsConfigDict(
        env_file=(".env", "env.example"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    MONGODB_URL: str
    MONGODB_DATABASE: str = "quiz_tasks"
    # Multi-document transactions need a replica set; turn off for a standalone mongod.
    MONGODB_TRANSACTIONS: bool = True
    REDIS_URL: str
    LOG_LEVEL: str = "INFO"

    # AI providers (a missing key means "not configured")
    ANTHROPIC_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    GOOGLE_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-20241022"
    OPENAI_MODEL: str = "gpt-4o-mini"
    GEMINI_MODEL: str = "gemini-2.5-flash"
    PROVIDER_STATUS_TTL_S: float = 60.0

    # Queue dispatch / worker delivery
    WORKER_BASE_URL: str = "http://localhost:8000"
    DISPATCH_DELAY_S: int = 2
    QUEUE_MAX_DISPATCHES_PER_SECOND: int = 5
    QUEUE_MAX_RETRY_DURATION_S: int = 3600
    DELIVERY_TIMEOUT_S: float = 1800.0

    # Service identity used to authenticate queue -> worker callbacks
    TASK_SIGNING_SECRET: str | None = None
    SERVICE_PRINCIPAL: str = "task-dispatcher@quiz-tasks"
    WORKER_AUDIENCE: str = "quiz-task-workers"
    SERVICE_TOKEN_TTL_S: int = 300

    # Bulk writes
    BATCH_WRITE_THRESHOLD: int = 400
    BATCH_WRITE_CAP: int = 500

    # Dead-task reaping (minutes)
    PROCESSING_TIMEOUT_MIN: int = 30
    BATCH_VALIDATION_TIMEOUT_MIN: int = 180
    QUEUED_TIMEOUT_MIN: int = 30

    # Periodic question import, triggered by an external scheduler (every 6 hours)
    IMPORT_TOTAL_QUESTIONS: int = 20
    IMPORT_BATCH_SIZE: int = 5

    # API security
    API_KEY: str | None = None
    API_KEY_HEADER: str = "X-API-Key"

    # Rate limiting - disabled by default for local/dev/test convenience
    RATE_LIMIT_ENABLED: bool = False
    RATE_LIMIT_REQUESTS_PER_MIN: int = 60
    RATE_LIMIT_BURST: int = 60


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance (lazy-loaded)."""
    # Lazy-load to avoid import-time crashes in tooling/tests when env isn't set yet.
    return Settings()
