"""
Application configuration.

Centralized environment-based settings using Pydantic v2.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # --------------------
    # Environment
    # --------------------
    ENV: str = "dev"
    SERVICE_NAME: str = "ai-svc"
    VERSION: str = "1.0.0"

    # --------------------
    # CORS
    # --------------------
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Allowed CORS origins for the web client",
    )

    # --------------------
    # Auth / Security
    # --------------------
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 24 * 60
    ALLOW_USER_ID_HEADER: bool = Field(
        default=False,
        description="Accept X-User-ID as identity on consent routes (dev only)",
    )

    # --------------------
    # Database
    # --------------------
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "ai_db"
    MONGO_TLS: bool = False

    # --------------------
    # Summary cache
    # --------------------
    CACHE_BACKEND: str = "memory"
    REDIS_URL: str = "redis://localhost:6379/1"
    SUMMARY_TTL_SECONDS: int = 3600
    CACHE_CLEANUP_SECONDS: float = 300

    # --------------------
    # LLM
    # --------------------
    AI_PROVIDER: str = "gemini"
    AI_MODEL: str = "models/gemini-flash-latest"
    GEMINI_API_KEY: Optional[str] = None
    AI_MAX_TOKENS: int = 800
    AI_TEMPERATURE: float = 0.2
    AI_MAX_RETRIES: int = 3

    # --------------------
    # Chat service
    # --------------------
    CHAT_SERVICE_URL: str = "http://localhost:8080"
    CHAT_SERVICE_TIMEOUT: float = 10.0
    CHAT_SERVICE_MAX_RETRIES: int = 3
    CHAT_SERVICE_RETRY_DELAY: float = 0.1
    CHAT_SERVICE_RETRY_BACKOFF: float = 2.0

    # --------------------
    # Rate limiting
    # --------------------
    RATE_LIMIT_AI_REQUESTS_PER_MINUTE: int = 5
    RATE_LIMIT_AI_BURST: int = 5
    RATE_LIMIT_IDLE_TTL_SECONDS: int = 300
    RATE_LIMIT_SWEEP_SECONDS: int = 300
    GLOBAL_RATE_LIMIT: str = "100/minute"
    GLOBAL_RATE_LIMIT_ENABLED: bool = True

    # --------------------
    # Health checks
    # --------------------
    HEALTH_CHECK_TIMEOUT_SECONDS: float = 5.0

    # --------------------
    # Observability
    # --------------------
    LOG_LEVEL: str = "INFO"
    SENTRY_DSN: Optional[str] = None
    MLFLOW_TRACKING_URI: Optional[str] = None

    model_config = ConfigDict(
        env_file=".env",
        env_prefix="LINK_AI_",
        extra="forbid",
    )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
