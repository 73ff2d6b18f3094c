"""
Client configuration.

Loads client-specific environment variables only.
Safely ignores unrelated service environment variables.
"""

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Client settings.

    Environment variables must be prefixed with:
        LINK_AI_CLIENT_

    Example:
        LINK_AI_CLIENT_API_BASE_URL=http://localhost:8000
    """

    API_BASE_URL: str = Field(
        default="http://localhost:8000",
        description="Base URL of the AI service",
        min_length=1,
    )
    REQUEST_TIMEOUT: float = 30.0

    # extra='ignore' skips the service's own variables in a shared .env
    model_config = ConfigDict(
        env_file=".env",
        env_prefix="LINK_AI_CLIENT_",
        extra="ignore",
    )


settings = Settings()
