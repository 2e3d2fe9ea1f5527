"""
Configuration settings for NodeFlow.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "NodeFlow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Command nodes
    COMMAND_TIMEOUT: float = 300.0  # Seconds
    COMMAND_CWD: Optional[str] = None  # Defaults to the server's cwd

    # Generate nodes
    GENERATION_MODEL: str = "gpt-4o-mini"
    GENERATION_TEMPERATURE: float = 0.7
    GENERATION_MAX_TOKENS: int = 2048
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None

    # Saved workflows
    WORKFLOW_DIR: str = ".workflows"

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
