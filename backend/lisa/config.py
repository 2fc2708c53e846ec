"""
Configuration settings for the Lisa chat backend.
Uses pydantic-settings for environment variable support.
"""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional
import secrets
import os


def get_or_create_secret_key():
    """Get secret key from file or generate a new one."""
    secret_file = ".secret_key"
    if os.path.exists(secret_file):
        try:
            with open(secret_file, "r") as f:
                return f.read().strip()
        except OSError:
            pass

    key = secrets.token_urlsafe(32)
    try:
        with open(secret_file, "w") as f:
            f.write(key)
    except OSError:
        pass  # read-only fs, the key just won't survive a restart

    return key


class Settings(BaseSettings):
    """Application configuration settings."""

    # Application
    APP_NAME: str = "Lisa Chat"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Database
    # resolved relative to this file (backend/lisa/config.py -> backend/lisa.db)
    _BASE_DIR: str = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    DATABASE_URL: str = f"sqlite+aiosqlite:///{os.path.join(_BASE_DIR, 'lisa.db')}"

    # JWT verification (tokens are issued by the auth service)
    SECRET_KEY: str = Field(default_factory=get_or_create_secret_key)
    ALGORITHM: str = "HS256"

    # OpenAI Assistants
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None
    ASSISTANT_ID: str = ""
    OPENAI_TIMEOUT: float = 45.0  # seconds, whole exchange
    RUN_POLL_INTERVAL: float = 1.0
    RUN_MAX_ATTEMPTS: int = 30

    # Persistence of chat exchanges
    PERSIST_WAIT_SECONDS: float = 2.0
    PERSIST_RETRY_ATTEMPTS: int = 3
    PERSIST_RETRY_DELAY: float = 0.5

    # Illustrations
    BACKEND_URL: str = "http://localhost:3001"
    ILLUSTRATION_METADATA_PATH: str = os.path.join(_BASE_DIR, "metadata.json")

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3001

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
