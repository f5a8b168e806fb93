"""
Client configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from pathlib import Path


class Settings(BaseSettings):
    """Client settings loaded from environment."""
    
    # App metadata
    APP_NAME: str = "Marketplace Chat Client"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    
    # Backend API
    API_BASE_URL: str = "http://127.0.0.1:8000"
    API_TIMEOUT: float = 15.0  # seconds, read timeout
    API_CONNECT_TIMEOUT: float = 5.0
    API_MAX_RETRIES: int = 3  # GET requests only
    API_RETRY_DELAY: float = 0.5  # seconds, base for exponential backoff
    
    # Auth
    TOKEN_REFRESH_PATH: str = "/api/token/refresh/"
    
    # Conversation sync
    POLL_INTERVAL_SECONDS: float = 5.0
    SYNC_DETECT_STATUS_CHANGES: bool = True  # also ingest when only offer statuses moved
    
    # Offers
    OFFER_CURRENCY_SYMBOL: str = "₹"
    
    @field_validator("POLL_INTERVAL_SECONDS")
    @classmethod
    def validate_poll_interval(cls, v: float) -> float:
        """Polling interval must be positive."""
        if v <= 0:
            raise ValueError("POLL_INTERVAL_SECONDS must be > 0")
        return v
    
    @field_validator("API_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Endpoint paths carry the leading slash."""
        return v.rstrip("/")
    
    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/marketchat.log"
    
    class Config:
        env_file = [
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Singleton instance
settings = Settings()
