"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import FrozenSet, Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Database (PostgreSQL in production, SQLite fallback otherwise)
    DATABASE_URL: Optional[str] = None
    SQLITE_PATH: str = "linkguard.db"
    SQL_DEBUG: bool = False

    # Application Settings
    LOG_LEVEL: str = "INFO"

    # IP geolocation (ipinfo.io)
    IPINFO_API_KEY: Optional[str] = None
    IPINFO_ENABLED: bool = True

    # Remote domain reputation service (optional)
    REPUTATION_API_URL: Optional[str] = None
    REPUTATION_API_KEY: Optional[str] = None
    REPUTATION_ENABLED: bool = False

    # Upper bound on any single collaborator call, in seconds
    COLLABORATOR_TIMEOUT: float = 3.0

    # Link generation
    GENERATION_BATCH_SIZE: int = 50
    GENERATION_BATCH_DELAY: float = 0.1
    LINK_BASE_URL: str = "http://localhost:8000/l"

    # Administrative routes (generation, manual review)
    ADMIN_API_KEY: Optional[str] = None

    # Comma-separated peer addresses of reverse proxies/CDNs whose
    # X-Forwarded-For and country headers are believed
    TRUSTED_PROXIES: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase

    @property
    def trusted_proxies(self) -> FrozenSet[str]:
        return frozenset(p.strip() for p in self.TRUSTED_PROXIES.split(",") if p.strip())


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
