"""
External API Configuration

Configuration and factory for the collaborator clients used while gating
and scoring. Loads credentials from settings or environment variables.

Optional environment variables:
- IPINFO_API_KEY: IPinfo token (free tier works without one, rate limited)
- IPINFO_ENABLED: Enable geolocation lookups (default: true)
- REPUTATION_API_URL / REPUTATION_API_KEY: Remote domain reputation service
- REPUTATION_ENABLED: Enable remote reputation lookups (default: false)
- COLLABORATOR_TIMEOUT: Per-call bound in seconds (default: 3.0)
"""

import os
import logging
from typing import Optional

from ..utils.config import Settings
from .ipinfo import IpInfoClient
from .reputation import ReputationClient

logger = logging.getLogger(__name__)


def get_env_bool(key: str, default: bool = True) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("false", "0", "no", "off"):
        return False
    if val in ("true", "1", "yes", "on"):
        return True
    return default


class ExternalAPIConfig:
    """Configuration for external APIs."""

    def __init__(
        self,
        ipinfo_api_key: Optional[str] = None,
        reputation_api_url: Optional[str] = None,
        reputation_api_key: Optional[str] = None,
        ipinfo_enabled: Optional[bool] = None,
        reputation_enabled: Optional[bool] = None,
        timeout: float = 3.0,
    ):
        """
        Initialize external API configuration.

        Args:
            ipinfo_api_key: IPinfo token (or from env)
            reputation_api_url: Reputation service base URL (or from env)
            reputation_api_key: Reputation service key (or from env)
            ipinfo_enabled: Whether geolocation lookups run (or from env, default on)
            reputation_enabled: Whether remote reputation lookups run (or from env, default off)
            timeout: Per-call timeout in seconds
        """
        self.ipinfo_api_key = ipinfo_api_key or os.environ.get("IPINFO_API_KEY")
        self.reputation_api_url = reputation_api_url or os.environ.get("REPUTATION_API_URL")
        self.reputation_api_key = reputation_api_key or os.environ.get("REPUTATION_API_KEY")
        if ipinfo_enabled is None:
            ipinfo_enabled = get_env_bool("IPINFO_ENABLED", True)
        if reputation_enabled is None:
            reputation_enabled = get_env_bool("REPUTATION_ENABLED", False)
        self.ipinfo_enabled = ipinfo_enabled
        self.reputation_enabled = reputation_enabled
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExternalAPIConfig":
        return cls(
            ipinfo_api_key=settings.IPINFO_API_KEY,
            reputation_api_url=settings.REPUTATION_API_URL,
            reputation_api_key=settings.REPUTATION_API_KEY,
            ipinfo_enabled=settings.IPINFO_ENABLED,
            reputation_enabled=settings.REPUTATION_ENABLED,
            timeout=settings.COLLABORATOR_TIMEOUT,
        )

    @property
    def has_ipinfo(self) -> bool:
        """Check if geolocation lookups are enabled."""
        return self.ipinfo_enabled

    @property
    def has_reputation(self) -> bool:
        """Check if the reputation service is configured and enabled."""
        return self.reputation_enabled and bool(self.reputation_api_url)

    def log_status(self):
        """Log configuration status."""
        logger.info(
            f"External API status: "
            f"IPinfo={'enabled' if self.has_ipinfo else 'disabled'}"
            f"{' (no token)' if self.has_ipinfo and not self.ipinfo_api_key else ''}, "
            f"Reputation={'enabled' if self.has_reputation else 'disabled'}"
        )


class ExternalAPIClients:
    """
    Factory and manager for external API clients.

    Usage:
        config = ExternalAPIConfig()
        clients = ExternalAPIClients(config)

        if clients.ipinfo:
            context = await clients.ipinfo.lookup("8.8.8.8")

        await clients.close()
    """

    def __init__(self, config: Optional[ExternalAPIConfig] = None):
        self.config = config or ExternalAPIConfig()
        self._ipinfo: Optional[IpInfoClient] = None
        self._reputation: Optional[ReputationClient] = None

    @property
    def ipinfo(self) -> Optional[IpInfoClient]:
        """Get or create IPinfo client."""
        if not self.config.has_ipinfo:
            return None

        if self._ipinfo is None:
            self._ipinfo = IpInfoClient(
                token=self.config.ipinfo_api_key,
                timeout=self.config.timeout,
            )
            logger.info("Initialized IPinfo client")

        return self._ipinfo

    @property
    def reputation(self) -> Optional[ReputationClient]:
        """Get or create reputation client."""
        if not self.config.has_reputation:
            return None

        if self._reputation is None:
            self._reputation = ReputationClient(
                base_url=self.config.reputation_api_url,
                api_key=self.config.reputation_api_key,
                timeout=self.config.timeout,
            )
            logger.info("Initialized reputation client")

        return self._reputation

    async def close(self):
        """Close all clients."""
        if self._ipinfo:
            await self._ipinfo.close()
            self._ipinfo = None

        if self._reputation:
            await self._reputation.close()
            self._reputation = None

        logger.info("Closed external API clients")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
