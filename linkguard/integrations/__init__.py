"""
External API Integrations

Clients for third-party APIs consulted while gating and scoring:
- IPinfo: IP geolocation and anonymizer signals
- Reputation: optional remote email domain reputation
- Config: Unified configuration and client management
"""

from .base import ApiClientError, AsyncApiClient, RetryConfig
from .ipinfo import IpInfoClient, IpInfoError, parse_ipinfo
from .reputation import ReputationClient, ReputationError
from .config import ExternalAPIConfig, ExternalAPIClients, get_env_bool

__all__ = [
    # Base
    "ApiClientError",
    "AsyncApiClient",
    "RetryConfig",
    # IPinfo
    "IpInfoClient",
    "IpInfoError",
    "parse_ipinfo",
    # Reputation
    "ReputationClient",
    "ReputationError",
    # Config
    "ExternalAPIConfig",
    "ExternalAPIClients",
    "get_env_bool",
]
