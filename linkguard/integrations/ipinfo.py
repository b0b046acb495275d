"""
IPinfo API Client

IP geolocation and privacy (VPN/proxy/Tor/relay/hosting) lookups.

API: https://ipinfo.io
Privacy fields require a paid token; without them, hosting is inferred
from the organization name.
"""

import logging
from typing import Any, Dict, Optional

from ..models import NetworkContext
from .base import ApiClientError, AsyncApiClient, RetryConfig

logger = logging.getLogger(__name__)

HOSTING_KEYWORDS = (
    "hosting", "server", "cloud", "datacenter", "data center",
    "virtual", "vps", "dedicated", "colocation",
    "amazon", "google", "microsoft", "digital ocean", "digitalocean",
    "ovh", "hetzner", "linode", "vultr", "scaleway",
)


class IpInfoError(ApiClientError):
    """Custom exception for IPinfo API errors."""


class IpInfoClient(AsyncApiClient):
    """
    Async client for the IPinfo API.

    Usage:
        client = IpInfoClient(token="your_token")
        context = await client.lookup("8.8.8.8")
        # context.country == "US"
        await client.close()
    """

    BASE_URL = "https://ipinfo.io"
    service_name = "IPinfo"
    error_class = IpInfoError

    def __init__(
        self,
        token: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 3.0,
        **kwargs,
    ):
        super().__init__(
            base_url=self.BASE_URL,
            headers={"Accept": "application/json"},
            retry_config=retry_config,
            timeout=timeout,
            **kwargs,
        )
        self.token = token

    async def lookup_raw(self, ip: str) -> Dict[str, Any]:
        params = {"token": self.token} if self.token else None
        return await self._request_with_retry("GET", f"/{ip}", params=params)

    async def lookup(self, ip: str) -> NetworkContext:
        """Resolve an IP to a NetworkContext."""
        data = await self.lookup_raw(ip)
        if data.get("bogon"):
            return NetworkContext(ip=ip, geo_available=False, source="ipinfo")
        return parse_ipinfo(ip, data)


def parse_ipinfo(ip: str, data: Dict[str, Any]) -> NetworkContext:
    """Map an IPinfo response body onto a NetworkContext."""
    org = data.get("org") or ""
    asn = data.get("asn")
    if isinstance(asn, dict):
        asn = asn.get("asn")
    if not asn and org.startswith("AS"):
        asn = org.split(" ", 1)[0]

    privacy = data.get("privacy") or {}
    if privacy:
        is_hosting = bool(privacy.get("hosting"))
    else:
        lowered = org.lower()
        is_hosting = any(keyword in lowered for keyword in HOSTING_KEYWORDS)

    country = data.get("country")
    return NetworkContext(
        ip=ip,
        country=country.upper() if country else None,
        region=data.get("region"),
        city=data.get("city"),
        org=org or None,
        asn=str(asn) if asn else None,
        is_vpn=bool(privacy.get("vpn")),
        is_proxy=bool(privacy.get("proxy")),
        is_tor=bool(privacy.get("tor")),
        is_relay=bool(privacy.get("relay")),
        is_hosting=is_hosting,
        geo_available=bool(country),
        source="ipinfo",
    )
