"""
Geo/Network Gate

Resolves a participant's network context and decides whether a click or a
completion may proceed under the project's policy.

Decision order:
1. Geolocation unavailable -> allow, flag `geo_unavailable`
2. Country outside a non-empty allow-list -> deny `geo_restricted`
3. Anonymized network (VPN/proxy/Tor/relay/hosting):
   warn mode -> allow, flag `anonymized_network`
   block mode -> deny `anonymized_network`
"""

import asyncio
import ipaddress
import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

import httpx

from ..errors import CollaboratorUnavailable
from ..integrations import ApiClientError, IpInfoClient
from ..models import AnonymizedNetworkMode, GatePolicy, NetworkContext

logger = logging.getLogger(__name__)

GEO_RESTRICTED = "geo_restricted"
ANONYMIZED_NETWORK = "anonymized_network"
GEO_UNAVAILABLE = "geo_unavailable"

# Header hints set by CDNs/proxies in front of the app; first match wins
COUNTRY_HINT_HEADERS = ("cf-ipcountry", "x-country-code")


@dataclass
class GateDecision:
    """Outcome of a gate evaluation."""
    allow: bool
    reason: Optional[str] = None
    flags: List[str] = field(default_factory=list)

    def to_dict(self):
        return {"allow": self.allow, "reason": self.reason, "flags": list(self.flags)}


def is_private_ip(ip: Optional[str]) -> bool:
    if not ip:
        return True
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return True
    return address.is_private or address.is_loopback or address.is_link_local or address.is_reserved


def country_hint(headers: Optional[Mapping[str, str]]) -> Optional[str]:
    """Country code from CDN headers, ignoring placeholders like XX/T1."""
    if not headers:
        return None
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in COUNTRY_HINT_HEADERS:
        value = (lowered.get(name) or "").strip().upper()
        if len(value) == 2 and value.isalpha() and value != "XX":
            return value
    return None


class GeoGate:
    """
    Enforces per-project geography and anonymizer policy.

    Usage:
        gate = GeoGate(ipinfo_client, timeout=3.0)
        context = await gate.resolve("203.0.113.9", request.headers)
        decision = gate.evaluate(context, project.policy.gate)
    """

    def __init__(self, ipinfo: Optional[IpInfoClient] = None, timeout: float = 3.0):
        self.ipinfo = ipinfo
        self.timeout = timeout

    async def resolve(
        self,
        ip: Optional[str],
        headers: Optional[Mapping[str, str]] = None,
    ) -> NetworkContext:
        """
        Build a NetworkContext for an IP. Never raises.

        Header hints override the looked-up country. Private, loopback and
        unparseable addresses skip the lookup.
        """
        hint = country_hint(headers)

        if is_private_ip(ip) or self.ipinfo is None:
            return NetworkContext(
                ip=ip,
                country=hint,
                geo_available=hint is not None,
                source="header" if hint else "none",
            )

        try:
            context = await self.lookup(ip)
        except CollaboratorUnavailable as e:
            logger.warning(f"Geolocation unavailable for {ip}: {e.reason}")
            return NetworkContext(
                ip=ip,
                country=hint,
                geo_available=hint is not None,
                source="header" if hint else "none",
            )

        if hint:
            context.country = hint
            context.geo_available = True
        return context

    async def lookup(self, ip: str) -> NetworkContext:
        """Time-bounded IP lookup. Raises CollaboratorUnavailable."""
        if self.ipinfo is None:
            raise CollaboratorUnavailable("geolocation", "no IP info client configured")
        try:
            return await asyncio.wait_for(self.ipinfo.lookup(ip), self.timeout)
        except asyncio.TimeoutError:
            raise CollaboratorUnavailable("geolocation", f"no answer within {self.timeout}s")
        except (ApiClientError, httpx.HTTPError, ValueError) as e:
            raise CollaboratorUnavailable("geolocation", repr(e)) from e

    def evaluate(self, network_context: Optional[NetworkContext], policy: GatePolicy) -> GateDecision:
        """Apply the project's policy to a resolved context. Pure."""
        flags: List[str] = []
        context = network_context or NetworkContext(geo_available=False)

        if not context.geo_available or not context.country:
            flags.append(GEO_UNAVAILABLE)
        elif policy.is_geo_restricted and context.country.upper() not in policy.allowed_countries:
            logger.info(f"Gate denied: country {context.country} not in {policy.allowed_countries}")
            return GateDecision(allow=False, reason=GEO_RESTRICTED, flags=flags)

        if context.is_anonymized:
            if policy.anonymized_network_mode == AnonymizedNetworkMode.BLOCK:
                logger.info(f"Gate denied: anonymized network {context.anonymization_kinds}")
                return GateDecision(allow=False, reason=ANONYMIZED_NETWORK, flags=flags)
            flags.append(ANONYMIZED_NETWORK)

        return GateDecision(allow=True, flags=flags)
