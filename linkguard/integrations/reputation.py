"""
Domain Reputation Client

Optional remote lookup for email domains not covered by the local lists.
Verdicts are cached in-process with a TTL and a bounded size.

Expected response body for GET {base_url}/domains/{domain}:
    {"suspicious": bool, "category": str, "reason": str, "confidence": number}
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from ..models import DomainVerdict, ReputationLookup
from .base import ApiClientError, AsyncApiClient, RetryConfig

logger = logging.getLogger(__name__)


class ReputationError(ApiClientError):
    """Custom exception for reputation service errors."""


@dataclass
class CacheEntry:
    """Cached verdict with expiry."""
    verdict: DomainVerdict
    expires_at: datetime
    hit_count: int = 0

    def is_expired(self) -> bool:
        return datetime.now() > self.expires_at


class ReputationClient(AsyncApiClient):
    """
    Async client for a domain reputation service.

    Usage:
        client = ReputationClient(base_url="https://rep.example", api_key="...")
        lookup = await client.check_domains(["mailinator.com"], timeout=3.0)
        await client.close()
    """

    service_name = "Reputation"
    error_class = ReputationError

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 3.0,
        cache_ttl_seconds: int = 3600,
        cache_size: int = 1024,
        **kwargs,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        super().__init__(
            base_url=base_url.rstrip("/"),
            headers=headers,
            retry_config=retry_config,
            timeout=timeout,
            **kwargs,
        )
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._stats = {"hits": 0, "misses": 0}

    # =========================================================================
    # Cache
    # =========================================================================

    def _cached(self, domain: str) -> Optional[DomainVerdict]:
        entry = self._cache.get(domain)
        if entry is None:
            self._stats["misses"] += 1
            return None
        if entry.is_expired():
            del self._cache[domain]
            self._stats["misses"] += 1
            return None
        entry.hit_count += 1
        self._cache.move_to_end(domain)
        self._stats["hits"] += 1
        return entry.verdict

    def _store(self, verdict: DomainVerdict):
        self._cache[verdict.domain] = CacheEntry(verdict, datetime.now() + self.cache_ttl)
        self._cache.move_to_end(verdict.domain)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    def get_stats(self) -> Dict[str, int]:
        return {**self._stats, "entries": len(self._cache)}

    # =========================================================================
    # Lookups
    # =========================================================================

    async def check_domain(self, domain: str) -> DomainVerdict:
        """Verdict for one domain, from cache when fresh."""
        domain = domain.lower()
        cached = self._cached(domain)
        if cached is not None:
            return cached

        data = await self._request_with_retry("GET", f"/domains/{domain}")
        verdict = DomainVerdict(
            domain=domain,
            suspicious=bool(data.get("suspicious")),
            category=data.get("category") or "reputation-service",
            reason=data.get("reason") or "remote_verdict",
            confidence=float(data.get("confidence") or 0),
            source="remote",
        )
        self._store(verdict)
        return verdict

    async def check_domains(self, domains: Iterable[str], timeout: float = 3.0) -> ReputationLookup:
        """
        Look up several domains concurrently.

        Failures and timeouts are reported in `unavailable`, never raised.
        """
        domains = list(dict.fromkeys(d.lower() for d in domains))
        if not domains:
            return ReputationLookup()

        tasks = [asyncio.wait_for(self.check_domain(d), timeout) for d in domains]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        verdicts: Dict[str, DomainVerdict] = {}
        unavailable: List[str] = []
        for domain, result in zip(domains, results):
            if isinstance(result, BaseException):
                logger.warning(f"Reputation lookup failed for {domain}: {result!r}")
                unavailable.append(domain)
            else:
                verdicts[domain] = result

        return ReputationLookup(verdicts=verdicts, unavailable=tuple(unavailable))
