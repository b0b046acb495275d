"""
Email Domain Reputation

Flags email answers whose domain is a throwaway inbox, an anonymizing mail
service, a known fraud source, or looks machine-generated. Remote verdicts
gathered before scoring are merged in; the strongest verdict per domain
decides the flag.
"""

import re
import logging
from typing import Dict, List, Optional

from ..models import DetectorResult, DomainVerdict
from .base import DetectionInput, Detector

logger = logging.getLogger(__name__)


TEMPORARY_EMAIL_DOMAINS = frozenset({
    "10minutemail.com", "guerrillamail.com", "mailinator.com", "yopmail.com",
    "tempmail.org", "maildrop.cc", "throwaway.email", "temp-mail.org",
    "fakeinbox.com", "sharklasers.com", "grr.la", "guerrillamailblock.com",
    "pokemail.net", "spam4.me", "tempail.com", "tempmailaddress.com",
    "emailondeck.com", "mohmal.com", "mytrashmail.com", "armyspy.com",
    "cuvox.de", "dayrep.com", "fleckens.hu", "gustr.com", "jourrapide.com",
    "superrito.com", "teleworm.us", "rhyta.com", "einrot.com",
})

VPN_EMAIL_DOMAINS = frozenset({
    "protonmail.com", "tutanota.com", "guerrillamail.org", "secure-mail.biz",
    "anonymousemail.me", "hidemail.de", "mytemp.email", "tmpnator.live",
    "getnada.com", "temp-mail.io", "temporary-mail.net",
})

KNOWN_FRAUD_DOMAINS = frozenset({
    "example-fraud.com", "fake-survey.net", "scam-emails.org",
})

# (pattern, confidence, reason)
SUSPICIOUS_DOMAIN_PATTERNS = [
    (re.compile(r"^[a-z]{1,3}\d+\.[a-z]{2,3}$"), 70, "short_prefix_with_digits"),
    (re.compile(r"^\d+[a-z]+\.[a-z]{2,3}$"), 65, "leading_digits"),
    (re.compile(r"^[a-z]+\d{3,}\.[a-z]{2,3}$"), 75, "long_digit_suffix"),
    (re.compile(r"^.{1,4}\.[a-z]{2}$"), 60, "very_short_domain"),
]


def extract_domain(email: str) -> Optional[str]:
    """Lowercased domain after the last @, or None."""
    if "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1].strip().lower().rstrip(".")
    return domain or None


def check_domain_locally(domain: str) -> Optional[DomainVerdict]:
    """Strongest local verdict for a domain, or None if nothing matches."""
    candidates: List[DomainVerdict] = []

    if domain in KNOWN_FRAUD_DOMAINS:
        candidates.append(DomainVerdict(domain, True, "known-fraud", "known_fraud_domain", 100))
    if domain in TEMPORARY_EMAIL_DOMAINS:
        candidates.append(DomainVerdict(domain, True, "temporary-email", "temporary_email_service", 95))
    if domain in VPN_EMAIL_DOMAINS:
        candidates.append(DomainVerdict(domain, True, "vpn-service", "anonymous_email_service", 85))
    for pattern, confidence, reason in SUSPICIOUS_DOMAIN_PATTERNS:
        if pattern.match(domain):
            candidates.append(DomainVerdict(domain, True, "suspicious-pattern", reason, confidence))

    if not candidates:
        return None
    return max(candidates, key=lambda v: v.confidence)


class DomainReputationDetector(Detector):
    """Checks email-bearing answers against domain blacklists."""

    name = "domain_reputation"

    def applies(self, inputs: DetectionInput) -> bool:
        return bool(inputs.payload.email_answers())

    def evaluate(self, inputs: DetectionInput) -> DetectorResult:
        domains: List[str] = []
        for email in inputs.payload.email_answers():
            domain = extract_domain(email)
            if domain and domain not in domains:
                domains.append(domain)

        if not domains:
            return DetectorResult.clean(self.name, domains=[])

        remote = inputs.reputation
        verdicts: Dict[str, DomainVerdict] = {}
        for domain in domains:
            candidates = []
            local = check_domain_locally(domain)
            if local:
                candidates.append(local)
            if remote and domain in remote.verdicts and remote.verdicts[domain].suspicious:
                candidates.append(remote.verdicts[domain])
            if candidates:
                verdicts[domain] = max(candidates, key=lambda v: v.confidence)

        unavailable = [d for d in domains if remote and d in remote.unavailable]

        if not verdicts:
            if unavailable:
                logger.warning(f"Domain reputation unavailable for {unavailable}, no local match")
                return DetectorResult.unavailable(self.name, "reputation_lookup_unavailable")
            return DetectorResult.clean(self.name, domains=domains)

        flags = tuple(
            f"BLACKLISTED_DOMAIN:{v.category}:{v.reason}" for v in verdicts.values()
        )
        return DetectorResult(
            detector_name=self.name,
            triggered=True,
            score=max(v.confidence for v in verdicts.values()),
            evidence={
                "domains": domains,
                "blacklisted": [v.to_dict() for v in verdicts.values()],
                "unavailable_domains": unavailable,
            },
            flags=flags,
        )
