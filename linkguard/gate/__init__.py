"""Geo/network gating for clicks and completions."""

from .geo import (
    ANONYMIZED_NETWORK,
    GEO_RESTRICTED,
    GEO_UNAVAILABLE,
    GateDecision,
    GeoGate,
    country_hint,
    is_private_ip,
)

__all__ = [
    "ANONYMIZED_NETWORK",
    "GEO_RESTRICTED",
    "GEO_UNAVAILABLE",
    "GateDecision",
    "GeoGate",
    "country_hint",
    "is_private_ip",
]
