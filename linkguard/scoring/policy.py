"""
Scoring Policy

Weights and thresholds the scoring engine uses. Every value can be replaced
per project through `ScoringPolicy.with_overrides()`.

Default composition:
    Score = min(100,
        30 × blacklisted_domains +
        honeypot_confidence × 0.5 +
        flatline_score +
        generated_text_confidence × 0.8 +
        min(behavioral_score, 50) +
        speed_weight[reason]
    )
"""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Tuple

from ..errors import ValidationError


@dataclass(frozen=True)
class ScoringPolicy:
    """Detector weights, tier thresholds, and recommendation thresholds."""

    # Contributions
    domain_weight_per_match: float = 30
    honeypot_multiplier: float = 0.5
    flatline_multiplier: float = 1.0
    generated_text_multiplier: float = 0.8
    behavioral_cap: float = 50
    speed_weights: Dict[str, float] = field(default_factory=lambda: {
        "EXTREMELY_FAST": 50,
        "TOO_FAST": 30,
        "TOO_SLOW": 10,
    })
    anonymized_network_weight: float = 0
    ip_changed_weight: float = 0

    # Risk tiers
    critical_score: float = 80
    high_score: float = 60
    medium_score: float = 30
    high_flag_count: int = 5
    medium_flag_count: int = 3
    critical_flag_prefixes: Tuple[str, ...] = (
        "AI_GENERATED:CRITICAL",
        "BLACKLISTED_DOMAIN",
        "SPEED_ISSUE:EXTREMELY_FAST",
    )

    # Recommendation
    exclude_score: float = 60
    review_score: float = 30
    review_flag_count: int = 3

    def with_overrides(self, overrides: Mapping[str, Any]) -> "ScoringPolicy":
        """Copy with selected values replaced; unknown keys are rejected."""
        if not overrides:
            return self

        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValidationError(f"Unknown scoring policy keys: {unknown}")

        changes: Dict[str, Any] = dict(overrides)
        if "speed_weights" in changes:
            if not isinstance(changes["speed_weights"], Mapping):
                raise ValidationError("Scoring policy speed_weights must be a mapping")
            changes["speed_weights"] = {**self.speed_weights, **changes["speed_weights"]}
        if "critical_flag_prefixes" in changes:
            if isinstance(changes["critical_flag_prefixes"], str):
                raise ValidationError("Scoring policy critical_flag_prefixes must be a list")
            changes["critical_flag_prefixes"] = tuple(changes["critical_flag_prefixes"])

        for name, value in changes.items():
            if name == "speed_weights":
                if not all(_is_number(v) for v in value.values()):
                    raise ValidationError("Scoring policy speed_weights must be numbers")
                if any(v < 0 for v in value.values()):
                    raise ValidationError("Scoring policy speed_weights must be non-negative")
            elif name == "critical_flag_prefixes":
                if not all(isinstance(p, str) for p in value):
                    raise ValidationError("Scoring policy critical_flag_prefixes must be strings")
            elif not _is_number(value):
                raise ValidationError(f"Scoring policy value {name} must be a number")
            elif value < 0:
                raise ValidationError(f"Scoring policy value {name} must be non-negative")

        return replace(self, **changes)

    def is_critical_flag(self, flag: str) -> bool:
        return any(flag.startswith(prefix) for prefix in self.critical_flag_prefixes)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


DEFAULT_POLICY = ScoringPolicy()
