"""
Project Policy

Per-project gating and scoring policy parsed from the project's settings
JSON. Scoring overrides are checked against ScoringPolicy on parse and
applied by the scoring layer.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..errors import ValidationError


class AnonymizedNetworkMode(Enum):
    """What to do with VPN/proxy/Tor/relay/hosting traffic."""
    WARN = "warn"
    BLOCK = "block"


@dataclass(frozen=True)
class GatePolicy:
    """Allow/deny rules the geo gate enforces."""
    allowed_countries: Tuple[str, ...] = ()
    anonymized_network_mode: AnonymizedNetworkMode = AnonymizedNetworkMode.WARN

    @property
    def is_geo_restricted(self) -> bool:
        return bool(self.allowed_countries)


@dataclass(frozen=True)
class HoneypotField:
    """A decoy form field a human never sees."""
    field_id: str
    field_type: str = "text"
    default: Any = None
    trigger_flags: Tuple[str, ...] = ()

    def is_tripped(self, value: Any) -> bool:
        """Non-empty, checked, or changed from its default."""
        if value is None:
            return False
        if self.field_type == "checkbox":
            return bool(value) and value != self.default
        if isinstance(value, str):
            return value.strip() != "" and value != self.default
        return value != self.default


# Decoy fields rendered into every survey form unless a project overrides them
DEFAULT_HONEYPOT_FIELDS: Tuple[HoneypotField, ...] = (
    HoneypotField("hp_email_confirm", "text", "", ("BOT_FILLED_HONEYPOT", "EMAIL_CONFIRMATION_FILLED")),
    HoneypotField("hp_website", "text", "", ("BOT_FILLED_WEBSITE", "SPAM_PATTERN")),
    HoneypotField("hp_phone_verify", "text", "", ("BOT_FILLED_PHONE", "FAKE_VERIFICATION")),
    HoneypotField("hp_checkbox_invisible", "checkbox", False, ("BOT_CHECKED_HONEYPOT", "AUTOMATED_INTERACTION")),
    HoneypotField("hp_select_hidden", "select", "", ("BOT_SELECTED_OPTION", "AUTOMATED_FORM_FILL")),
    HoneypotField("hp_timestamp_check", "hidden", "", ("TIMING_ANOMALY", "TOO_FAST_SUBMISSION")),
    HoneypotField("hp_math_question", "text", "", ("BOT_ANSWERED_MATH", "FAILED_HUMAN_TEST")),
)

_DEFAULT_FIELDS_BY_ID = {f.field_id: f for f in DEFAULT_HONEYPOT_FIELDS}


def _parse_honeypot_fields(raw: Any) -> Tuple[HoneypotField, ...]:
    if raw is None:
        return DEFAULT_HONEYPOT_FIELDS

    fields: List[HoneypotField] = []
    for item in raw:
        if isinstance(item, str):
            if item in _DEFAULT_FIELDS_BY_ID:
                fields.append(_DEFAULT_FIELDS_BY_ID[item])
            else:
                fields.append(HoneypotField(item, "text", "", ("BOT_FILLED_HONEYPOT",)))
        elif isinstance(item, Mapping) and item.get("field_id"):
            fields.append(HoneypotField(
                field_id=str(item["field_id"]),
                field_type=item.get("field_type", "text"),
                default=item.get("default", ""),
                trigger_flags=tuple(item.get("trigger_flags") or ("BOT_FILLED_HONEYPOT",)),
            ))
        else:
            raise ValidationError(f"Invalid honeypot field definition: {item!r}")
    return tuple(fields)


@dataclass(frozen=True)
class ProjectPolicy:
    """Everything a project can configure about gating and scoring."""
    gate: GatePolicy = field(default_factory=GatePolicy)
    check_quota_on_click: bool = True
    honeypot_fields: Tuple[HoneypotField, ...] = DEFAULT_HONEYPOT_FIELDS
    scoring_overrides: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Optional[Mapping[str, Any]]) -> "ProjectPolicy":
        settings = settings or {}

        countries = settings.get("allowed_countries") or ()
        if isinstance(countries, str):
            countries = [c for c in countries.split(",") if c.strip()]

        mode = settings.get("anonymized_network_mode", AnonymizedNetworkMode.WARN.value)
        try:
            mode = AnonymizedNetworkMode(mode)
        except ValueError:
            raise ValidationError(f"Unknown anonymized_network_mode: {mode!r}")

        scoring = settings.get("scoring") or {}
        if not isinstance(scoring, Mapping):
            raise ValidationError(f"Scoring overrides must be a mapping, got {scoring!r}")
        from ..scoring.policy import ScoringPolicy
        # Unknown keys and bad values fail here, not at completion time
        ScoringPolicy().with_overrides(scoring)

        return cls(
            gate=GatePolicy(
                allowed_countries=tuple(c.strip().upper() for c in countries),
                anonymized_network_mode=mode,
            ),
            check_quota_on_click=bool(settings.get("check_quota_on_click", True)),
            honeypot_fields=_parse_honeypot_fields(settings.get("honeypot_fields")),
            scoring_overrides=dict(scoring),
        )
