"""
Survey Link Guard - Data Models

Shared data models used across the system.
"""

from .context import (
    BehavioralTelemetry,
    CompletionMetadata,
    NetworkContext,
    ResponseAnswer,
    ResponsePayload,
)
from .links import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    LinkStatus,
    LinkType,
    Project,
    QuotaCounter,
    SurveyLink,
    Vendor,
    can_transition,
    ensure_transition,
    new_id,
    quota_key,
)
from .policy import (
    DEFAULT_HONEYPOT_FIELDS,
    AnonymizedNetworkMode,
    GatePolicy,
    HoneypotField,
    ProjectPolicy,
)
from .quality import (
    DetectorResult,
    DomainVerdict,
    ReputationLookup,
    DetectorStatus,
    ManualReview,
    QCResult,
    Recommendation,
    ReviewDisposition,
    RiskLevel,
    utcnow,
)

__all__ = [
    # Context
    "BehavioralTelemetry",
    "CompletionMetadata",
    "NetworkContext",
    "ResponseAnswer",
    "ResponsePayload",
    # Links
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "LinkStatus",
    "LinkType",
    "Project",
    "QuotaCounter",
    "SurveyLink",
    "Vendor",
    "can_transition",
    "ensure_transition",
    "new_id",
    "quota_key",
    # Policy
    "DEFAULT_HONEYPOT_FIELDS",
    "AnonymizedNetworkMode",
    "GatePolicy",
    "HoneypotField",
    "ProjectPolicy",
    # Quality
    "DetectorResult",
    "DomainVerdict",
    "ReputationLookup",
    "DetectorStatus",
    "ManualReview",
    "QCResult",
    "Recommendation",
    "ReviewDisposition",
    "RiskLevel",
    "utcnow",
]
