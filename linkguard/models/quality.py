"""
Quality Check Models

Detector outputs, the aggregated QC verdict attached to a completed link,
and the manual review record that can supersede it for reporting.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class RiskLevel(Enum):
    """Risk tiers, ordered."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Recommendation(Enum):
    """What the engine suggests doing with a response."""
    APPROVE = "approve"
    FLAG_FOR_REVIEW = "flag_for_review"
    EXCLUDE = "exclude"


class DetectorStatus(Enum):
    OK = "ok"
    UNAVAILABLE = "unavailable"


class ReviewDisposition(Enum):
    """Human reviewer verdicts."""
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    UNDER_REVIEW = "UNDER_REVIEW"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class DetectorResult:
    """Output of a single detector."""
    detector_name: str
    triggered: bool
    score: float = 0.0
    evidence: Dict[str, Any] = field(default_factory=dict)
    status: DetectorStatus = DetectorStatus.OK
    flags: Tuple[str, ...] = ()

    @classmethod
    def clean(cls, name: str, **evidence) -> "DetectorResult":
        """Non-triggering result, e.g. for missing input."""
        return cls(detector_name=name, triggered=False, evidence=evidence)

    @classmethod
    def unavailable(cls, name: str, reason: str) -> "DetectorResult":
        return cls(
            detector_name=name,
            triggered=False,
            evidence={"reason": reason},
            status=DetectorStatus.UNAVAILABLE,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detector_name": self.detector_name,
            "triggered": self.triggered,
            "score": self.score,
            "evidence": self.evidence,
            "status": self.status.value,
            "flags": list(self.flags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectorResult":
        return cls(
            detector_name=data["detector_name"],
            triggered=bool(data["triggered"]),
            score=float(data.get("score", 0.0)),
            evidence=dict(data.get("evidence") or {}),
            status=DetectorStatus(data.get("status", "ok")),
            flags=tuple(data.get("flags") or ()),
        )


@dataclass(frozen=True)
class QCResult:
    """Aggregated quality verdict. Never modified after creation."""
    flags: Tuple[str, ...]
    score: float
    risk_level: RiskLevel
    recommendation: Recommendation
    detector_results: Tuple[DetectorResult, ...] = ()
    recommendations: Tuple[str, ...] = ()
    evaluated_at: datetime = field(default_factory=utcnow)

    def detector(self, name: str) -> Optional[DetectorResult]:
        for result in self.detector_results:
            if result.detector_name == name:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flags": list(self.flags),
            "score": self.score,
            "risk_level": self.risk_level.value,
            "recommendation": self.recommendation.value,
            "detector_results": [r.to_dict() for r in self.detector_results],
            "recommendations": list(self.recommendations),
            "evaluated_at": self.evaluated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QCResult":
        return cls(
            flags=tuple(data.get("flags") or ()),
            score=float(data["score"]),
            risk_level=RiskLevel(data["risk_level"]),
            recommendation=Recommendation(data["recommendation"]),
            detector_results=tuple(
                DetectorResult.from_dict(r) for r in data.get("detector_results") or ()
            ),
            recommendations=tuple(data.get("recommendations") or ()),
            evaluated_at=_parse_dt(data.get("evaluated_at")) or utcnow(),
        )


@dataclass(frozen=True)
class ManualReview:
    """Reviewer override stored next to, never inside, the QCResult."""
    disposition: ReviewDisposition
    reviewed_by: str
    reasoning: str = ""
    reviewed_at: datetime = field(default_factory=utcnow)
    previous_disposition: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "disposition": self.disposition.value,
            "reviewed_by": self.reviewed_by,
            "reasoning": self.reasoning,
            "reviewed_at": self.reviewed_at.isoformat(),
            "previous_disposition": self.previous_disposition,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManualReview":
        return cls(
            disposition=ReviewDisposition(data["disposition"]),
            reviewed_by=data["reviewed_by"],
            reasoning=data.get("reasoning", ""),
            reviewed_at=_parse_dt(data.get("reviewed_at")) or utcnow(),
            previous_disposition=data.get("previous_disposition"),
        )


@dataclass(frozen=True)
class DomainVerdict:
    """A reputation verdict for one email domain."""
    domain: str
    suspicious: bool
    category: str = "clean"
    reason: str = ""
    confidence: float = 0.0
    source: str = "local"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "suspicious": self.suspicious,
            "category": self.category,
            "reason": self.reason,
            "confidence": self.confidence,
            "source": self.source,
        }


@dataclass
class ReputationLookup:
    """Remote reputation verdicts gathered before scoring."""
    verdicts: Dict[str, DomainVerdict] = field(default_factory=dict)
    unavailable: Tuple[str, ...] = ()

    @property
    def available(self) -> bool:
        return not self.unavailable
