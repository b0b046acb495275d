"""
Link Models

Survey links, their lifecycle states, quota pools, and the project/vendor
records links belong to.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional
import uuid

from ..errors import InvalidState
from .context import CompletionMetadata, NetworkContext
from .policy import ProjectPolicy
from .quality import ManualReview, QCResult, utcnow, _parse_dt


class LinkStatus(Enum):
    """Link lifecycle states."""
    UNUSED = "UNUSED"             # Generated, never opened
    CLICKED = "CLICKED"           # Opened, survey in progress
    COMPLETED = "COMPLETED"       # Counted against quota
    DISQUALIFIED = "DISQUALIFIED" # Gate denied or QC excluded
    QUOTA_FULL = "QUOTA_FULL"     # Pool was full, response retained


class LinkType(Enum):
    TEST = "TEST"
    LIVE = "LIVE"


TERMINAL_STATUSES: FrozenSet[LinkStatus] = frozenset({
    LinkStatus.COMPLETED,
    LinkStatus.DISQUALIFIED,
    LinkStatus.QUOTA_FULL,
})

# Every status write must be an edge in this table
ALLOWED_TRANSITIONS: Dict[LinkStatus, FrozenSet[LinkStatus]] = {
    LinkStatus.UNUSED: frozenset({
        LinkStatus.CLICKED,
        LinkStatus.DISQUALIFIED,
        LinkStatus.QUOTA_FULL,
    }),
    LinkStatus.CLICKED: frozenset({
        LinkStatus.COMPLETED,
        LinkStatus.DISQUALIFIED,
        LinkStatus.QUOTA_FULL,
    }),
    LinkStatus.COMPLETED: frozenset(),
    LinkStatus.DISQUALIFIED: frozenset(),
    LinkStatus.QUOTA_FULL: frozenset(),
}


def can_transition(current: LinkStatus, target: LinkStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: LinkStatus, target: LinkStatus):
    """Raise InvalidState unless current -> target is a permitted edge."""
    if not can_transition(current, target):
        raise InvalidState(
            f"Cannot move link from {current.value} to {target.value}",
            current_status=current.value,
        )


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Project:
    """A survey project links are generated for."""
    id: str
    name: str
    survey_url: str = ""
    settings: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def policy(self) -> ProjectPolicy:
        return ProjectPolicy.from_settings(self.settings)


@dataclass
class Vendor:
    """A panel vendor that distributes links to participants."""
    id: str
    name: str
    code: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QuotaCounter:
    """Completion pool for a (project, vendor) pair; vendor None is project-wide."""
    project_ref: str
    vendor_ref: Optional[str]
    limit: int
    current: int = 0

    @property
    def key(self) -> str:
        return quota_key(self.project_ref, self.vendor_ref)

    @property
    def is_full(self) -> bool:
        return self.current >= self.limit

    @property
    def remaining(self) -> int:
        return max(self.limit - self.current, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_ref": self.project_ref,
            "vendor_ref": self.vendor_ref,
            "limit": self.limit,
            "current": self.current,
            "remaining": self.remaining,
        }


def quota_key(project_ref: str, vendor_ref: Optional[str]) -> str:
    return f"{project_ref}:{vendor_ref or '*'}"


@dataclass
class SurveyLink:
    """A single-use participation link."""
    id: str
    project_ref: str
    resp_id: str
    token: str
    vendor_ref: Optional[str] = None
    status: LinkStatus = LinkStatus.UNUSED
    link_type: LinkType = LinkType.LIVE
    survey_url: str = ""
    batch_id: Optional[str] = None

    # Timing
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    clicked_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Gate / QC
    network_context: Optional[NetworkContext] = None
    gate_flags: List[str] = field(default_factory=list)
    disqualify_reason: Optional[str] = None
    completion_metadata: Optional[CompletionMetadata] = None
    qc_result: Optional[QCResult] = None
    manual_review: Optional[ManualReview] = None

    # Set once when the vendor assignment is corrected
    vendor_corrected_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def effective_disposition(self) -> Optional[str]:
        """Manual review wins over the engine's recommendation for reporting."""
        if self.manual_review is not None:
            return self.manual_review.disposition.value
        if self.qc_result is not None:
            return self.qc_result.recommendation.value
        return None

    def copy(self, **changes) -> "SurveyLink":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_ref": self.project_ref,
            "vendor_ref": self.vendor_ref,
            "resp_id": self.resp_id,
            "token": self.token,
            "status": self.status.value,
            "link_type": self.link_type.value,
            "survey_url": self.survey_url,
            "batch_id": self.batch_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "clicked_at": self.clicked_at.isoformat() if self.clicked_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "network_context": self.network_context.to_dict() if self.network_context else None,
            "gate_flags": list(self.gate_flags),
            "disqualify_reason": self.disqualify_reason,
            "completion_metadata": (
                self.completion_metadata.to_dict() if self.completion_metadata else None
            ),
            "qc_result": self.qc_result.to_dict() if self.qc_result else None,
            "manual_review": self.manual_review.to_dict() if self.manual_review else None,
            "vendor_corrected_at": (
                self.vendor_corrected_at.isoformat() if self.vendor_corrected_at else None
            ),
            "effective_disposition": self.effective_disposition,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SurveyLink":
        return cls(
            id=data["id"],
            project_ref=data["project_ref"],
            resp_id=data["resp_id"],
            token=data["token"],
            vendor_ref=data.get("vendor_ref"),
            status=LinkStatus(data.get("status", "UNUSED")),
            link_type=LinkType(data.get("link_type", "LIVE")),
            survey_url=data.get("survey_url", ""),
            batch_id=data.get("batch_id"),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            updated_at=_parse_dt(data.get("updated_at")) or utcnow(),
            clicked_at=_parse_dt(data.get("clicked_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            network_context=NetworkContext.from_dict(data.get("network_context")),
            gate_flags=list(data.get("gate_flags") or []),
            disqualify_reason=data.get("disqualify_reason"),
            completion_metadata=(
                CompletionMetadata.from_dict(data["completion_metadata"])
                if data.get("completion_metadata") else None
            ),
            qc_result=QCResult.from_dict(data["qc_result"]) if data.get("qc_result") else None,
            manual_review=(
                ManualReview.from_dict(data["manual_review"]) if data.get("manual_review") else None
            ),
            vendor_corrected_at=_parse_dt(data.get("vendor_corrected_at")),
        )
