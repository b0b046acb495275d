"""
Detector Framework

Every detector is a stateless evaluator producing a DetectorResult. The
run() wrapper converts internal failures into an "unavailable",
non-triggering result so one broken signal never sinks a completion.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from ..models import (
    DEFAULT_HONEYPOT_FIELDS,
    CompletionMetadata,
    DetectorResult,
    HoneypotField,
    NetworkContext,
    ReputationLookup,
    ResponsePayload,
)

logger = logging.getLogger(__name__)


@dataclass
class DetectionInput:
    """Everything a detector may look at for one completion."""
    payload: ResponsePayload
    metadata: CompletionMetadata = field(default_factory=CompletionMetadata)
    network_context: Optional[NetworkContext] = None
    honeypot_fields: Tuple[HoneypotField, ...] = DEFAULT_HONEYPOT_FIELDS
    honeypot_answers: Dict[str, Any] = field(default_factory=dict)
    reputation: Optional[ReputationLookup] = None

    @classmethod
    def build(
        cls,
        payload: ResponsePayload,
        metadata: Optional[CompletionMetadata] = None,
        network_context: Optional[NetworkContext] = None,
        honeypot_fields: Tuple[HoneypotField, ...] = DEFAULT_HONEYPOT_FIELDS,
        reputation: Optional[ReputationLookup] = None,
    ) -> "DetectionInput":
        """Split decoy-field answers out of the payload."""
        decoy_ids = {f.field_id for f in honeypot_fields}
        answers = payload.values_by_id()
        return cls(
            payload=payload.without(decoy_ids),
            metadata=metadata or CompletionMetadata(),
            network_context=network_context,
            honeypot_fields=honeypot_fields,
            honeypot_answers={k: v for k, v in answers.items() if k in decoy_ids},
            reputation=reputation,
        )


class Detector(ABC):
    """Base class for fraud/quality detectors."""

    name: str = "detector"

    def applies(self, inputs: DetectionInput) -> bool:
        """Whether this detector has anything to look at."""
        return True

    @abstractmethod
    def evaluate(self, inputs: DetectionInput) -> DetectorResult:
        """Evaluate the inputs. May raise; use run() from callers."""

    def run(self, inputs: DetectionInput) -> DetectorResult:
        try:
            return self.evaluate(inputs)
        except Exception as e:
            logger.warning(f"Detector {self.name} failed: {e}")
            return DetectorResult.unavailable(self.name, f"Check error: {str(e)}")
