"""
Quality Scoring Engine

Runs every applicable detector over a completion and folds their results
into a single QCResult: a 0-100 score, a risk tier, and a recommendation
(approve / flag_for_review / exclude).

Detectors never short-circuit each other. A detector that cannot produce a
result is recorded as "unavailable" and contributes nothing. All
contributions are non-negative, so an extra triggering signal can only
raise the score.
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..models import (
    DEFAULT_HONEYPOT_FIELDS,
    CompletionMetadata,
    DetectorResult,
    DetectorStatus,
    HoneypotField,
    NetworkContext,
    QCResult,
    Recommendation,
    ReputationLookup,
    ResponsePayload,
    RiskLevel,
    utcnow,
)
from ..quality import Detector, DetectionInput, default_detectors
from .policy import DEFAULT_POLICY, ScoringPolicy

logger = logging.getLogger(__name__)


# =============================================================================
# Contributions
# =============================================================================

def _speed_contribution(result: DetectorResult, policy: ScoringPolicy) -> float:
    total = 0.0
    for flag in result.flags:
        reason = flag.split(":", 1)[-1]
        total += policy.speed_weights.get(reason, result.score)
    return total


CONTRIBUTIONS: Dict[str, Callable[[DetectorResult, ScoringPolicy], float]] = {
    "domain_reputation": lambda r, p: p.domain_weight_per_match * len(r.flags),
    "honeypot": lambda r, p: r.score * p.honeypot_multiplier,
    "flatline": lambda r, p: r.score * p.flatline_multiplier,
    "generated_text": lambda r, p: r.score * p.generated_text_multiplier,
    "behavioral": lambda r, p: min(r.score, p.behavioral_cap),
    "speed": _speed_contribution,
}

DETECTOR_NOTES = {
    "domain_reputation": "Email domain is disposable, anonymous or blacklisted",
    "honeypot": "Hidden decoy fields were filled, likely automated",
    "flatline": "Answers follow a straight-line or mechanical pattern",
    "generated_text": "Free-text answers read as machine-generated",
    "behavioral": "Interaction telemetry shows little human activity",
    "speed": "Completion speed is implausible for the question count",
}


def contribution(result: DetectorResult, policy: ScoringPolicy) -> float:
    """Score a triggered detector adds; unavailable or clean results add 0."""
    if not result.triggered:
        return 0.0
    fn = CONTRIBUTIONS.get(result.detector_name, lambda r, p: r.score)
    return max(fn(result, policy), 0.0)


def network_flags(
    click_context: Optional[NetworkContext],
    completion_context: Optional[NetworkContext],
) -> List[str]:
    """Flags derived from network context; they carry no score by default."""
    flags = []
    context = completion_context or click_context
    if context is not None and context.is_anonymized:
        flags.append(f"ANONYMIZED_NETWORK:{'+'.join(context.anonymization_kinds)}")
    if (
        click_context is not None
        and completion_context is not None
        and click_context.ip
        and completion_context.ip
        and click_context.ip != completion_context.ip
    ):
        flags.append("IP_CHANGED")
    return flags


# =============================================================================
# Tiering
# =============================================================================

def classify_risk(score: float, flags: Sequence[str], policy: ScoringPolicy = DEFAULT_POLICY) -> RiskLevel:
    distinct = len(set(flags))
    if score >= policy.critical_score or any(policy.is_critical_flag(f) for f in flags):
        return RiskLevel.CRITICAL
    if score >= policy.high_score or distinct >= policy.high_flag_count:
        return RiskLevel.HIGH
    if score >= policy.medium_score or distinct >= policy.medium_flag_count:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def recommend(
    score: float,
    risk_level: RiskLevel,
    flags: Sequence[str],
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> Recommendation:
    if score >= policy.exclude_score or risk_level == RiskLevel.CRITICAL:
        return Recommendation.EXCLUDE
    if score >= policy.review_score or len(set(flags)) >= policy.review_flag_count:
        return Recommendation.FLAG_FOR_REVIEW
    return Recommendation.APPROVE


# =============================================================================
# Engine
# =============================================================================

class QualityScoringEngine:
    """
    Composes detector outputs into a QCResult.

    Usage:
        engine = QualityScoringEngine()
        qc = engine.evaluate({"q1": 3, "q2": "fine"}, {"timeSpent": 240})
        if qc.recommendation == Recommendation.EXCLUDE:
            ...
    """

    def __init__(
        self,
        detectors: Optional[List[Detector]] = None,
        policy: ScoringPolicy = DEFAULT_POLICY,
    ):
        self.detectors = detectors if detectors is not None else default_detectors()
        self.policy = policy

    def evaluate(
        self,
        response_payload: Union[ResponsePayload, Mapping[str, Any]],
        metadata: Union[CompletionMetadata, Mapping[str, Any], None] = None,
        network_context: Optional[NetworkContext] = None,
        policy: Optional[ScoringPolicy] = None,
        reputation: Optional[ReputationLookup] = None,
        honeypot_fields: Tuple[HoneypotField, ...] = DEFAULT_HONEYPOT_FIELDS,
    ) -> QCResult:
        """
        Score one completion.

        Args:
            response_payload: Answers, typed or as a {question_id: answer} mapping
            metadata: Completion metadata (timing, telemetry, completion network)
            network_context: Network context recorded at first click
            policy: Per-project policy; defaults to the engine's policy
            reputation: Remote domain verdicts gathered beforehand
            honeypot_fields: Decoy fields registered for the project

        Returns:
            Immutable QCResult
        """
        policy = policy or self.policy
        if not isinstance(response_payload, ResponsePayload):
            response_payload = ResponsePayload.from_mapping(response_payload or {})
        if not isinstance(metadata, CompletionMetadata):
            metadata = CompletionMetadata.from_dict(metadata)

        inputs = DetectionInput.build(
            response_payload,
            metadata=metadata,
            network_context=network_context,
            honeypot_fields=honeypot_fields,
            reputation=reputation,
        )

        results: List[DetectorResult] = []
        for detector in self.detectors:
            if detector.applies(inputs):
                results.append(detector.run(inputs))

        flags: List[str] = []
        total = 0.0
        for result in results:
            flags.extend(result.flags)
            total += contribution(result, policy)

        extra_flags = network_flags(network_context, metadata.network)
        for flag in extra_flags:
            weight = policy.ip_changed_weight if flag == "IP_CHANGED" else policy.anonymized_network_weight
            total += max(weight, 0)
        flags.extend(extra_flags)

        score = round(min(max(total, 0.0), 100.0), 2)
        risk_level = classify_risk(score, flags, policy)
        recommendation = recommend(score, risk_level, flags, policy)

        unavailable = [r.detector_name for r in results if r.status == DetectorStatus.UNAVAILABLE]
        if unavailable:
            logger.warning(f"Detectors unavailable during scoring: {unavailable}")

        logger.info(
            f"QC evaluated: score={score} risk={risk_level.value} "
            f"recommendation={recommendation.value} flags={len(flags)}"
        )

        return QCResult(
            flags=tuple(flags),
            score=score,
            risk_level=risk_level,
            recommendation=recommendation,
            detector_results=tuple(results),
            recommendations=tuple(self._notes(results, recommendation, risk_level)),
            evaluated_at=utcnow(),
        )

    def _notes(
        self,
        results: List[DetectorResult],
        recommendation: Recommendation,
        risk_level: RiskLevel,
    ) -> List[str]:
        notes = [DETECTOR_NOTES.get(r.detector_name, r.detector_name) for r in results if r.triggered]
        if recommendation == Recommendation.EXCLUDE:
            notes.append(f"Exclude from analysis ({risk_level.value} risk)")
        elif recommendation == Recommendation.FLAG_FOR_REVIEW:
            notes.append("Review manually before including in analysis")
        return notes
