"""
QC Summary Statistics

Roll-up counts over a set of QC results: recommendation and risk
breakdowns, how often each detector fired, and the most common flag kinds.
"""

from collections import Counter
from typing import Any, Dict, Iterable

from ..models import QCResult, Recommendation, RiskLevel


def summarize_qc_results(results: Iterable[QCResult]) -> Dict[str, Any]:
    """Summary statistics for a batch of QC results."""
    results = list(results)
    risk = {level.value: 0 for level in RiskLevel}
    recommendations = {rec.value: 0 for rec in Recommendation}
    detectors: Counter = Counter()
    flag_kinds: Counter = Counter()

    for qc in results:
        risk[qc.risk_level.value] += 1
        recommendations[qc.recommendation.value] += 1
        for detector in qc.detector_results:
            if detector.triggered:
                detectors[detector.detector_name] += 1
        for flag in qc.flags:
            flag_kinds[flag.split(":", 1)[0]] += 1

    return {
        "total_responses": len(results),
        "flagged_responses": sum(1 for qc in results if qc.flags),
        "average_score": round(sum(qc.score for qc in results) / len(results), 2) if results else 0.0,
        "risk_breakdown": risk,
        "recommendation_breakdown": recommendations,
        "detector_triggers": dict(detectors),
        "common_flags": dict(flag_kinds.most_common(10)),
    }
