"""
Scoring Module for the Survey Link Guard

Folds detector results into a QC verdict:

1. **Score** (0-100)
   Weighted sum of triggered detectors, clamped.

2. **Risk tier** (LOW / MEDIUM / HIGH / CRITICAL)
   From the score, the number of distinct flags, and critical flags.

3. **Recommendation** (approve / flag_for_review / exclude)

Example Usage:
    from linkguard.scoring import QualityScoringEngine, ScoringPolicy

    engine = QualityScoringEngine()
    strict = ScoringPolicy().with_overrides({"exclude_score": 40})
    qc = engine.evaluate({"q1": "hello", "email": "x@mailinator.com"}, policy=strict)
"""

from .engine import (
    QualityScoringEngine,
    classify_risk,
    contribution,
    network_flags,
    recommend,
)
from .policy import DEFAULT_POLICY, ScoringPolicy
from .summary import summarize_qc_results

__all__ = [
    "QualityScoringEngine",
    "ScoringPolicy",
    "DEFAULT_POLICY",
    "classify_risk",
    "contribution",
    "network_flags",
    "recommend",
    "summarize_qc_results",
]
