"""
Response Speed Detection

Average seconds per question. Nobody reads a question in under two seconds,
and a response that took ten minutes per question was left open.
"""

import logging

from ..models import DetectorResult
from .base import DetectionInput, Detector

logger = logging.getLogger(__name__)

EXTREMELY_FAST_SECONDS = 2
TOO_FAST_SECONDS = 5
TOO_SLOW_SECONDS = 600

SPEED_SCORES = {
    "EXTREMELY_FAST": 50,
    "TOO_FAST": 30,
    "TOO_SLOW": 10,
}


def classify_speed(avg_seconds: float):
    # Stronger verdict first
    if avg_seconds < EXTREMELY_FAST_SECONDS:
        return "EXTREMELY_FAST"
    if avg_seconds < TOO_FAST_SECONDS:
        return "TOO_FAST"
    if avg_seconds > TOO_SLOW_SECONDS:
        return "TOO_SLOW"
    return None


class SpeedDetector(Detector):
    """Flags responses completed implausibly fast or slow."""

    name = "speed"

    def evaluate(self, inputs: DetectionInput) -> DetectorResult:
        time_spent = inputs.metadata.time_spent_seconds
        questions = inputs.payload.question_count
        if time_spent is None or questions == 0:
            return DetectorResult.clean(self.name, reason="missing_timing")

        avg = time_spent / questions
        reason = classify_speed(avg)
        if reason is None:
            return DetectorResult.clean(self.name, avg_seconds_per_question=round(avg, 2))

        return DetectorResult(
            detector_name=self.name,
            triggered=True,
            score=SPEED_SCORES[reason],
            evidence={
                "reason": reason,
                "avg_seconds_per_question": round(avg, 2),
                "time_spent_seconds": time_spent,
                "question_count": questions,
            },
            flags=(f"SPEED_ISSUE:{reason}",),
        )
