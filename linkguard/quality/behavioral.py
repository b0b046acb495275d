"""
Behavioral Anomaly Detection

Scores client interaction telemetry: almost no mouse or keyboard activity,
a low activity rate, or suspicious patterns tagged by the survey client.
"""

import logging

from ..models import DetectorResult
from .base import DetectionInput, Detector

logger = logging.getLogger(__name__)

MIN_MOUSE_MOVEMENTS = 10
MIN_KEYBOARD_EVENTS = 5
MIN_ACTIVITY_RATE = 0.1


class BehavioralDetector(Detector):
    """Runs only when the client sent behavior telemetry."""

    name = "behavioral"

    def applies(self, inputs: DetectionInput) -> bool:
        behavior = inputs.metadata.behavior
        return behavior is not None and not behavior.is_empty()

    def evaluate(self, inputs: DetectionInput) -> DetectorResult:
        behavior = inputs.metadata.behavior
        if behavior is None or behavior.is_empty():
            return DetectorResult.clean(self.name, reason="no_telemetry")

        flags = []
        score = 0

        if behavior.mouse_movements is not None and behavior.mouse_movements < MIN_MOUSE_MOVEMENTS:
            flags.append("MINIMAL_MOUSE_MOVEMENT")
            score += 20

        if behavior.keyboard_events is not None and behavior.keyboard_events < MIN_KEYBOARD_EVENTS:
            flags.append("MINIMAL_KEYBOARD_ACTIVITY")
            score += 15

        if behavior.suspicious_patterns:
            flags.append("SUSPICIOUS_BEHAVIOR_PATTERNS")
            score += 10 * len(behavior.suspicious_patterns)

        if behavior.activity_rate is not None and behavior.activity_rate < MIN_ACTIVITY_RATE:
            flags.append("LOW_ACTIVITY_RATE")
            score += 25

        if not flags:
            return DetectorResult.clean(self.name, telemetry=behavior.to_dict())

        return DetectorResult(
            detector_name=self.name,
            triggered=True,
            score=score,
            evidence={
                "patterns": flags,
                "suspicious_patterns": list(behavior.suspicious_patterns),
                "telemetry": behavior.to_dict(),
            },
            flags=tuple(flags),
        )
