"""
Honeypot Detection

Decoy fields are hidden from humans; any value in one means a form filler
touched it. Each tripped field adds a per-type suspicion score.
"""

import logging
from typing import List

from ..models import DetectorResult
from .base import DetectionInput, Detector

logger = logging.getLogger(__name__)

SUSPICION_BY_FIELD_TYPE = {
    "text": 25,
    "checkbox": 30,
    "select": 20,
    "hidden": 40,
}


def suspicion_level(confidence: float) -> str:
    if confidence >= 80:
        return "CRITICAL"
    if confidence >= 50:
        return "HIGH"
    if confidence >= 25:
        return "MEDIUM"
    return "LOW"


class HoneypotDetector(Detector):
    """Checks registered decoy fields for human-impossible input."""

    name = "honeypot"

    def evaluate(self, inputs: DetectionInput) -> DetectorResult:
        if not inputs.honeypot_fields:
            return DetectorResult.clean(self.name, reason="no_decoy_fields")

        tripped: List[str] = []
        flags: List[str] = []
        total = 0
        for decoy in inputs.honeypot_fields:
            value = inputs.honeypot_answers.get(decoy.field_id)
            if not decoy.is_tripped(value):
                continue
            tripped.append(decoy.field_id)
            total += SUSPICION_BY_FIELD_TYPE.get(decoy.field_type, 25)
            for flag in decoy.trigger_flags:
                if flag not in flags:
                    flags.append(flag)

        if not tripped:
            return DetectorResult.clean(self.name, checked=len(inputs.honeypot_fields))

        confidence = min(total, 100)
        logger.info(f"Honeypot tripped: {tripped} (confidence {confidence})")
        return DetectorResult(
            detector_name=self.name,
            triggered=True,
            score=confidence,
            evidence={
                "triggered_fields": tripped,
                "suspicion_level": suspicion_level(confidence),
            },
            flags=tuple(flags),
        )
