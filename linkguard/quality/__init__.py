"""
Quality Detectors

Stateless fraud/quality evaluators run by the scoring engine.

Components:
- Detector / DetectionInput: base framework with fail-safe run()
- DomainReputationDetector: throwaway and blacklisted email domains
- HoneypotDetector: decoy form fields
- FlatlineDetector: straight-lining and patterned answers
- GeneratedTextDetector: machine-generated free text
- BehavioralDetector: interaction telemetry anomalies
- SpeedDetector: implausible completion speed
"""

from .base import Detector, DetectionInput
from .behavioral import BehavioralDetector
from .domain_reputation import DomainReputationDetector, check_domain_locally, extract_domain
from .flatline import FlatlineDetector
from .generated_text import GeneratedTextDetector
from .honeypot import HoneypotDetector
from .speed import SpeedDetector, classify_speed


def default_detectors():
    """The full detector set, in evaluation order."""
    return [
        DomainReputationDetector(),
        HoneypotDetector(),
        FlatlineDetector(),
        GeneratedTextDetector(),
        BehavioralDetector(),
        SpeedDetector(),
    ]


__all__ = [
    "Detector",
    "DetectionInput",
    "BehavioralDetector",
    "DomainReputationDetector",
    "FlatlineDetector",
    "GeneratedTextDetector",
    "HoneypotDetector",
    "SpeedDetector",
    "check_domain_locally",
    "classify_speed",
    "extract_domain",
    "default_detectors",
]
