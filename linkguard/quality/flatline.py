"""
Flatline Detection

Detects respondents who give the same or mechanically patterned answers
across many questions: straight-lining, 1-2-3-4 staircases, A-B-A-B
alternation, pinning to the scale ends, always picking the first or last
option, and copy-pasted or throwaway text answers.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models import DetectorResult, ResponseAnswer
from .base import DetectionInput, Detector

logger = logging.getLogger(__name__)

# Minimum answers in a group before any pattern is considered
PATTERN_WINDOW = 3
RUN_WINDOW = 4

PATTERN_BASE_SCORES = {
    "identical": 40,
    "sequence": 30,
    "alternating": 25,
    "extreme": 35,
    "similar": 20,
}


@dataclass
class FlatlinePattern:
    """One detected answer pattern."""
    type: str
    questions: List[str]
    values: List[Any]
    confidence: float
    description: str

    @property
    def score(self) -> int:
        base = PATTERN_BASE_SCORES.get(self.type, 15)
        return round(base * self.confidence / 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "questions": self.questions,
            "values": self.values,
            "confidence": round(self.confidence, 2),
            "description": self.description,
            "score": self.score,
        }


def flatline_severity(score: float, pattern_count: int) -> str:
    adjusted = score + (pattern_count - 1) * 10
    if adjusted >= 80:
        return "CRITICAL"
    if adjusted >= 60:
        return "HIGH"
    if adjusted >= 30:
        return "MEDIUM"
    return "LOW"


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class FlatlineDetector(Detector):
    """Looks for straight-lining across scale, choice and text answers."""

    name = "flatline"

    def applies(self, inputs: DetectionInput) -> bool:
        return inputs.payload.question_count >= PATTERN_WINDOW

    def evaluate(self, inputs: DetectionInput) -> DetectorResult:
        answers = inputs.payload.answers
        scale = [a for a in answers if a.question_type in ("scale", "rating")]
        choice = [a for a in answers if a.question_type in ("multiple_choice", "multiple-choice")]
        text = [a for a in answers if a.question_type == "text"]

        candidates = [
            self._identical(scale),
            self._sequence(scale),
            self._alternating(scale),
            self._extreme(scale),
            self._first_or_last_option(choice),
            self._text_patterns(text),
        ]
        patterns = [p for p in candidates if p is not None]

        if not patterns:
            return DetectorResult.clean(self.name, answers_checked=len(answers))

        score = sum(p.score for p in patterns)
        severity = flatline_severity(score, len(patterns))
        return DetectorResult(
            detector_name=self.name,
            triggered=True,
            score=score,
            evidence={
                "severity": severity,
                "patterns": [p.to_dict() for p in patterns],
                "recommendations": self._recommendations(patterns, severity),
            },
            flags=(f"FLATLINE:{severity}:{len(patterns)}_patterns",),
        )

    # =========================================================================
    # Scale patterns
    # =========================================================================

    def _identical(self, questions: List[ResponseAnswer]) -> Optional[FlatlinePattern]:
        if len(questions) < PATTERN_WINDOW:
            return None

        values = [q.answer for q in questions]
        ids = [q.question_id for q in questions]
        value, count = Counter(values).most_common(1)[0]

        if count == len(values):
            return FlatlinePattern(
                "identical", ids, values,
                confidence=min(30 + len(values) * 15, 100),
                description=f'Identical response "{value}" given to {len(values)} scale questions',
            )

        share = count / len(values)
        if share >= 0.9 and len(values) >= 5:
            return FlatlinePattern(
                "identical", ids, values,
                confidence=min(30 + count * 15, 100) * share,
                description=f"{round(share * 100)}% identical responses ({value}) across {len(values)} questions",
            )
        return None

    def _numeric(self, questions: List[ResponseAnswer]) -> List[float]:
        values = [_as_number(q.answer) for q in questions]
        return [v for v in values if v is not None]

    def _sequence(self, questions: List[ResponseAnswer]) -> Optional[FlatlinePattern]:
        values = self._numeric(questions)
        if len(values) < RUN_WINDOW:
            return None

        for direction, label in ((1, "Ascending"), (-1, "Descending")):
            run = 1
            for i in range(1, len(values)):
                if values[i] != values[i - 1] + direction:
                    break
                run += 1
            if run >= RUN_WINDOW:
                ratio = run / len(values)
                return FlatlinePattern(
                    "sequence",
                    [q.question_id for q in questions[:run]],
                    values[:run],
                    confidence=min(40 + ratio * 40 + run * 5, 100),
                    description=f"{label} sequence pattern detected ({run}/{len(values)} questions)",
                )
        return None

    def _alternating(self, questions: List[ResponseAnswer]) -> Optional[FlatlinePattern]:
        values = self._numeric(questions)
        if len(values) < RUN_WINDOW or values[0] == values[1]:
            return None

        pair = values[:2]
        run = 2
        for i in range(2, len(values)):
            if values[i] != pair[i % 2]:
                break
            run += 1

        if run < RUN_WINDOW:
            return None
        ratio = run / len(values)
        return FlatlinePattern(
            "alternating",
            [q.question_id for q in questions[:run]],
            values[:run],
            confidence=min(35 + ratio * 35 + run * 5, 100),
            description=f"Alternating pattern detected between {pair[0]:g} and {pair[1]:g} ({run}/{len(values)} questions)",
        )

    def _extreme(self, questions: List[ResponseAnswer]) -> Optional[FlatlinePattern]:
        bounded = [q for q in questions if q.scale_min is not None and q.scale_max is not None]
        if len(bounded) < PATTERN_WINDOW:
            return None

        lows = sum(1 for q in bounded if _as_number(q.answer) == q.scale_min)
        highs = sum(1 for q in bounded if _as_number(q.answer) == q.scale_max)
        for count, label in ((lows, "low"), (highs, "high")):
            share = count / len(bounded)
            if share >= 0.8:
                return FlatlinePattern(
                    "extreme",
                    [q.question_id for q in bounded],
                    [q.answer for q in bounded],
                    confidence=share * 100,
                    description=f"{round(share * 100)}% extreme {label} responses",
                )
        return None

    # =========================================================================
    # Choice and text patterns
    # =========================================================================

    def _first_or_last_option(self, questions: List[ResponseAnswer]) -> Optional[FlatlinePattern]:
        if len(questions) < PATTERN_WINDOW:
            return None

        def is_first(q: ResponseAnswer) -> bool:
            options = q.options or []
            return (bool(options) and q.answer == options[0]) or q.answer in ("A", "1")

        def is_last(q: ResponseAnswer) -> bool:
            options = q.options or []
            if not options:
                return False
            return q.answer == options[-1] or q.answer == chr(64 + len(options))

        for check, label in ((is_first, "first"), (is_last, "last")):
            share = sum(1 for q in questions if check(q)) / len(questions)
            if share >= 0.8:
                return FlatlinePattern(
                    "similar",
                    [q.question_id for q in questions],
                    [q.answer for q in questions],
                    confidence=share * 100,
                    description=f"{round(share * 100)}% {label} option selection pattern",
                )
        return None

    def _text_patterns(self, questions: List[ResponseAnswer]) -> Optional[FlatlinePattern]:
        if len(questions) < PATTERN_WINDOW:
            return None

        normalized = [str(q.answer or "").lower().strip() for q in questions]
        ids = [q.question_id for q in questions]
        values = [q.answer for q in questions]

        if len(set(normalized)) == 1 and normalized[0]:
            return FlatlinePattern(
                "identical", ids, values,
                confidence=95,
                description=f'Identical text response "{normalized[0]}" given to all text questions',
            )

        non_empty = [a for a in normalized if a]
        short = [a for a in non_empty if len(a) <= 3]
        if non_empty and len(short) >= PATTERN_WINDOW:
            share = len(short) / len(non_empty)
            if share >= 0.8:
                return FlatlinePattern(
                    "similar", ids, values,
                    confidence=share * 80,
                    description=f"{round(share * 100)}% very short text responses (3 characters or fewer)",
                )
        return None

    def _recommendations(self, patterns: List[FlatlinePattern], severity: str) -> List[str]:
        kinds = {p.type for p in patterns}
        notes = []
        if "identical" in kinds:
            notes.append("Consider flagging for manual review due to identical responses")
        if "sequence" in kinds:
            notes.append("Response shows sequential pattern, likely automated or disengaged")
        if "alternating" in kinds:
            notes.append("Alternating pattern suggests systematic non-engagement")
        if "extreme" in kinds:
            notes.append("Extreme response bias detected, validate with follow-up questions")
        if severity in ("CRITICAL", "HIGH"):
            notes.append("Strong recommendation to exclude this response from final analysis")
        return notes
