"""
Generated Text Detection

Heuristics for free-text answers that read like language-model output:
self-identification, stock transitional phrases, canned openers, uniform
sentence structure, and cross-answer sameness. Confidence >= 60 triggers.
"""

import re
import math
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..models import DetectorResult
from .base import DetectionInput, Detector

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 20
TRIGGER_CONFIDENCE = 60

# (pattern, score per match, description, counts once)
PHRASE_PATTERNS = [
    (re.compile(
        r"\b(as an ai|i'm an ai|i am an artificial|as a language model|"
        r"i don't have personal|i cannot have opinions)\b", re.I),
     90, "Direct AI self-identification", True),
    (re.compile(r"\b(furthermore|moreover|additionally|consequently|nevertheless|nonetheless)\b", re.I),
     15, "Overuse of formal transitional phrases", False),
    (re.compile(r"\b(it's important to note|it's worth noting|it should be noted)\b", re.I),
     20, "AI-typical hedging phrases", False),
    (re.compile(r"\b(various|numerous|multiple|several|diverse)\b", re.I),
     10, "Generic quantifier overuse", False),
    (re.compile(r"\b(comprehensive|holistic|multifaceted|nuanced)\b", re.I),
     15, "AI-preferred descriptive terms", False),
]

TEMPLATE_OPENERS = [
    "I appreciate your question",
    "Thank you for asking",
    "This is an interesting question",
    "There are several factors to consider",
    "It depends on various factors",
    "In my opinion, I believe that",
    "I would say that",
]

FORMAL_WORDS = frozenset({
    "therefore", "consequently", "furthermore", "moreover", "additionally", "nevertheless",
})

GRAMMAR_ISSUES = [
    re.compile(r"\s{2,}"),
    re.compile(r"\.\s*\."),
    re.compile(r"\s+,"),
    re.compile(r"[a-z]\.[A-Z]"),
    re.compile(r"\s+$"),
]

WORD_RE = re.compile(r"\b\w+\b")
SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


@dataclass
class TextAnalysis:
    word_count: int
    sentence_count: int
    vocabulary_diversity: float
    complexity: float
    formality: float
    words: List[str] = field(default_factory=list)


@dataclass
class Indicator:
    type: str
    description: str
    score: float
    evidence: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "description": self.description,
            "score": self.score,
            "evidence": self.evidence,
        }


def _variance(values: List[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def analyze_text(text: str) -> TextAnalysis:
    words = WORD_RE.findall(text.lower())
    sentences = [s for s in SENTENCE_SPLIT_RE.split(text) if s.strip()]
    lengths = [len(WORD_RE.findall(s)) for s in sentences]

    return TextAnalysis(
        word_count=len(words),
        sentence_count=len(sentences),
        vocabulary_diversity=len(set(words)) / len(words) if words else 0.0,
        complexity=math.sqrt(_variance(lengths)),
        formality=(sum(1 for w in words if w in FORMAL_WORDS) / len(words) * 100) if words else 0.0,
        words=words,
    )


def grammar_quality(text: str) -> float:
    score = 100
    for issue in GRAMMAR_ISSUES:
        score -= len(issue.findall(text)) * 5
    return max(score, 0)


def risk_level(confidence: float, indicators: List[Indicator]) -> str:
    if any(i.score >= 50 for i in indicators) or confidence >= 85:
        return "CRITICAL"
    if confidence >= 70:
        return "HIGH"
    if confidence >= 50:
        return "MEDIUM"
    return "LOW"


class GeneratedTextDetector(Detector):
    """Scores free-text answers for machine-generated phrasing."""

    name = "generated_text"

    def applies(self, inputs: DetectionInput) -> bool:
        return bool(inputs.payload.text_answers(MIN_TEXT_LENGTH))

    def evaluate(self, inputs: DetectionInput) -> DetectorResult:
        texts = inputs.payload.text_answers(MIN_TEXT_LENGTH)
        if not texts:
            return DetectorResult.clean(self.name, texts_checked=0)

        analyses = [analyze_text(t) for t in texts]
        indicators: List[Indicator] = []
        for text, analysis in zip(texts, analyses):
            indicators.extend(self._response_indicators(text, analysis))
        indicators.extend(self._cross_response_indicators(texts, analyses))

        confidence = min(sum(i.score for i in indicators), 100)
        level = risk_level(confidence, indicators)
        triggered = confidence >= TRIGGER_CONFIDENCE

        return DetectorResult(
            detector_name=self.name,
            triggered=triggered,
            score=confidence,
            evidence={
                "risk_level": level,
                "texts_checked": len(texts),
                "indicators": [i.to_dict() for i in indicators],
            },
            flags=(f"AI_GENERATED:{level}:confidence_{confidence:g}",) if triggered else (),
        )

    def _response_indicators(self, text: str, analysis: TextAnalysis) -> List[Indicator]:
        indicators = []

        for pattern, score, description, once in PHRASE_PATTERNS:
            matches = pattern.findall(text)
            if matches:
                count = 1 if once else len(matches)
                indicators.append(Indicator(
                    "pattern", description, score * count,
                    {"matches": [m if isinstance(m, str) else m[0] for m in matches][:5]},
                ))

        lowered = text.lower()
        for template in TEMPLATE_OPENERS:
            if template.lower() in lowered:
                indicators.append(Indicator("template", f'Uses template phrase: "{template}"', 25))

        if analysis.formality > 5:
            indicators.append(Indicator(
                "style", "Unusually high formality for survey response",
                min(analysis.formality * 2, 30), {"formality": round(analysis.formality, 2)},
            ))

        if analysis.complexity < 2 and analysis.sentence_count > 2:
            indicators.append(Indicator(
                "structure", "Uniform sentence structure", 20,
                {"complexity": round(analysis.complexity, 2)},
            ))

        grammar = grammar_quality(text)
        if grammar > 95 and analysis.word_count > 20:
            indicators.append(Indicator(
                "style", "Suspiciously perfect grammar and punctuation", 15, {"grammar": grammar},
            ))

        if analysis.vocabulary_diversity < 0.5 and analysis.word_count > 30:
            indicators.append(Indicator(
                "vocabulary", "Low vocabulary diversity", 25,
                {"diversity": round(analysis.vocabulary_diversity, 2)},
            ))

        if analysis.word_count > 150:
            indicators.append(Indicator(
                "length", "Unusually verbose response", 15, {"word_count": analysis.word_count},
            ))

        return indicators

    def _cross_response_indicators(self, texts: List[str], analyses: List[TextAnalysis]) -> List[Indicator]:
        if len(texts) < 2:
            return []

        indicators = []
        formality = [a.formality for a in analyses]
        if len(formality) > 2 and _variance(formality) < 1:
            indicators.append(Indicator(
                "consistency", "Suspiciously consistent formality across responses", 20,
                {"variance": round(_variance(formality), 3)},
            ))

        lengths = [a.word_count for a in analyses]
        avg_length = sum(lengths) / len(lengths)
        if len(lengths) > 2 and _variance(lengths) < avg_length * 0.1:
            indicators.append(Indicator(
                "consistency", "Suspiciously similar response lengths", 15,
                {"word_counts": lengths},
            ))

        for phrase in self._repeated_phrases(analyses):
            indicators.append(Indicator(
                "repetition", "Identical phrase repeated across responses", 10, {"phrase": phrase},
            ))

        return indicators

    def _repeated_phrases(self, analyses: List[TextAnalysis]) -> List[str]:
        """3-5 word phrases (over 10 chars) appearing in more than one response."""
        seen_in: Dict[str, int] = {}
        repeated: List[str] = []
        for index, analysis in enumerate(analyses):
            words = analysis.words
            for i in range(len(words) - 2):
                for length in range(3, min(5, len(words) - i) + 1):
                    phrase = " ".join(words[i:i + length])
                    if len(phrase) <= 10:
                        continue
                    first = seen_in.setdefault(phrase, index)
                    if first != index and phrase not in repeated:
                        repeated.append(phrase)
        return repeated
