"""
Participant Context Models

Network context resolved at click/completion time, the typed completion
metadata sent alongside a response, and the response payload itself.

NetworkContext, BehavioralTelemetry and CompletionMetadata are pydantic
models: the API validates client metadata against them, so malformed values
are rejected before a link is touched. Browser clients send camelCase keys;
both spellings are accepted.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pydantic
from pydantic import AliasChoices, BaseModel, Field, model_validator

from ..errors import ValidationError


class NetworkContext(BaseModel):
    """Where a participant connected from, as far as we could tell."""
    ip: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    org: Optional[str] = None
    asn: Optional[str] = None

    # Anonymization signals
    is_vpn: bool = False
    is_proxy: bool = False
    is_tor: bool = False
    is_relay: bool = False
    is_hosting: bool = False

    # False when the geolocation lookup failed or was skipped
    geo_available: bool = True
    source: str = "unknown"

    class Config:
        extra = "ignore"

    @property
    def anonymization_kinds(self) -> List[str]:
        kinds = []
        for kind in ("vpn", "proxy", "tor", "relay", "hosting"):
            if getattr(self, f"is_{kind}"):
                kinds.append(kind)
        return kinds

    @property
    def is_anonymized(self) -> bool:
        return bool(self.anonymization_kinds)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["NetworkContext"]:
        if not data:
            return None
        return _validate(cls, data)


class BehavioralTelemetry(BaseModel):
    """Client-side interaction counters collected during the survey."""
    mouse_movements: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("mouse_movements", "mouseMovements"),
    )
    keyboard_events: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("keyboard_events", "keyboardEvents"),
    )
    activity_rate: Optional[float] = Field(
        default=None, ge=0, validation_alias=AliasChoices("activity_rate", "activityRate"),
    )
    suspicious_patterns: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("suspicious_patterns", "suspiciousPatterns"),
    )

    def is_empty(self) -> bool:
        return (
            self.mouse_movements is None
            and self.keyboard_events is None
            and self.activity_rate is None
            and not self.suspicious_patterns
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["BehavioralTelemetry"]:
        if not data:
            return None
        return _validate(cls, data)


class CompletionMetadata(BaseModel):
    """Typed metadata accompanying a completion. Unknown keys land in `extras`."""
    time_spent_seconds: Optional[float] = Field(
        default=None, ge=0,
        validation_alias=AliasChoices("time_spent_seconds", "timeSpent", "time_spent"),
    )
    presurvey_answers: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("presurvey_answers", "presurveyAnswers"),
    )
    behavior: Optional[BehavioralTelemetry] = Field(
        default=None,
        validation_alias=AliasChoices("behavior", "behaviorData", "behavior_data"),
    )
    network: Optional[NetworkContext] = Field(
        default=None,
        validation_alias=AliasChoices("network", "networkContext", "network_context"),
    )
    extras: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def collect_extras(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data

        known = set()
        for name, info in cls.model_fields.items():
            known.add(name)
            if isinstance(info.validation_alias, AliasChoices):
                known.update(c for c in info.validation_alias.choices if isinstance(c, str))

        extras = data.get("extras") or {}
        if not isinstance(extras, Mapping):
            raise ValueError("extras must be an object")

        values = {k: v for k, v in data.items() if k in known and v is not None}
        values["extras"] = {**{k: v for k, v in data.items() if k not in known}, **extras}
        return values

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "CompletionMetadata":
        """Build from a loose client payload, keeping unknown keys opaque."""
        if not data:
            return cls()
        return _validate(cls, data)


def _validate(model, data: Mapping[str, Any]):
    try:
        return model.model_validate(dict(data))
    except pydantic.ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in error['loc']) or model.__name__}: {error['msg']}"
            for error in e.errors()
        ]
        raise ValidationError(f"Invalid {model.__name__}: {'; '.join(problems)}", {"errors": problems})


@dataclass
class ResponseAnswer:
    """A single answer in a survey response."""
    question_id: str
    answer: Any
    question_type: str = "text"
    options: Optional[List[str]] = None
    scale_min: Optional[float] = None
    scale_max: Optional[float] = None

    @property
    def is_text(self) -> bool:
        return self.question_type == "text" and isinstance(self.answer, str)

    @property
    def is_numeric(self) -> bool:
        return (
            self.question_type in ("scale", "rating", "number")
            and isinstance(self.answer, (int, float))
            and not isinstance(self.answer, bool)
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ResponsePayload:
    """Ordered answers submitted with a completion."""
    answers: List[ResponseAnswer] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ResponsePayload":
        """Build from a plain {question_id: answer} mapping, inferring types."""
        answers = []
        for question_id, value in data.items():
            if isinstance(value, Mapping) and "answer" in value:
                answers.append(ResponseAnswer(
                    question_id=str(question_id),
                    answer=value.get("answer"),
                    question_type=value.get("question_type", value.get("type", "text")),
                    options=value.get("options"),
                    scale_min=value.get("scale_min"),
                    scale_max=value.get("scale_max"),
                ))
                continue

            if isinstance(value, bool):
                question_type = "checkbox"
            elif isinstance(value, (int, float)):
                question_type = "scale"
            elif isinstance(value, (list, tuple)):
                question_type = "multiple_choice"
            else:
                question_type = "text"
            answers.append(ResponseAnswer(str(question_id), value, question_type))
        return cls(answers=answers)

    def without(self, question_ids: Iterable[str]) -> "ResponsePayload":
        excluded = set(question_ids)
        return ResponsePayload([a for a in self.answers if a.question_id not in excluded])

    def values_by_id(self) -> Dict[str, Any]:
        return {a.question_id: a.answer for a in self.answers}

    def text_answers(self, min_length: int = 0) -> List[str]:
        return [
            a.answer.strip() for a in self.answers
            if a.is_text and len(a.answer.strip()) >= min_length
        ]

    def email_answers(self) -> List[str]:
        return [
            a.answer.strip() for a in self.answers
            if isinstance(a.answer, str) and "@" in a.answer
        ]

    @property
    def question_count(self) -> int:
        return len(self.answers)

    def to_dict(self) -> Dict[str, Any]:
        return {"answers": [a.to_dict() for a in self.answers]}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ResponsePayload":
        if not data:
            return cls()
        if "answers" in data and isinstance(data["answers"], list):
            return cls([ResponseAnswer(**a) for a in data["answers"]])
        return cls.from_mapping(data)
