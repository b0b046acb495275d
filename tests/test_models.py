"""
Tests for the Data Models

Transition table, project policy parsing, typed completion metadata and
link serialization.
"""

import pytest

from linkguard.errors import InvalidState, ValidationError
from linkguard.models import (
    ALLOWED_TRANSITIONS,
    AnonymizedNetworkMode,
    CompletionMetadata,
    DEFAULT_HONEYPOT_FIELDS,
    HoneypotField,
    LinkStatus,
    LinkType,
    ManualReview,
    NetworkContext,
    ProjectPolicy,
    QuotaCounter,
    ResponsePayload,
    ReviewDisposition,
    SurveyLink,
    can_transition,
    ensure_transition,
    quota_key,
    utcnow,
)


class TestTransitions:
    """Test the link status state machine."""

    @pytest.mark.parametrize("current,target", [
        (LinkStatus.UNUSED, LinkStatus.CLICKED),
        (LinkStatus.UNUSED, LinkStatus.DISQUALIFIED),
        (LinkStatus.UNUSED, LinkStatus.QUOTA_FULL),
        (LinkStatus.CLICKED, LinkStatus.COMPLETED),
        (LinkStatus.CLICKED, LinkStatus.DISQUALIFIED),
        (LinkStatus.CLICKED, LinkStatus.QUOTA_FULL),
    ])
    def test_allowed_edges(self, current, target):
        assert can_transition(current, target)
        ensure_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (LinkStatus.UNUSED, LinkStatus.COMPLETED),
        (LinkStatus.CLICKED, LinkStatus.UNUSED),
        (LinkStatus.COMPLETED, LinkStatus.CLICKED),
        (LinkStatus.DISQUALIFIED, LinkStatus.COMPLETED),
        (LinkStatus.QUOTA_FULL, LinkStatus.COMPLETED),
    ])
    def test_forbidden_edges(self, current, target):
        assert not can_transition(current, target)
        with pytest.raises(InvalidState) as exc:
            ensure_transition(current, target)
        assert exc.value.current_status == current.value

    def test_terminal_states_have_no_exits(self):
        for status in (LinkStatus.COMPLETED, LinkStatus.DISQUALIFIED, LinkStatus.QUOTA_FULL):
            assert ALLOWED_TRANSITIONS[status] == frozenset()


class TestProjectPolicy:
    """Test parsing per-project settings."""

    def test_defaults(self):
        policy = ProjectPolicy.from_settings(None)

        assert policy.gate.allowed_countries == ()
        assert policy.gate.anonymized_network_mode == AnonymizedNetworkMode.WARN
        assert policy.check_quota_on_click is True
        assert policy.honeypot_fields == DEFAULT_HONEYPOT_FIELDS
        assert policy.scoring_overrides == {}

    def test_comma_separated_countries(self):
        policy = ProjectPolicy.from_settings({"allowed_countries": "se, no,dk"})
        assert policy.gate.allowed_countries == ("SE", "NO", "DK")

    def test_block_mode(self):
        policy = ProjectPolicy.from_settings({"anonymized_network_mode": "block"})
        assert policy.gate.anonymized_network_mode == AnonymizedNetworkMode.BLOCK

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValidationError):
            ProjectPolicy.from_settings({"anonymized_network_mode": "shout"})

    def test_honeypot_fields_by_name_and_definition(self):
        policy = ProjectPolicy.from_settings({"honeypot_fields": [
            "hp_website",
            "hp_custom",
            {"field_id": "hp_terms", "field_type": "checkbox", "default": False},
        ]})

        ids = [f.field_id for f in policy.honeypot_fields]
        assert ids == ["hp_website", "hp_custom", "hp_terms"]
        assert policy.honeypot_fields[1].trigger_flags == ("BOT_FILLED_HONEYPOT",)
        assert policy.honeypot_fields[2].field_type == "checkbox"

    def test_bad_honeypot_definition_rejected(self):
        with pytest.raises(ValidationError):
            ProjectPolicy.from_settings({"honeypot_fields": [42]})

    def test_scoring_overrides_kept_raw(self):
        policy = ProjectPolicy.from_settings({"scoring": {"review_score": 20}})
        assert policy.scoring_overrides == {"review_score": 20}

    @pytest.mark.parametrize("scoring", [
        {"exlude_score": 40},
        {"exclude_score": "forty"},
        {"exclude_score": -5},
        {"speed_weights": {"TOO_FAST": "a lot"}},
        {"speed_weights": 30},
        {"critical_flag_prefixes": "BLACKLISTED_DOMAIN"},
        ["exclude_score", 40],
    ])
    def test_bad_scoring_overrides_rejected(self, scoring):
        with pytest.raises(ValidationError):
            ProjectPolicy.from_settings({"scoring": scoring})

    @pytest.mark.parametrize("field,value,tripped", [
        (HoneypotField("a", "text", ""), "", False),
        (HoneypotField("a", "text", ""), "   ", False),
        (HoneypotField("a", "text", ""), "filled", True),
        (HoneypotField("a", "checkbox", False), False, False),
        (HoneypotField("a", "checkbox", False), True, True),
        (HoneypotField("a", "select", "none"), "none", False),
        (HoneypotField("a", "select", "none"), "opt2", True),
        (HoneypotField("a", "text", ""), None, False),
    ])
    def test_honeypot_tripping(self, field, value, tripped):
        assert field.is_tripped(value) is tripped


class TestCompletionMetadata:
    """Test the typed completion metadata."""

    def test_camel_case_aliases(self):
        metadata = CompletionMetadata.from_dict({
            "timeSpent": "95",
            "behaviorData": {"mouseMovements": 12, "keyboardEvents": 3},
            "presurveyAnswers": {"age": 31},
            "networkContext": {"ip": "203.0.113.4", "country": "SE"},
            "userAgent": "Mozilla/5.0",
        })

        assert metadata.time_spent_seconds == 95.0
        assert metadata.behavior.mouse_movements == 12
        assert metadata.presurvey_answers == {"age": 31}
        assert metadata.network.country == "SE"
        assert metadata.extras == {"userAgent": "Mozilla/5.0"}

    @pytest.mark.parametrize("data", [
        {"timeSpent": "n/a"},
        {"timeSpent": -3},
        {"network": "x"},
        {"behaviorData": {"mouseMovements": "many"}},
        {"behavior": ["click"]},
        {"extras": "opaque"},
    ])
    def test_malformed_values_rejected(self, data):
        with pytest.raises(ValidationError):
            CompletionMetadata.from_dict(data)

    def test_empty(self):
        metadata = CompletionMetadata.from_dict(None)

        assert metadata.time_spent_seconds is None
        assert metadata.behavior is None
        assert metadata.extras == {}

    def test_round_trip_through_dict(self):
        original = CompletionMetadata.from_dict({"timeSpent": 40, "source": "panel"})
        restored = CompletionMetadata.from_dict(original.to_dict())

        assert restored.time_spent_seconds == 40.0
        assert restored.extras == {"source": "panel"}


class TestResponsePayload:
    """Test answer type inference."""

    def test_type_inference(self):
        payload = ResponsePayload.from_mapping({
            "q1": 4,
            "q2": "free text",
            "q3": True,
            "q4": ["a", "b"],
        })

        types = [a.question_type for a in payload.answers]
        assert types == ["scale", "text", "checkbox", "multiple_choice"]

    def test_explicit_answer_objects(self):
        payload = ResponsePayload.from_mapping({
            "q1": {"answer": 6, "type": "rating", "scale_min": 1, "scale_max": 7},
        })

        answer = payload.answers[0]
        assert answer.question_type == "rating"
        assert answer.is_numeric
        assert answer.scale_max == 7

    def test_email_answers(self):
        payload = ResponsePayload.from_mapping({"q1": " a@b.com ", "q2": "no"})
        assert payload.email_answers() == ["a@b.com"]


class TestQuotaCounter:
    """Test quota pool helpers."""

    def test_full_and_remaining(self):
        pool = QuotaCounter("p1", "v1", limit=2, current=2)

        assert pool.is_full
        assert pool.remaining == 0
        assert pool.key == "p1:v1"

    def test_project_wide_key(self):
        assert quota_key("p1", None) == "p1:*"


class TestSurveyLink:
    """Test link serialization and derived fields."""

    def test_dict_round_trip(self):
        link = SurveyLink(
            id="l1",
            project_ref="p1",
            resp_id="al001",
            token="tok",
            vendor_ref="v1",
            link_type=LinkType.TEST,
            status=LinkStatus.CLICKED,
            clicked_at=utcnow(),
            network_context=NetworkContext(ip="203.0.113.1", country="US"),
            gate_flags=["anonymized_network"],
        )

        restored = SurveyLink.from_dict(link.to_dict())

        assert restored.status == LinkStatus.CLICKED
        assert restored.link_type == LinkType.TEST
        assert restored.clicked_at == link.clicked_at
        assert restored.network_context.country == "US"
        assert restored.gate_flags == ["anonymized_network"]

    def test_manual_review_wins_disposition(self):
        link = SurveyLink(id="l1", project_ref="p1", resp_id="r", token="t")
        assert link.effective_disposition is None

        link.manual_review = ManualReview(
            disposition=ReviewDisposition.APPROVED,
            reviewed_by="ana",
            reviewed_at=utcnow(),
        )
        assert link.effective_disposition == "APPROVED"

    def test_terminal(self):
        link = SurveyLink(id="l1", project_ref="p1", resp_id="r", token="t")
        assert not link.is_terminal
        assert link.copy(status=LinkStatus.QUOTA_FULL).is_terminal
