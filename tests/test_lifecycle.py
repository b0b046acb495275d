"""
Tests for the Link Lifecycle Manager

Runs against both store implementations. Covers click idempotence, gating,
quota-on-click, completion with QC, the quota race, vendor correction and
manual review.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from linkguard.errors import CollaboratorUnavailable, InvalidState, NotFound, ValidationError
from linkguard.gate import ANONYMIZED_NETWORK, GEO_RESTRICTED, GEO_UNAVAILABLE, GeoGate
from linkguard.integrations import ReputationError
from linkguard.lifecycle import QC_EXCLUDED, LinkLifecycleManager
from linkguard.models import (
    DomainVerdict,
    LinkStatus,
    Recommendation,
    ReputationLookup,
    ReviewDisposition,
)
from linkguard.scoring import QualityScoringEngine


# ============================================================================
# Click
# ============================================================================

class TestRegisterClick:
    """Test the first open of a link."""

    @pytest.mark.asyncio
    async def test_first_click(self, store, manager, seed, make_link, us_context):
        await seed(store)
        link = await make_link(store, "tok")

        outcome = await manager.register_click("tok", us_context)

        assert outcome.decision.allow
        assert outcome.link.status == LinkStatus.CLICKED
        assert outcome.link.clicked_at is not None
        assert outcome.link.network_context == us_context
        assert (await store.get_link(link.id)).status == LinkStatus.CLICKED

    @pytest.mark.asyncio
    async def test_repeat_click_is_idempotent(self, store, manager, seed, make_link, us_context):
        await seed(store)
        await make_link(store, "tok")
        manager.gate.evaluate = MagicMock(wraps=manager.gate.evaluate)

        first = await manager.register_click("tok", us_context)
        second = await manager.register_click("tok", None)

        assert manager.gate.evaluate.call_count == 1
        assert second.link.status == LinkStatus.CLICKED
        assert second.link.clicked_at == first.link.clicked_at
        assert second.link.network_context == us_context

    @pytest.mark.asyncio
    async def test_unknown_token(self, store, manager, seed):
        await seed(store)
        with pytest.raises(NotFound):
            await manager.register_click("nope", None)

    @pytest.mark.asyncio
    async def test_missing_geo_allows_with_flag(self, store, manager, seed, make_link):
        await seed(store, settings={"allowed_countries": ["SE"]})
        await make_link(store, "tok")

        outcome = await manager.register_click("tok", None)

        assert outcome.link.status == LinkStatus.CLICKED
        assert outcome.link.gate_flags == [GEO_UNAVAILABLE]

    @pytest.mark.asyncio
    async def test_geo_restricted_disqualifies(self, store, manager, seed, make_link, us_context):
        await seed(store, settings={"allowed_countries": ["SE", "NO"]})
        await make_link(store, "tok")

        outcome = await manager.register_click("tok", us_context)

        assert not outcome.decision.allow
        assert outcome.link.status == LinkStatus.DISQUALIFIED
        assert outcome.link.disqualify_reason == GEO_RESTRICTED
        assert outcome.link.clicked_at is not None

    @pytest.mark.asyncio
    async def test_disqualified_link_cannot_be_reopened(self, store, manager, seed, make_link, us_context):
        await seed(store, settings={"allowed_countries": ["SE"]})
        await make_link(store, "tok")
        await manager.register_click("tok", us_context)

        with pytest.raises(InvalidState) as exc:
            await manager.register_click("tok", us_context)

        assert exc.value.current_status == "DISQUALIFIED"

    @pytest.mark.asyncio
    async def test_vpn_warn_mode(self, store, manager, seed, make_link, vpn_context):
        await seed(store)
        await make_link(store, "tok")

        outcome = await manager.register_click("tok", vpn_context)

        assert outcome.link.status == LinkStatus.CLICKED
        assert ANONYMIZED_NETWORK in outcome.link.gate_flags

    @pytest.mark.asyncio
    async def test_vpn_block_mode(self, store, manager, seed, make_link, vpn_context):
        await seed(store, settings={"anonymized_network_mode": "block"})
        await make_link(store, "tok")

        outcome = await manager.register_click("tok", vpn_context)

        assert outcome.link.status == LinkStatus.DISQUALIFIED
        assert outcome.link.disqualify_reason == ANONYMIZED_NETWORK

    @pytest.mark.asyncio
    async def test_full_pool_on_click(self, store, manager, seed, make_link, us_context):
        await seed(store, project_quota=0)
        await make_link(store, "tok")

        outcome = await manager.register_click("tok", us_context)

        assert outcome.link.status == LinkStatus.QUOTA_FULL
        assert (await store.get_quota("p1", None)).current == 0

    @pytest.mark.asyncio
    async def test_quota_check_on_click_can_be_disabled(self, store, manager, seed, make_link, us_context):
        await seed(store, project_quota=0, settings={"check_quota_on_click": False})
        await make_link(store, "tok")

        outcome = await manager.register_click("tok", us_context)

        assert outcome.link.status == LinkStatus.CLICKED

    @pytest.mark.asyncio
    async def test_concurrent_clicks_claim_once(self, store, manager, seed, make_link, us_context):
        await seed(store)
        await make_link(store, "tok")

        outcomes = await asyncio.gather(*[manager.register_click("tok", us_context) for _ in range(5)])

        assert {o.link.status for o in outcomes} == {LinkStatus.CLICKED}
        assert len({o.link.clicked_at for o in outcomes}) == 1


# ============================================================================
# Completion
# ============================================================================

class TestRegisterCompletion:
    """Test completing an in-progress link."""

    @pytest.mark.asyncio
    async def test_clean_completion(self, store, manager, seed, make_link, us_context,
                                    clean_answers, clean_metadata):
        await seed(store, project_quota=3)
        await make_link(store, "tok")
        await manager.register_click("tok", us_context)

        outcome = await manager.register_completion("tok", clean_answers, clean_metadata)

        assert outcome.link.status == LinkStatus.COMPLETED
        assert outcome.link.completed_at is not None
        assert outcome.qc_result.recommendation == Recommendation.APPROVE
        assert outcome.link.qc_result.score == 0
        assert outcome.link.completion_metadata.time_spent_seconds == 120
        assert (await store.get_quota("p1", None)).current == 1

    @pytest.mark.asyncio
    async def test_completion_without_click(self, store, manager, seed, make_link, clean_answers):
        await seed(store)
        await make_link(store, "tok")

        with pytest.raises(InvalidState) as exc:
            await manager.register_completion("tok", clean_answers)

        assert exc.value.current_status == "UNUSED"
        assert (await store.get_quota("p1", None)).current == 0

    @pytest.mark.asyncio
    async def test_second_completion_rejected(self, store, manager, seed, make_link, us_context,
                                              clean_answers, clean_metadata):
        await seed(store)
        await make_link(store, "tok")
        await manager.register_click("tok", us_context)
        await manager.register_completion("tok", clean_answers, clean_metadata)

        with pytest.raises(InvalidState):
            await manager.register_completion("tok", clean_answers, clean_metadata)
        assert (await store.get_quota("p1", None)).current == 1

    @pytest.mark.asyncio
    async def test_fraud_is_disqualified_without_quota(self, store, manager, seed, make_link,
                                                       us_context, fraud_answers):
        await seed(store)
        await make_link(store, "tok")
        await manager.register_click("tok", us_context)

        outcome = await manager.register_completion("tok", fraud_answers)

        assert outcome.link.status == LinkStatus.DISQUALIFIED
        assert outcome.link.disqualify_reason == QC_EXCLUDED
        assert outcome.link.qc_result.recommendation == Recommendation.EXCLUDE
        assert (await store.get_quota("p1", None)).current == 0

    @pytest.mark.asyncio
    async def test_full_pool_at_completion(self, store, manager, seed, make_link, us_context,
                                           clean_answers, clean_metadata):
        await seed(store, project_quota=1)
        await make_link(store, "a")
        await make_link(store, "b")
        await manager.register_click("a", us_context)
        await manager.register_click("b", us_context)
        await manager.register_completion("a", clean_answers, clean_metadata)

        outcome = await manager.register_completion("b", clean_answers, clean_metadata)

        assert outcome.link.status == LinkStatus.QUOTA_FULL
        assert outcome.link.qc_result is not None
        assert (await store.get_quota("p1", None)).current == 1

    @pytest.mark.asyncio
    async def test_concurrent_completions_respect_limit(self, store, manager, seed, make_link, us_context,
                                                        clean_answers, clean_metadata):
        await seed(store, project_quota=1)
        for token in ("a", "b"):
            await make_link(store, token)
            await manager.register_click(token, us_context)

        outcomes = await asyncio.gather(
            manager.register_completion("a", clean_answers, clean_metadata),
            manager.register_completion("b", clean_answers, clean_metadata),
        )

        statuses = sorted(o.link.status.value for o in outcomes)
        assert statuses == ["COMPLETED", "QUOTA_FULL"]
        assert (await store.get_quota("p1", None)).current == 1

    @pytest.mark.asyncio
    async def test_vendor_pool_charged(self, store, manager, seed, make_link, us_context,
                                       clean_answers, clean_metadata):
        await seed(store, project_quota=10, vendor_quotas={"v1": 1})
        await make_link(store, "tok", vendor_ref="v1")
        await manager.register_click("tok", us_context)

        await manager.register_completion("tok", clean_answers, clean_metadata)

        assert (await store.get_quota("p1", "v1")).current == 1
        assert (await store.get_quota("p1", None)).current == 0

    @pytest.mark.asyncio
    async def test_gate_deny_at_completion(self, store, manager, seed, make_link, us_context, clean_answers):
        await seed(store, settings={"anonymized_network_mode": "block"})
        await make_link(store, "tok")
        await manager.register_click("tok", us_context)

        outcome = await manager.register_completion("tok", clean_answers, {
            "timeSpent": 120,
            "network": {"ip": "198.51.100.7", "country": "US", "is_vpn": True},
        })

        assert outcome.link.status == LinkStatus.DISQUALIFIED
        assert outcome.link.disqualify_reason == ANONYMIZED_NETWORK
        assert outcome.qc_result is None
        assert outcome.link.qc_result is None
        assert (await store.get_quota("p1", None)).current == 0

    @pytest.mark.asyncio
    async def test_ip_change_is_flagged_not_scored(self, store, manager, seed, make_link, us_context,
                                                   clean_answers):
        await seed(store)
        await make_link(store, "tok")
        await manager.register_click("tok", us_context)

        outcome = await manager.register_completion("tok", clean_answers, {
            "timeSpent": 120,
            "network": {"ip": "203.0.113.99", "country": "US"},
        })

        assert outcome.link.status == LinkStatus.COMPLETED
        assert "IP_CHANGED" in outcome.qc_result.flags
        assert outcome.qc_result.score == 0

    @pytest.mark.asyncio
    async def test_project_scoring_overrides(self, store, manager, seed, make_link, us_context):
        await seed(store, settings={"scoring": {"exclude_score": 10}})
        await make_link(store, "tok")
        await manager.register_click("tok", us_context)

        outcome = await manager.register_completion("tok", {"q1": 4, "hp_website": "http://spam.example"})

        assert outcome.link.status == LinkStatus.DISQUALIFIED
        assert outcome.link.disqualify_reason == QC_EXCLUDED

    @pytest.mark.asyncio
    async def test_project_honeypot_fields(self, store, manager, seed, make_link, us_context,
                                           clean_answers, clean_metadata):
        await seed(store, settings={"honeypot_fields": ["hp_nickname"]})
        await make_link(store, "tok")
        await manager.register_click("tok", us_context)

        outcome = await manager.register_completion(
            "tok", {**clean_answers, "hp_nickname": "botty"}, clean_metadata,
        )

        assert outcome.qc_result.detector("honeypot").triggered


class TestReputationCollaborator:
    """Test the remote reputation lookup during completion."""

    @pytest.mark.asyncio
    async def test_outage_does_not_block_completion(self, store, seed, make_link, us_context,
                                                    clean_metadata):
        reputation = MagicMock()
        reputation.check_domains = AsyncMock(side_effect=ReputationError("connection refused"))
        manager = LinkLifecycleManager(store, GeoGate(), QualityScoringEngine(), reputation=reputation)
        await seed(store)
        await make_link(store, "tok")
        await manager.register_click("tok", us_context)

        outcome = await manager.register_completion("tok", {"q1": 4, "email": "a@corp.example"}, clean_metadata)

        reputation.check_domains.assert_awaited_once()
        assert outcome.link.status == LinkStatus.COMPLETED
        assert outcome.qc_result.detector("domain_reputation").status.value == "unavailable"

    @pytest.mark.asyncio
    async def test_slow_service_does_not_block_completion(self, store, seed, make_link, us_context,
                                                          clean_metadata):
        async def slow_check(domains, timeout):
            await asyncio.sleep(5)

        reputation = MagicMock()
        reputation.check_domains = slow_check
        manager = LinkLifecycleManager(
            store, GeoGate(), QualityScoringEngine(), reputation=reputation, collaborator_timeout=0.01,
        )
        await seed(store)
        await make_link(store, "tok")
        await manager.register_click("tok", us_context)

        outcome = await manager.register_completion("tok", {"q1": 4, "email": "a@corp.example"}, clean_metadata)

        assert outcome.link.status == LinkStatus.COMPLETED
        assert outcome.qc_result.detector("domain_reputation").status.value == "unavailable"

    @pytest.mark.asyncio
    async def test_remote_reputation_reports_outage(self, memory_store):
        reputation = MagicMock()
        reputation.check_domains = AsyncMock(side_effect=ReputationError("HTTP 503", status_code=503))
        manager = LinkLifecycleManager(memory_store, reputation=reputation)

        with pytest.raises(CollaboratorUnavailable) as exc:
            await manager.remote_reputation(["corp.example"])

        assert exc.value.collaborator == "reputation"

    @pytest.mark.asyncio
    async def test_remote_verdict_used(self, store, seed, make_link, us_context, clean_metadata):
        reputation = MagicMock()
        reputation.check_domains = AsyncMock(return_value=ReputationLookup(verdicts={
            "corp.example": DomainVerdict(
                "corp.example", True, "spam-source", "remote_blocklist", 70, "remote",
            ),
        }))
        manager = LinkLifecycleManager(store, GeoGate(), QualityScoringEngine(), reputation=reputation)
        await seed(store)
        await make_link(store, "tok")
        await manager.register_click("tok", us_context)

        outcome = await manager.register_completion("tok", {"q1": 4, "email": "a@corp.example"}, clean_metadata)

        assert "BLACKLISTED_DOMAIN:spam-source:remote_blocklist" in outcome.qc_result.flags

    @pytest.mark.asyncio
    async def test_not_called_without_emails(self, store, seed, make_link, us_context,
                                             clean_answers, clean_metadata):
        reputation = MagicMock()
        reputation.check_domains = AsyncMock()
        manager = LinkLifecycleManager(store, GeoGate(), QualityScoringEngine(), reputation=reputation)
        await seed(store)
        await make_link(store, "tok")
        await manager.register_click("tok", us_context)

        await manager.register_completion("tok", clean_answers, clean_metadata)

        reputation.check_domains.assert_not_called()


# ============================================================================
# Corrections and review
# ============================================================================

class TestVendorCorrection:
    """Test one-time vendor reassignment."""

    @pytest.mark.asyncio
    async def test_correct_once(self, store, manager, seed, make_link):
        await seed(store)
        link = await make_link(store, "tok", vendor_ref="v1")

        corrected = await manager.correct_vendor_assignment(link.id, "v2")

        assert corrected.vendor_ref == "v2"
        assert corrected.vendor_corrected_at is not None
        with pytest.raises(InvalidState):
            await manager.correct_vendor_assignment(link.id, "v1")

    @pytest.mark.asyncio
    async def test_vendor_must_belong_to_project(self, store, manager, seed, make_link):
        await seed(store)
        link = await make_link(store, "tok")

        with pytest.raises(ValidationError):
            await manager.correct_vendor_assignment(link.id, "v3")

    @pytest.mark.asyncio
    async def test_clicked_link_can_be_corrected(self, store, manager, seed, make_link, us_context):
        await seed(store)
        link = await make_link(store, "tok")
        await manager.register_click("tok", us_context)

        corrected = await manager.correct_vendor_assignment(link.id, "v2")

        assert corrected.status == LinkStatus.CLICKED
        assert corrected.vendor_ref == "v2"

    @pytest.mark.asyncio
    async def test_finished_link_cannot_be_corrected(self, store, manager, seed, make_link, us_context,
                                                     clean_answers, clean_metadata):
        await seed(store)
        link = await make_link(store, "tok")
        await manager.register_click("tok", us_context)
        await manager.register_completion("tok", clean_answers, clean_metadata)

        with pytest.raises(InvalidState) as exc:
            await manager.correct_vendor_assignment(link.id, "v2")
        assert exc.value.current_status == "COMPLETED"


class TestManualReview:
    """Test reviewer overrides of QC verdicts."""

    async def _excluded_link(self, store, manager, seed, make_link, context, answers):
        await seed(store)
        link = await make_link(store, "tok")
        await manager.register_click("tok", context)
        await manager.register_completion("tok", answers)
        return link

    @pytest.mark.asyncio
    async def test_override_keeps_qc_and_status(self, store, manager, seed, make_link, us_context,
                                                fraud_answers):
        link = await self._excluded_link(store, manager, seed, make_link, us_context, fraud_answers)

        reviewed = await manager.apply_manual_review(link.id, "approved", "ana", "Known respondent")

        assert reviewed.status == LinkStatus.DISQUALIFIED
        assert reviewed.qc_result.recommendation == Recommendation.EXCLUDE
        assert reviewed.manual_review.disposition == ReviewDisposition.APPROVED
        assert reviewed.manual_review.previous_disposition == "exclude"
        assert reviewed.effective_disposition == "APPROVED"

    @pytest.mark.asyncio
    async def test_second_review_records_previous(self, store, manager, seed, make_link, us_context,
                                                  fraud_answers):
        link = await self._excluded_link(store, manager, seed, make_link, us_context, fraud_answers)
        await manager.apply_manual_review(link.id, ReviewDisposition.UNDER_REVIEW, "ana")

        reviewed = await manager.apply_manual_review(link.id, ReviewDisposition.REJECTED, "bo")

        assert reviewed.manual_review.previous_disposition == "UNDER_REVIEW"

    @pytest.mark.asyncio
    async def test_requires_qc_result(self, store, manager, seed, make_link):
        await seed(store)
        link = await make_link(store, "tok")

        with pytest.raises(InvalidState):
            await manager.apply_manual_review(link.id, "APPROVED", "ana")

    @pytest.mark.asyncio
    async def test_bad_input(self, store, manager, seed, make_link, us_context, fraud_answers):
        link = await self._excluded_link(store, manager, seed, make_link, us_context, fraud_answers)

        with pytest.raises(ValidationError):
            await manager.apply_manual_review(link.id, "maybe", "ana")
        with pytest.raises(ValidationError):
            await manager.apply_manual_review(link.id, "APPROVED", "")
