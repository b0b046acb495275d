"""
Link Lifecycle Manager

Drives each survey link through its state machine:

    UNUSED -> CLICKED -> COMPLETED | DISQUALIFIED | QUOTA_FULL
    UNUSED -> DISQUALIFIED | QUOTA_FULL   (gate or quota refused the first click)

The gate is consulted before every transition, the scoring engine runs on
completion, and quota is charged atomically with the final status write.
Reputation and geolocation outages never abort a transition.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

import httpx

from ..errors import CollaboratorUnavailable, InvalidState, ValidationError
from ..gate import GateDecision, GeoGate
from ..generation.resp_ids import build_survey_url
from ..integrations import ApiClientError
from ..models import (
    CompletionMetadata,
    LinkStatus,
    ManualReview,
    NetworkContext,
    QCResult,
    Recommendation,
    ReputationLookup,
    ResponsePayload,
    ReviewDisposition,
    SurveyLink,
    utcnow,
)
from ..persistence import LinkStore
from ..quality import extract_domain
from ..scoring import QualityScoringEngine

logger = logging.getLogger(__name__)

QC_EXCLUDED = "qc_excluded"


@dataclass
class ClickOutcome:
    link: SurveyLink
    decision: GateDecision

    def to_dict(self):
        return {"link": self.link.to_dict(), "decision": self.decision.to_dict()}


@dataclass
class CompletionOutcome:
    link: SurveyLink
    qc_result: Optional[QCResult] = None
    decision: Optional[GateDecision] = None

    def to_dict(self):
        return {
            "link": self.link.to_dict(),
            "qc_result": self.qc_result.to_dict() if self.qc_result else None,
            "decision": self.decision.to_dict() if self.decision else None,
        }


def _merge_flags(*groups) -> list:
    merged = []
    for group in groups:
        for flag in group or ():
            if flag not in merged:
                merged.append(flag)
    return merged


class LinkLifecycleManager:
    """
    Per-link state machine over a LinkStore.

    Usage:
        manager = LinkLifecycleManager(store, GeoGate(ipinfo), QualityScoringEngine())
        outcome = await manager.register_click(token, network_context)
        outcome = await manager.register_completion(token, answers, metadata)
    """

    def __init__(
        self,
        store: LinkStore,
        gate: Optional[GeoGate] = None,
        engine: Optional[QualityScoringEngine] = None,
        reputation=None,
        collaborator_timeout: float = 3.0,
    ):
        self.store = store
        self.gate = gate or GeoGate()
        self.engine = engine or QualityScoringEngine()
        self.reputation = reputation
        self.collaborator_timeout = collaborator_timeout

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get_link(self, link_id: str) -> SurveyLink:
        return await self.store.get_link(link_id)

    async def get_link_by_token(self, token: str) -> SurveyLink:
        return await self.store.get_link_by_token(token)

    async def survey_url(self, link: SurveyLink) -> str:
        """Where a participant is sent: the link's own URL, else the project's with the resp id."""
        if link.survey_url:
            return link.survey_url
        project = await self.store.get_project(link.project_ref)
        return build_survey_url(project.survey_url, link.resp_id)

    # =========================================================================
    # Click
    # =========================================================================

    async def register_click(
        self,
        token: str,
        network_context: Optional[NetworkContext] = None,
    ) -> ClickOutcome:
        """
        Record the first open of a link.

        A repeated click on a CLICKED link returns it unchanged without
        re-running the gate. Any other non-UNUSED status is an InvalidState.
        """
        link = await self.store.get_link_by_token(token)

        if link.status == LinkStatus.CLICKED:
            return ClickOutcome(link, GateDecision(allow=True, flags=list(link.gate_flags)))
        if link.status != LinkStatus.UNUSED:
            raise InvalidState(
                f"Link {link.id} can no longer be opened",
                current_status=link.status.value,
            )

        project = await self.store.get_project(link.project_ref)
        policy = project.policy
        decision = self.gate.evaluate(network_context, policy.gate)

        changes = {
            "clicked_at": utcnow(),
            "network_context": network_context,
            "gate_flags": list(decision.flags),
        }
        if not decision.allow:
            changes.update(status=LinkStatus.DISQUALIFIED, disqualify_reason=decision.reason)
        elif policy.check_quota_on_click and (
            await self.store.resolve_quota(link.project_ref, link.vendor_ref)
        ).is_full:
            changes.update(status=LinkStatus.QUOTA_FULL)
        else:
            changes.update(status=LinkStatus.CLICKED)

        updated = await self.store.claim_click(link.id, changes)
        if updated is None:
            # Another click won the compare-and-set
            current = await self.store.get_link(link.id)
            if current.status == LinkStatus.CLICKED:
                return ClickOutcome(current, GateDecision(allow=True, flags=list(current.gate_flags)))
            raise InvalidState(
                f"Link {link.id} can no longer be opened",
                current_status=current.status.value,
            )

        logger.info(
            f"Link {link.id} clicked -> {updated.status.value}"
            + (f" ({decision.reason})" if decision.reason else "")
        )
        return ClickOutcome(updated, decision)

    # =========================================================================
    # Completion
    # =========================================================================

    async def register_completion(
        self,
        token: str,
        response_payload: Union[ResponsePayload, Mapping[str, Any]],
        metadata: Union[CompletionMetadata, Mapping[str, Any], None] = None,
    ) -> CompletionOutcome:
        """
        Finish an in-progress link.

        Order: gate re-check, scoring, then either DISQUALIFIED (gate deny or
        an "exclude" verdict) or the atomic quota charge that yields
        COMPLETED or QUOTA_FULL.
        """
        link = await self.store.get_link_by_token(token)
        if link.status != LinkStatus.CLICKED:
            raise InvalidState(
                f"Link {link.id} is not in progress",
                current_status=link.status.value,
            )

        if not isinstance(response_payload, ResponsePayload):
            response_payload = ResponsePayload.from_mapping(response_payload or {})
        if not isinstance(metadata, CompletionMetadata):
            metadata = CompletionMetadata.from_dict(metadata)

        project = await self.store.get_project(link.project_ref)
        policy = project.policy

        decision = self.gate.evaluate(metadata.network or link.network_context, policy.gate)
        gate_flags = _merge_flags(link.gate_flags, decision.flags)
        changes = {
            "completed_at": utcnow(),
            "completion_metadata": metadata,
            "gate_flags": gate_flags,
        }

        if not decision.allow:
            changes.update(status=LinkStatus.DISQUALIFIED, disqualify_reason=decision.reason)
            updated = await self._finish(link, changes)
            logger.info(f"Link {link.id} disqualified at completion ({decision.reason})")
            return CompletionOutcome(updated, None, decision)

        reputation = await self._lookup_reputation(response_payload)
        scoring_policy = self.engine.policy.with_overrides(policy.scoring_overrides)
        qc_result = self.engine.evaluate(
            response_payload,
            metadata,
            network_context=link.network_context,
            policy=scoring_policy,
            reputation=reputation,
            honeypot_fields=policy.honeypot_fields,
        )
        changes["qc_result"] = qc_result

        if qc_result.recommendation == Recommendation.EXCLUDE:
            changes.update(status=LinkStatus.DISQUALIFIED, disqualify_reason=QC_EXCLUDED)
            updated = await self._finish(link, changes)
            logger.info(f"Link {link.id} disqualified by QC (score {qc_result.score})")
        else:
            updated = await self.store.complete_link(link.id, changes)

        return CompletionOutcome(updated, qc_result, decision)

    async def _finish(self, link: SurveyLink, changes) -> SurveyLink:
        updated = await self.store.update_link(link.id, LinkStatus.CLICKED, changes)
        if updated is None:
            current = await self.store.get_link(link.id)
            raise InvalidState(
                f"Link {link.id} is not in progress",
                current_status=current.status.value,
            )
        return updated

    async def _lookup_reputation(self, payload: ResponsePayload) -> Optional[ReputationLookup]:
        """Remote verdicts for answered email domains; outages become `unavailable`."""
        if self.reputation is None:
            return None
        domains = [d for d in (extract_domain(e) for e in payload.email_answers()) if d]
        if not domains:
            return None
        try:
            return await self.remote_reputation(domains)
        except CollaboratorUnavailable as e:
            logger.warning(f"Reputation service unavailable: {e.reason}")
            return ReputationLookup(unavailable=tuple(domains))

    async def remote_reputation(self, domains) -> ReputationLookup:
        """Time-bounded reputation lookup. Raises CollaboratorUnavailable."""
        if self.reputation is None:
            raise CollaboratorUnavailable("reputation", "no reputation client configured")
        try:
            return await asyncio.wait_for(
                self.reputation.check_domains(domains, timeout=self.collaborator_timeout),
                self.collaborator_timeout + 1,
            )
        except asyncio.TimeoutError:
            raise CollaboratorUnavailable("reputation", f"no answer within {self.collaborator_timeout + 1}s")
        except (ApiClientError, httpx.HTTPError) as e:
            raise CollaboratorUnavailable("reputation", repr(e)) from e

    # =========================================================================
    # Corrections and review
    # =========================================================================

    async def correct_vendor_assignment(self, link_id: str, new_vendor_ref: str) -> SurveyLink:
        """Move a not-yet-finished link to another vendor of its project, once."""
        link = await self.store.get_link(link_id)
        if link.vendor_corrected_at is not None:
            raise InvalidState(f"Vendor of link {link_id} was already corrected")
        if link.status not in (LinkStatus.UNUSED, LinkStatus.CLICKED):
            raise InvalidState(
                f"Vendor of link {link_id} can no longer change",
                current_status=link.status.value,
            )
        if new_vendor_ref not in await self.store.project_vendor_refs(link.project_ref):
            raise ValidationError(
                f"Vendor {new_vendor_ref} is not assigned to project {link.project_ref}",
                {"vendor_ref": new_vendor_ref, "project_ref": link.project_ref},
            )

        updated = await self.store.update_link(
            link.id,
            link.status,
            {"vendor_ref": new_vendor_ref, "vendor_corrected_at": utcnow()},
        )
        if updated is None:
            current = await self.store.get_link(link.id)
            if current.vendor_corrected_at is not None:
                raise InvalidState(f"Vendor of link {link_id} was already corrected")
            raise InvalidState(
                f"Link {link_id} changed state during vendor correction",
                current_status=current.status.value,
            )

        logger.info(f"Link {link_id} vendor {link.vendor_ref} -> {new_vendor_ref}")
        return updated

    async def apply_manual_review(
        self,
        link_id: str,
        disposition: Union[ReviewDisposition, str],
        reviewed_by: str,
        reasoning: str = "",
    ) -> SurveyLink:
        """Attach a reviewer verdict. The QCResult and status are left as they are."""
        if not isinstance(disposition, ReviewDisposition):
            try:
                disposition = ReviewDisposition(str(disposition).upper())
            except ValueError:
                raise ValidationError(f"Unknown review disposition: {disposition!r}")
        if not reviewed_by:
            raise ValidationError("reviewed_by is required")

        link = await self.store.get_link(link_id)
        if link.qc_result is None:
            raise InvalidState(
                f"Link {link_id} has no QC result to review",
                current_status=link.status.value,
            )

        review = ManualReview(
            disposition=disposition,
            reviewed_by=reviewed_by,
            reasoning=reasoning,
            previous_disposition=link.effective_disposition,
        )
        updated = await self.store.update_link(link.id, link.status, {"manual_review": review})
        if updated is None:
            raise InvalidState(f"Link {link_id} changed state during review")

        logger.info(
            f"Manual review on {link_id}: {review.previous_disposition} -> {disposition.value} "
            f"by {reviewed_by}"
        )
        return updated
