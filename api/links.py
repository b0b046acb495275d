"""
Survey Link API

Thin adapters over the link lifecycle and generation components.

Endpoints:
- POST /api/links/click: participant opened a link
- POST /api/links/complete: participant finished the survey
- POST /api/links/generate: bulk link generation (admin)
- POST /api/links/{link_id}/vendor: one-time vendor correction (admin)
- GET  /api/links/{link_id}: link details (admin)
"""

import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from linkguard.generation import GenerationMode, GenerationRequest
from linkguard.models import CompletionMetadata, LinkStatus
from linkguard.services import LinkGuardServices

from .auth import verify_admin_key
from .dependencies import get_services, participant_origin

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/links", tags=["Links"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class ClickRequest(BaseModel):
    """Participant opened a link."""
    token: str = Field(..., min_length=1)


class CompletionRequest(BaseModel):
    """Participant submitted the survey. Network fields in `metadata` are ignored."""
    token: str = Field(..., min_length=1)
    responses: Dict[str, Any] = Field(default_factory=dict, description="question_id -> answer")
    metadata: CompletionMetadata = Field(default_factory=CompletionMetadata)


class GenerateRequest(BaseModel):
    """Bulk generation request."""
    project_ref: str
    mode: Literal["sequential", "imported", "hybrid"] = "sequential"
    start_resp_id: Optional[str] = None
    test_count: int = Field(default=0, ge=0)
    live_count: int = Field(default=0, ge=0)
    imported_resp_ids: List[str] = Field(default_factory=list)
    vendor_refs: List[str] = Field(default_factory=list)
    survey_url: Optional[str] = None


class VendorCorrectionRequest(BaseModel):
    vendor_ref: str = Field(..., min_length=1)


# =============================================================================
# PARTICIPANT ENDPOINTS
# =============================================================================

@router.post("/click")
async def register_click(
    body: ClickRequest,
    request: Request,
    services: LinkGuardServices = Depends(get_services),
):
    """Record the first open of a link and report the gate's decision."""
    ip, hints = participant_origin(request, services.settings.trusted_proxies)
    context = await services.gate.resolve(ip, hints)
    outcome = await services.lifecycle.register_click(body.token, context)
    proceed = outcome.link.status == LinkStatus.CLICKED
    return {
        "status": outcome.link.status.value,
        "allowed": outcome.decision.allow,
        "reason": outcome.decision.reason,
        "flags": outcome.decision.flags,
        "survey_url": await services.lifecycle.survey_url(outcome.link) if proceed else None,
    }


@router.post("/complete")
async def register_completion(
    body: CompletionRequest,
    request: Request,
    services: LinkGuardServices = Depends(get_services),
):
    """Score a finished response and settle the link against its quota."""
    metadata = body.metadata
    # Completion-time network is resolved here; without a peer the click context is reused
    ip, hints = participant_origin(request, services.settings.trusted_proxies)
    metadata.network = await services.gate.resolve(ip, hints) if ip else None

    outcome = await services.lifecycle.register_completion(body.token, body.responses, metadata)
    qc = outcome.qc_result
    return {
        "status": outcome.link.status.value,
        "disqualify_reason": outcome.link.disqualify_reason,
        "qc": {
            "score": qc.score,
            "risk_level": qc.risk_level.value,
            "recommendation": qc.recommendation.value,
            "flags": list(qc.flags),
        } if qc else None,
    }


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@router.post("/generate", dependencies=[Depends(verify_admin_key)])
async def generate_links(
    body: GenerateRequest,
    services: LinkGuardServices = Depends(get_services),
):
    """Generate a batch of links. Partial failures are reported in `failed_count`."""
    request = GenerationRequest(
        project_ref=body.project_ref,
        mode=GenerationMode(body.mode),
        start_resp_id=body.start_resp_id,
        test_count=body.test_count,
        live_count=body.live_count,
        imported_resp_ids=body.imported_resp_ids,
        vendor_refs=body.vendor_refs,
        survey_url=body.survey_url,
    )
    result = await services.generator.generate(request)
    return {"success": True, **result.to_dict(services.settings.LINK_BASE_URL)}


@router.post("/{link_id}/vendor", dependencies=[Depends(verify_admin_key)])
async def correct_vendor(
    link_id: str,
    body: VendorCorrectionRequest,
    services: LinkGuardServices = Depends(get_services),
):
    link = await services.lifecycle.correct_vendor_assignment(link_id, body.vendor_ref)
    return link.to_dict()


@router.get("/{link_id}", dependencies=[Depends(verify_admin_key)])
async def get_link(
    link_id: str,
    services: LinkGuardServices = Depends(get_services),
):
    link = await services.lifecycle.get_link(link_id)
    return link.to_dict()
