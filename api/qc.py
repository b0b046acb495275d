"""
Quality Control API

Endpoints:
- POST /api/qc/override: attach a manual review to a scored link
- GET  /api/qc/summary/{project_ref}: detector statistics for a project
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from linkguard.models import LinkStatus
from linkguard.scoring import summarize_qc_results
from linkguard.services import LinkGuardServices

from .auth import verify_admin_key
from .dependencies import get_services

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/qc",
    tags=["Quality Control"],
    dependencies=[Depends(verify_admin_key)],
)


class OverrideRequest(BaseModel):
    """Reviewer verdict for one link."""
    link_id: str
    disposition: Literal["APPROVED", "REJECTED", "UNDER_REVIEW"]
    reviewed_by: str = Field(..., min_length=1)
    reasoning: str = ""


@router.post("/override")
async def override_qc(
    body: OverrideRequest,
    services: LinkGuardServices = Depends(get_services),
):
    link = await services.lifecycle.apply_manual_review(
        body.link_id,
        body.disposition,
        body.reviewed_by,
        body.reasoning,
    )
    return {
        "link_id": link.id,
        "manual_review": link.manual_review.to_dict(),
        "effective_disposition": link.effective_disposition,
        "qc_recommendation": link.qc_result.recommendation.value,
    }


@router.get("/summary/{project_ref}")
async def qc_summary(
    project_ref: str,
    vendor_ref: Optional[str] = None,
    services: LinkGuardServices = Depends(get_services),
):
    """Aggregate QC statistics over every scored link of a project."""
    await services.store.get_project(project_ref)
    links = await services.store.list_links(project_ref, vendor_ref=vendor_ref)
    results = [link.qc_result for link in links if link.qc_result is not None]
    summary = summarize_qc_results(results)
    summary["status_counts"] = {
        status.value: sum(1 for link in links if link.status == status)
        for status in LinkStatus
    }
    return summary
