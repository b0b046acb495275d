"""Bulk survey link generation."""

from .orchestrator import (
    MAX_LINKS_PER_VENDOR,
    MAX_LINKS_TOTAL,
    MAX_LINKS_UNRESTRICTED,
    GenerationMode,
    GenerationRequest,
    GenerationResult,
    LinkGenerator,
    new_token,
    participant_url,
)
from .resp_ids import build_survey_url, parse_resp_id, sequential_resp_ids

__all__ = [
    "MAX_LINKS_PER_VENDOR",
    "MAX_LINKS_TOTAL",
    "MAX_LINKS_UNRESTRICTED",
    "GenerationMode",
    "GenerationRequest",
    "GenerationResult",
    "LinkGenerator",
    "new_token",
    "participant_url",
    "build_survey_url",
    "parse_resp_id",
    "sequential_resp_ids",
]
