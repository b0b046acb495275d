"""
Admin Authentication

Administrative routes (link generation, vendor correction, manual QC
review) require the `X-API-Key` header to match ADMIN_API_KEY.
"""

import logging
import secrets

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from .dependencies import get_services
from linkguard.services import LinkGuardServices

logger = logging.getLogger(__name__)

API_KEY_NAME = "X-API-Key"

api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=False)


async def verify_admin_key(
    api_key: str = Security(api_key_header),
    services: LinkGuardServices = Depends(get_services),
) -> str:
    """Validate the admin key. 503 when none is configured, 401 when missing or wrong."""
    expected = services.settings.ADMIN_API_KEY
    if not expected:
        logger.warning("Admin route called but ADMIN_API_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Administrative API is not configured",
        )

    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing API key. Please provide the '{API_KEY_NAME}' header.",
        )

    if not secrets.compare_digest(api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

    return api_key
