"""
Survey Link Guard API

FastAPI application exposing the link lifecycle, generation and QC review
operations. Domain errors are mapped to HTTP status codes in one place:

- NotFound -> 404
- InvalidState -> 409
- ValidationError -> 400
- GenerationError -> 502

Run with: uvicorn api.main:app
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from linkguard import __version__
from linkguard.errors import (
    GenerationError,
    InvalidState,
    LinkGuardError,
    NotFound,
    ValidationError,
)
from linkguard.services import LinkGuardServices, build_services
from linkguard.utils.config import get_settings

from . import links, qc

# Configure logging to stdout
logging.basicConfig(
    level=getattr(logging, get_settings().LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

ERROR_STATUS = (
    (NotFound, 404),
    (InvalidState, 409),
    (ValidationError, 400),
    (GenerationError, 502),
)


def status_for(error: LinkGuardError) -> int:
    for error_class, status_code in ERROR_STATUS:
        if isinstance(error, error_class):
            return status_code
    return 500


async def handle_domain_error(request: Request, exc: LinkGuardError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app(services: Optional[LinkGuardServices] = None) -> FastAPI:
    """
    Build the application.

    With no services given, the default service graph is built on startup
    from environment settings.
    """
    app = FastAPI(
        title="Survey Link Guard",
        description="Single-use survey links with geo gating and response quality control",
        version=__version__,
    )
    app.state.services = services

    app.add_exception_handler(LinkGuardError, handle_domain_error)
    app.include_router(links.router)
    app.include_router(qc.router)

    # ========================================================================
    # STARTUP / SHUTDOWN
    # ========================================================================

    @app.on_event("startup")
    async def startup_event():
        if app.state.services is None:
            logger.info("Building services...")
            app.state.services = build_services()
        logger.info("Survey Link Guard ready")

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.services is not None:
            await app.state.services.close()

    # ========================================================================
    # HEALTH
    # ========================================================================

    @app.get("/health")
    async def health():
        """Liveness plus store connectivity."""
        current = app.state.services
        database = "unknown"
        if current is not None:
            database = "connected" if await current.store.ping() else "disconnected"
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "database": database,
        }

    return app


app = create_app()


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    from dotenv import load_dotenv

    # Collaborator config reads os.environ directly
    load_dotenv()

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
