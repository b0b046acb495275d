"""
Service Container

Wires settings, persistence, collaborator clients, gate, scoring engine,
lifecycle manager and generator into one object the API layer holds.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..database import SQLLinkStore, create_db_engine, get_database_url, init_db, make_session_factory
from ..gate import GeoGate
from ..generation import LinkGenerator
from ..integrations import ExternalAPIClients, ExternalAPIConfig
from ..lifecycle import LinkLifecycleManager
from ..persistence import LinkStore
from ..scoring import QualityScoringEngine
from ..utils.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class LinkGuardServices:
    settings: Settings
    store: LinkStore
    clients: ExternalAPIClients
    gate: GeoGate
    engine: QualityScoringEngine
    lifecycle: LinkLifecycleManager
    generator: LinkGenerator

    async def close(self):
        await self.clients.close()
        await self.store.close()


def build_services(
    settings: Optional[Settings] = None,
    store: Optional[LinkStore] = None,
    clients: Optional[ExternalAPIClients] = None,
) -> LinkGuardServices:
    """
    Build the default service graph.

    Without an explicit store, an SQL store is created against DATABASE_URL
    (or the SQLite fallback) and its tables are created if missing.
    """
    settings = settings or get_settings()

    if store is None:
        engine = create_db_engine(get_database_url(settings), echo=settings.SQL_DEBUG)
        init_db(engine)
        store = SQLLinkStore(make_session_factory(engine), engine=engine)

    if clients is None:
        config = ExternalAPIConfig.from_settings(settings)
        config.log_status()
        clients = ExternalAPIClients(config)

    gate = GeoGate(clients.ipinfo, timeout=settings.COLLABORATOR_TIMEOUT)
    scoring = QualityScoringEngine()
    lifecycle = LinkLifecycleManager(
        store,
        gate=gate,
        engine=scoring,
        reputation=clients.reputation,
        collaborator_timeout=settings.COLLABORATOR_TIMEOUT,
    )
    generator = LinkGenerator(
        store,
        batch_size=settings.GENERATION_BATCH_SIZE,
        batch_delay=settings.GENERATION_BATCH_DELAY,
    )

    logger.info(f"Services built with {type(store).__name__}")
    return LinkGuardServices(
        settings=settings,
        store=store,
        clients=clients,
        gate=gate,
        engine=scoring,
        lifecycle=lifecycle,
        generator=generator,
    )
