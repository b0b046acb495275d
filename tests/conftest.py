"""
Pytest Configuration and Shared Fixtures

Provides stores (in-memory and SQLite-backed), a seeding helper for
projects/vendors/quota pools, and canned survey responses.
"""

import pytest
from typing import Any, Dict, Optional

from linkguard.database import SQLLinkStore, create_db_engine, init_db, make_session_factory
from linkguard.gate import GeoGate
from linkguard.lifecycle import LinkLifecycleManager
from linkguard.models import NetworkContext, Project, SurveyLink, Vendor, new_id
from linkguard.persistence import MemoryLinkStore
from linkguard.scoring import QualityScoringEngine


# ============================================================================
# Stores
# ============================================================================

def make_sql_store(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'links.db'}", echo=False)
    init_db(engine)
    return SQLLinkStore(make_session_factory(engine)), engine


@pytest.fixture
def memory_store() -> MemoryLinkStore:
    return MemoryLinkStore()


@pytest.fixture
def sql_store(tmp_path):
    store, engine = make_sql_store(tmp_path)
    yield store
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path):
    """Every store implementation, so lifecycle guarantees are checked on both."""
    if request.param == "memory":
        yield MemoryLinkStore()
        return
    store, engine = make_sql_store(tmp_path)
    yield store
    engine.dispose()


@pytest.fixture
def seed():
    """
    Async helper registering project "p1" with vendors "v1" and "v2".

    Usage:
        await seed(store, project_quota=5, vendor_quotas={"v1": 1})
    """
    async def _seed(
        store,
        project_quota: Optional[int] = 10,
        vendor_quotas: Optional[Dict[str, int]] = None,
        settings: Optional[Dict[str, Any]] = None,
        survey_url: str = "https://survey.example.com/s?sid=42",
    ) -> Project:
        project = await store.save_project(Project(
            id="p1",
            name="Brand tracker",
            survey_url=survey_url,
            settings=settings or {},
        ))
        for vendor_id in ("v1", "v2"):
            await store.save_vendor(Vendor(id=vendor_id, name=f"Vendor {vendor_id}", code=vendor_id.upper()))
            await store.assign_vendor(project.id, vendor_id)
        if project_quota is not None:
            await store.set_quota(project.id, None, project_quota)
        for vendor_id, limit in (vendor_quotas or {}).items():
            await store.set_quota(project.id, vendor_id, limit)
        return project

    return _seed


@pytest.fixture
def make_link():
    """Async helper creating one UNUSED link."""
    async def _make_link(store, token: str, vendor_ref: Optional[str] = "v1", resp_id: Optional[str] = None):
        return await store.create_link(SurveyLink(
            id=new_id(),
            project_ref="p1",
            vendor_ref=vendor_ref,
            resp_id=resp_id or token,
            token=token,
        ))

    return _make_link


@pytest.fixture
def manager(store) -> LinkLifecycleManager:
    return LinkLifecycleManager(store, GeoGate(), QualityScoringEngine())


# ============================================================================
# Network contexts
# ============================================================================

@pytest.fixture
def us_context() -> NetworkContext:
    return NetworkContext(ip="203.0.113.10", country="US", city="Austin", source="ipinfo")


@pytest.fixture
def vpn_context() -> NetworkContext:
    return NetworkContext(ip="198.51.100.7", country="US", is_vpn=True, source="ipinfo")


# ============================================================================
# Responses
# ============================================================================

@pytest.fixture
def clean_answers() -> Dict[str, Any]:
    """A plausible human response; scores 0."""
    return {
        "q1": 4,
        "q2": 2,
        "q3": "The checkout was slow on mobile",
    }


@pytest.fixture
def clean_metadata() -> Dict[str, Any]:
    return {"timeSpent": 120}


@pytest.fixture
def fraud_answers() -> Dict[str, Any]:
    """Throwaway email domain; always excluded."""
    return {
        "q1": 4,
        "email": "someone@mailinator.com",
    }


# ============================================================================
# Test Markers
# ============================================================================

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
