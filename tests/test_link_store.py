"""
Tests for the Link Stores

Store behavior is checked against both the in-memory store and the SQLite-backed
SQL store through the parametrized `store` fixture.
"""

import asyncio

import pytest
from unittest.mock import MagicMock, patch

from linkguard.database import SQLLinkStore
from linkguard.errors import InvalidState, NotFound, ValidationError
from linkguard.integrations import ExternalAPIClients, ExternalAPIConfig
from linkguard.models import (
    LinkStatus,
    NetworkContext,
    Project,
    SurveyLink,
    Vendor,
    new_id,
    utcnow,
)
from linkguard.services import build_services
from linkguard.utils.config import Settings


class TestProjectsAndVendors:
    """Test project, vendor and assignment records."""

    @pytest.mark.asyncio
    async def test_project_round_trip(self, store, seed):
        await seed(store, settings={"allowed_countries": ["SE"]})

        project = await store.get_project("p1")

        assert project.name == "Brand tracker"
        assert project.settings == {"allowed_countries": ["SE"]}
        assert project.policy.gate.allowed_countries == ("SE",)

    @pytest.mark.asyncio
    async def test_project_with_bad_scoring_settings_rejected(self, store):
        with pytest.raises(ValidationError):
            await store.save_project(Project(id="p3", name="Typo", settings={"scoring": {"exlude_score": 40}}))

        with pytest.raises(NotFound):
            await store.get_project("p3")

    @pytest.mark.asyncio
    async def test_unknown_project(self, store):
        with pytest.raises(NotFound):
            await store.get_project("nope")

    @pytest.mark.asyncio
    async def test_vendor_assignment(self, store, seed):
        await seed(store)

        assert sorted(await store.project_vendor_refs("p1")) == ["v1", "v2"]

    @pytest.mark.asyncio
    async def test_assign_unknown_vendor(self, store, seed):
        await seed(store)
        with pytest.raises(NotFound):
            await store.assign_vendor("p1", "ghost")

    @pytest.mark.asyncio
    async def test_assign_with_quota(self, store):
        await store.save_project(Project(id="p2", name="Other"))
        await store.save_vendor(Vendor(id="v9", name="Nine"))

        await store.assign_vendor("p2", "v9", quota=4)

        pool = await store.get_quota("p2", "v9")
        assert pool.limit == 4
        assert pool.current == 0


class TestQuotaPools:
    """Test quota pool configuration."""

    @pytest.mark.asyncio
    async def test_negative_limit_rejected(self, store, seed):
        await seed(store)
        with pytest.raises(ValidationError):
            await store.set_quota("p1", None, -1)

    @pytest.mark.asyncio
    async def test_limit_change_keeps_count(self, store, seed, make_link):
        await seed(store, project_quota=5)
        link = await make_link(store, "t1")
        await store.claim_click(link.id, {"status": LinkStatus.CLICKED, "clicked_at": utcnow()})
        await store.complete_link(link.id, {"completed_at": utcnow()})

        pool = await store.set_quota("p1", None, 3)

        assert pool.limit == 3
        assert pool.current == 1

    @pytest.mark.asyncio
    async def test_limit_below_current_rejected(self, store, seed, make_link):
        await seed(store, project_quota=5)
        link = await make_link(store, "t1")
        await store.claim_click(link.id, {"status": LinkStatus.CLICKED})
        await store.complete_link(link.id, {})

        with pytest.raises(ValidationError):
            await store.set_quota("p1", None, 0)

    @pytest.mark.asyncio
    async def test_resolve_prefers_vendor_pool(self, store, seed):
        await seed(store, project_quota=10, vendor_quotas={"v1": 2})

        assert (await store.resolve_quota("p1", "v1")).limit == 2
        assert (await store.resolve_quota("p1", "v2")).limit == 10
        assert (await store.resolve_quota("p1", None)).limit == 10

    @pytest.mark.asyncio
    async def test_resolve_without_pool(self, store, seed):
        await seed(store, project_quota=None)
        with pytest.raises(NotFound):
            await store.resolve_quota("p1", "v1")


class TestLinks:
    """Test link creation and lookup."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store, seed, make_link):
        await seed(store)
        link = await make_link(store, "tok-1", resp_id="al001")

        by_id = await store.get_link(link.id)
        by_token = await store.get_link_by_token("tok-1")

        assert by_id.resp_id == "al001"
        assert by_token.id == link.id
        assert by_token.status == LinkStatus.UNUSED

    @pytest.mark.asyncio
    async def test_duplicate_token_rejected(self, store, seed, make_link):
        await seed(store)
        await make_link(store, "same")

        with pytest.raises(ValidationError):
            await make_link(store, "same", resp_id="other")

    @pytest.mark.asyncio
    async def test_duplicate_resp_id_in_batch_rejected(self, store, seed):
        await seed(store)

        def link(token):
            return SurveyLink(id=new_id(), project_ref="p1", vendor_ref="v1",
                              resp_id="al001", token=token, batch_id="b1")

        await store.create_link(link("a"))
        with pytest.raises(ValidationError):
            await store.create_link(link("b"))

    @pytest.mark.asyncio
    async def test_unknown_token(self, store):
        with pytest.raises(NotFound):
            await store.get_link_by_token("missing")

    @pytest.mark.asyncio
    async def test_list_links_filters(self, store, seed, make_link):
        await seed(store)
        first = await make_link(store, "a", vendor_ref="v1")
        await make_link(store, "b", vendor_ref="v2")
        await store.claim_click(first.id, {"status": LinkStatus.CLICKED})

        assert len(await store.list_links("p1")) == 2
        assert [l.token for l in await store.list_links("p1", vendor_ref="v2")] == ["b"]
        assert [l.token for l in await store.list_links("p1", status=LinkStatus.CLICKED)] == ["a"]

    @pytest.mark.asyncio
    async def test_returned_links_are_copies(self, store, seed, make_link):
        await seed(store)
        link = await make_link(store, "a")

        loaded = await store.get_link(link.id)
        loaded.gate_flags.append("tampered")

        assert (await store.get_link(link.id)).gate_flags == []


class TestCompareAndSet:
    """Test conditional link updates."""

    @pytest.mark.asyncio
    async def test_update_applies_when_status_matches(self, store, seed, make_link, us_context):
        await seed(store)
        link = await make_link(store, "a")

        updated = await store.update_link(link.id, LinkStatus.UNUSED, {
            "status": LinkStatus.CLICKED,
            "clicked_at": utcnow(),
            "network_context": us_context,
            "gate_flags": ["geo_unavailable"],
        })

        assert updated.status == LinkStatus.CLICKED
        assert updated.network_context == us_context
        assert updated.gate_flags == ["geo_unavailable"]

    @pytest.mark.asyncio
    async def test_update_returns_none_on_status_mismatch(self, store, seed, make_link):
        await seed(store)
        link = await make_link(store, "a")

        result = await store.update_link(link.id, LinkStatus.CLICKED, {"status": LinkStatus.COMPLETED})

        assert result is None
        assert (await store.get_link(link.id)).status == LinkStatus.UNUSED

    @pytest.mark.asyncio
    async def test_second_claim_loses(self, store, seed, make_link):
        await seed(store)
        link = await make_link(store, "a")

        first = await store.claim_click(link.id, {"status": LinkStatus.CLICKED})
        second = await store.claim_click(link.id, {"status": LinkStatus.DISQUALIFIED})

        assert first.status == LinkStatus.CLICKED
        assert second is None

    @pytest.mark.asyncio
    async def test_forbidden_transition_raises(self, store, seed, make_link):
        await seed(store)
        link = await make_link(store, "a")

        with pytest.raises(InvalidState):
            await store.update_link(link.id, LinkStatus.UNUSED, {"status": LinkStatus.COMPLETED})

    @pytest.mark.asyncio
    async def test_update_unknown_link(self, store):
        with pytest.raises(NotFound):
            await store.update_link("missing", LinkStatus.UNUSED, {"gate_flags": []})

    @pytest.mark.asyncio
    async def test_set_once_field(self, store, seed, make_link):
        await seed(store)
        link = await make_link(store, "a")

        first = await store.update_link(link.id, LinkStatus.UNUSED, {
            "vendor_ref": "v2",
            "vendor_corrected_at": utcnow(),
        })
        second = await store.update_link(link.id, LinkStatus.UNUSED, {
            "vendor_ref": "v1",
            "vendor_corrected_at": utcnow(),
        })

        assert first.vendor_ref == "v2"
        assert second is None
        assert (await store.get_link(link.id)).vendor_ref == "v2"


class TestCompleteLink:
    """Test the atomic completion against a quota pool."""

    @pytest.mark.asyncio
    async def test_completes_and_counts(self, store, seed, make_link):
        await seed(store, project_quota=2)
        link = await make_link(store, "a")
        await store.claim_click(link.id, {"status": LinkStatus.CLICKED})

        done = await store.complete_link(link.id, {"completed_at": utcnow()})

        assert done.status == LinkStatus.COMPLETED
        assert done.completed_at is not None
        assert (await store.get_quota("p1", None)).current == 1

    @pytest.mark.asyncio
    async def test_full_pool_means_quota_full(self, store, seed, make_link):
        await seed(store, project_quota=0)
        link = await make_link(store, "a")
        await store.claim_click(link.id, {"status": LinkStatus.CLICKED})

        done = await store.complete_link(link.id, {"completed_at": utcnow()})

        assert done.status == LinkStatus.QUOTA_FULL
        assert (await store.get_quota("p1", None)).current == 0

    @pytest.mark.asyncio
    async def test_vendor_pool_counted_not_project_pool(self, store, seed, make_link):
        await seed(store, project_quota=10, vendor_quotas={"v1": 1})
        link = await make_link(store, "a", vendor_ref="v1")
        await store.claim_click(link.id, {"status": LinkStatus.CLICKED})

        await store.complete_link(link.id, {})

        assert (await store.get_quota("p1", "v1")).current == 1
        assert (await store.get_quota("p1", None)).current == 0

    @pytest.mark.asyncio
    async def test_unclicked_link_rejected(self, store, seed, make_link):
        await seed(store)
        link = await make_link(store, "a")

        with pytest.raises(InvalidState) as exc:
            await store.complete_link(link.id, {})

        assert exc.value.current_status == "UNUSED"
        assert (await store.get_quota("p1", None)).current == 0

    @pytest.mark.asyncio
    async def test_completed_link_cannot_complete_again(self, store, seed, make_link):
        await seed(store)
        link = await make_link(store, "a")
        await store.claim_click(link.id, {"status": LinkStatus.CLICKED})
        await store.complete_link(link.id, {})

        with pytest.raises(InvalidState):
            await store.complete_link(link.id, {})
        assert (await store.get_quota("p1", None)).current == 1

    @pytest.mark.asyncio
    async def test_missing_pool_writes_nothing(self, store, seed, make_link):
        await seed(store, project_quota=None)
        link = await make_link(store, "a")
        await store.claim_click(link.id, {"status": LinkStatus.CLICKED})

        with pytest.raises(NotFound):
            await store.complete_link(link.id, {"disqualify_reason": "should not persist"})

        stored = await store.get_link(link.id)
        assert stored.status == LinkStatus.CLICKED
        assert stored.disqualify_reason is None

    @pytest.mark.asyncio
    async def test_network_context_survives(self, store, seed, make_link):
        await seed(store)
        link = await make_link(store, "a")
        context = NetworkContext(ip="203.0.113.1", country="SE", is_proxy=True)
        await store.claim_click(link.id, {"status": LinkStatus.CLICKED, "network_context": context})

        done = await store.complete_link(link.id, {})

        assert done.network_context == context


class TestSQLStoreClose:
    """Test that closing the SQL store releases its engine."""

    @pytest.mark.asyncio
    async def test_close_disposes_engine(self):
        engine = MagicMock()
        store = SQLLinkStore(MagicMock(), engine=engine)

        await store.close()

        engine.dispose.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_without_engine(self):
        await SQLLinkStore(MagicMock()).close()

    def test_service_shutdown_disposes_engine(self, tmp_path):
        services = build_services(
            Settings(DATABASE_URL=None, SQLITE_PATH=str(tmp_path / "services.db"), IPINFO_ENABLED=False),
            clients=ExternalAPIClients(ExternalAPIConfig(ipinfo_enabled=False, reputation_enabled=False)),
        )
        engine = services.store.engine

        with patch.object(engine, "dispose", wraps=engine.dispose) as dispose:
            asyncio.run(services.close())

        dispose.assert_called_once()
