"""
Link Stores

Persistence interface for projects, vendors, quota pools and survey links,
plus an in-process implementation used in tests and single-node setups.

Two operations carry the concurrency guarantees the lifecycle relies on:
- update_link(): compare-and-set on the link's current status
- complete_link(): status compare-and-set and quota increment-if-below-limit
  committed together
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..errors import InvalidState, NotFound, ValidationError
from ..models import (
    LinkStatus,
    Project,
    ProjectPolicy,
    QuotaCounter,
    SurveyLink,
    Vendor,
    ensure_transition,
    quota_key,
    utcnow,
)

logger = logging.getLogger(__name__)


class LinkStore(ABC):
    """Abstract base class for link persistence."""

    # =========================================================================
    # Projects and vendors
    # =========================================================================

    @abstractmethod
    async def save_project(self, project: Project) -> Project:
        """Create or replace a project. Raises ValidationError for unusable settings."""
        pass

    @abstractmethod
    async def get_project(self, project_ref: str) -> Project:
        """Load a project. Raises NotFound."""
        pass

    @abstractmethod
    async def save_vendor(self, vendor: Vendor) -> Vendor:
        """Create or replace a vendor."""
        pass

    @abstractmethod
    async def assign_vendor(self, project_ref: str, vendor_ref: str, quota: Optional[int] = None):
        """Attach a vendor to a project, optionally with its own quota pool."""
        pass

    @abstractmethod
    async def project_vendor_refs(self, project_ref: str) -> List[str]:
        """Vendor ids attached to a project."""
        pass

    # =========================================================================
    # Quota pools
    # =========================================================================

    @abstractmethod
    async def set_quota(self, project_ref: str, vendor_ref: Optional[str], limit: int) -> QuotaCounter:
        """Create a pool or change its limit, keeping the current count."""
        pass

    @abstractmethod
    async def get_quota(self, project_ref: str, vendor_ref: Optional[str]) -> Optional[QuotaCounter]:
        """The pool for exactly this pair, or None."""
        pass

    async def resolve_quota(self, project_ref: str, vendor_ref: Optional[str]) -> QuotaCounter:
        """Vendor pool if one exists, else the project pool. Raises NotFound."""
        if vendor_ref:
            pool = await self.get_quota(project_ref, vendor_ref)
            if pool is not None:
                return pool
        pool = await self.get_quota(project_ref, None)
        if pool is None:
            raise NotFound(
                f"No quota pool for project {project_ref}",
                {"project_ref": project_ref, "vendor_ref": vendor_ref},
            )
        return pool

    # =========================================================================
    # Links
    # =========================================================================

    @abstractmethod
    async def create_link(self, link: SurveyLink) -> SurveyLink:
        """Insert a link. Raises ValidationError on duplicate token or resp_id in batch."""
        pass

    @abstractmethod
    async def get_link(self, link_id: str) -> SurveyLink:
        """Raises NotFound."""
        pass

    @abstractmethod
    async def get_link_by_token(self, token: str) -> SurveyLink:
        """Raises NotFound."""
        pass

    @abstractmethod
    async def list_links(
        self,
        project_ref: str,
        status: Optional[LinkStatus] = None,
        vendor_ref: Optional[str] = None,
    ) -> List[SurveyLink]:
        """Links of a project, oldest first."""
        pass

    @abstractmethod
    async def update_link(
        self,
        link_id: str,
        expected_status: LinkStatus,
        changes: Dict[str, Any],
    ) -> Optional[SurveyLink]:
        """
        Apply changes only if the link is still in expected_status.

        Returns the updated link, or None when the status moved underneath
        the caller. A "status" change must be a permitted transition.
        """
        pass

    @abstractmethod
    async def complete_link(
        self,
        link_id: str,
        changes: Dict[str, Any],
    ) -> SurveyLink:
        """
        Finish a CLICKED link against its quota pool as one atomic unit.

        The pool is resolved like resolve_quota(). With room left the count
        is incremented and the link becomes COMPLETED; otherwise it becomes
        QUOTA_FULL and the count is untouched.

        Raises:
            NotFound: link or pool missing (nothing is written)
            InvalidState: link is not CLICKED (nothing is written)
        """
        pass

    async def claim_click(self, link_id: str, changes: Dict[str, Any]) -> Optional[SurveyLink]:
        """Compare-and-set from UNUSED."""
        return await self.update_link(link_id, LinkStatus.UNUSED, changes)

    async def ping(self) -> bool:
        """Whether the backing store is reachable."""
        return True

    async def close(self):
        """Release resources."""
        pass


# Fields a compare-and-set may only write while still unset
SET_ONCE_FIELDS = ("vendor_corrected_at",)


def _check_changes(current: LinkStatus, changes: Dict[str, Any]):
    target = changes.get("status")
    if target is not None and target != current:
        ensure_transition(current, target)


class MemoryLinkStore(LinkStore):
    """
    In-process store guarded by a single asyncio lock.

    Returned objects are copies; mutating them never changes stored state.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._projects: Dict[str, Project] = {}
        self._vendors: Dict[str, Vendor] = {}
        self._project_vendors: Dict[str, List[str]] = {}
        self._quotas: Dict[str, QuotaCounter] = {}
        self._links: Dict[str, SurveyLink] = {}
        self._tokens: Dict[str, str] = {}

    # Projects and vendors

    async def save_project(self, project: Project) -> Project:
        ProjectPolicy.from_settings(project.settings)
        async with self._lock:
            self._projects[project.id] = copy.deepcopy(project)
            self._project_vendors.setdefault(project.id, [])
        return copy.deepcopy(project)

    async def get_project(self, project_ref: str) -> Project:
        project = self._projects.get(project_ref)
        if project is None:
            raise NotFound(f"Project not found: {project_ref}")
        return copy.deepcopy(project)

    async def save_vendor(self, vendor: Vendor) -> Vendor:
        async with self._lock:
            self._vendors[vendor.id] = copy.deepcopy(vendor)
        return copy.deepcopy(vendor)

    async def assign_vendor(self, project_ref: str, vendor_ref: str, quota: Optional[int] = None):
        if project_ref not in self._projects:
            raise NotFound(f"Project not found: {project_ref}")
        if vendor_ref not in self._vendors:
            raise NotFound(f"Vendor not found: {vendor_ref}")
        async with self._lock:
            refs = self._project_vendors.setdefault(project_ref, [])
            if vendor_ref not in refs:
                refs.append(vendor_ref)
        if quota is not None:
            await self.set_quota(project_ref, vendor_ref, quota)

    async def project_vendor_refs(self, project_ref: str) -> List[str]:
        return list(self._project_vendors.get(project_ref, []))

    # Quota pools

    async def set_quota(self, project_ref: str, vendor_ref: Optional[str], limit: int) -> QuotaCounter:
        if limit < 0:
            raise ValidationError("Quota limit must be non-negative")
        async with self._lock:
            key = quota_key(project_ref, vendor_ref)
            pool = self._quotas.get(key)
            if pool is None:
                pool = QuotaCounter(project_ref, vendor_ref, limit)
                self._quotas[key] = pool
            else:
                if limit < pool.current:
                    raise ValidationError(
                        f"Quota limit {limit} is below current count {pool.current}"
                    )
                pool.limit = limit
            return copy.copy(pool)

    async def get_quota(self, project_ref: str, vendor_ref: Optional[str]) -> Optional[QuotaCounter]:
        pool = self._quotas.get(quota_key(project_ref, vendor_ref))
        return copy.copy(pool) if pool else None

    def _resolve_pool_locked(self, project_ref: str, vendor_ref: Optional[str]) -> QuotaCounter:
        if vendor_ref and quota_key(project_ref, vendor_ref) in self._quotas:
            return self._quotas[quota_key(project_ref, vendor_ref)]
        pool = self._quotas.get(quota_key(project_ref, None))
        if pool is None:
            raise NotFound(
                f"No quota pool for project {project_ref}",
                {"project_ref": project_ref, "vendor_ref": vendor_ref},
            )
        return pool

    # Links

    async def create_link(self, link: SurveyLink) -> SurveyLink:
        async with self._lock:
            if link.token in self._tokens:
                raise ValidationError("Duplicate link token")
            if link.id in self._links:
                raise ValidationError(f"Duplicate link id: {link.id}")
            if link.batch_id is not None:
                for existing in self._links.values():
                    if existing.batch_id == link.batch_id and existing.resp_id == link.resp_id \
                            and existing.vendor_ref == link.vendor_ref:
                        raise ValidationError(f"Duplicate resp_id in batch: {link.resp_id}")
            self._links[link.id] = copy.deepcopy(link)
            self._tokens[link.token] = link.id
        return copy.deepcopy(link)

    async def get_link(self, link_id: str) -> SurveyLink:
        link = self._links.get(link_id)
        if link is None:
            raise NotFound(f"Link not found: {link_id}")
        return copy.deepcopy(link)

    async def get_link_by_token(self, token: str) -> SurveyLink:
        link_id = self._tokens.get(token)
        if link_id is None:
            raise NotFound("Unknown link token")
        return copy.deepcopy(self._links[link_id])

    async def list_links(
        self,
        project_ref: str,
        status: Optional[LinkStatus] = None,
        vendor_ref: Optional[str] = None,
    ) -> List[SurveyLink]:
        links = [
            link for link in self._links.values()
            if link.project_ref == project_ref
            and (status is None or link.status == status)
            and (vendor_ref is None or link.vendor_ref == vendor_ref)
        ]
        links.sort(key=lambda l: l.created_at)
        return [copy.deepcopy(l) for l in links]

    async def update_link(
        self,
        link_id: str,
        expected_status: LinkStatus,
        changes: Dict[str, Any],
    ) -> Optional[SurveyLink]:
        async with self._lock:
            link = self._links.get(link_id)
            if link is None:
                raise NotFound(f"Link not found: {link_id}")
            if link.status != expected_status:
                return None
            if any(name in changes and getattr(link, name) is not None for name in SET_ONCE_FIELDS):
                return None
            _check_changes(link.status, changes)
            updated = link.copy(**copy.deepcopy(changes), updated_at=utcnow())
            self._links[link_id] = updated
            return copy.deepcopy(updated)

    async def complete_link(self, link_id: str, changes: Dict[str, Any]) -> SurveyLink:
        async with self._lock:
            link = self._links.get(link_id)
            if link is None:
                raise NotFound(f"Link not found: {link_id}")
            if link.status != LinkStatus.CLICKED:
                raise InvalidState(
                    f"Link {link_id} is not in progress",
                    current_status=link.status.value,
                )

            pool = self._resolve_pool_locked(link.project_ref, link.vendor_ref)
            if pool.current < pool.limit:
                pool.current += 1
                status = LinkStatus.COMPLETED
            else:
                status = LinkStatus.QUOTA_FULL

            ensure_transition(link.status, status)
            updated = link.copy(**copy.deepcopy(changes), status=status, updated_at=utcnow())
            self._links[link_id] = updated
            logger.info(f"Link {link_id} -> {status.value} (pool {pool.key} {pool.current}/{pool.limit})")
            return copy.deepcopy(updated)
