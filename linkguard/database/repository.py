"""
Repository Layer - SQL Link Store

LinkStore backed by SQLAlchemy. Sessions are synchronous and run in worker
threads via asyncio.to_thread so the event loop never blocks on the driver.

Atomic operations open with a write statement so that under SQLite the
first writer takes the reserved lock and later writers queue on the busy
timeout, and under PostgreSQL the row lock serializes them:
- update_link: UPDATE ... WHERE id = ? AND status = expected
- complete_link: link claim, conditional quota increment
  (UPDATE ... WHERE current_count < quota_limit), status write, one commit
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ..errors import InvalidState, NotFound, ValidationError
from ..models import (
    CompletionMetadata,
    LinkStatus,
    ManualReview,
    NetworkContext,
    Project,
    ProjectPolicy,
    QCResult,
    QuotaCounter,
    SurveyLink,
    Vendor,
    ensure_transition,
    quota_key,
    utcnow,
)
from ..persistence import LinkStore
from ..persistence.store import SET_ONCE_FIELDS, _check_changes
from .models import (
    ProjectRecord,
    ProjectVendorRecord,
    QuotaCounterRecord,
    SurveyLinkRecord,
    VendorRecord,
)
from .session import get_db_context, get_session_factory

logger = logging.getLogger(__name__)


# =============================================================================
# RECORD <-> DOMAIN CONVERSION
# =============================================================================

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _link_from_record(record: SurveyLinkRecord) -> SurveyLink:
    return SurveyLink(
        id=record.id,
        project_ref=record.project_id,
        vendor_ref=record.vendor_id,
        resp_id=record.resp_id,
        token=record.token,
        status=record.status,
        link_type=record.link_type,
        survey_url=record.survey_url or "",
        batch_id=record.batch_id,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
        clicked_at=_aware(record.clicked_at),
        completed_at=_aware(record.completed_at),
        network_context=NetworkContext.from_dict(record.network_context),
        gate_flags=list(record.gate_flags or []),
        disqualify_reason=record.disqualify_reason,
        completion_metadata=(
            CompletionMetadata.from_dict(record.completion_metadata)
            if record.completion_metadata else None
        ),
        qc_result=QCResult.from_dict(record.qc_result) if record.qc_result else None,
        manual_review=ManualReview.from_dict(record.manual_review) if record.manual_review else None,
        vendor_corrected_at=_aware(record.vendor_corrected_at),
    )


def _record_from_link(link: SurveyLink) -> SurveyLinkRecord:
    record = SurveyLinkRecord(
        id=link.id,
        project_id=link.project_ref,
        resp_id=link.resp_id,
        token=link.token,
        link_type=link.link_type,
        survey_url=link.survey_url,
        batch_id=link.batch_id,
        created_at=link.created_at,
    )
    for column, value in _columns(link.__dict__).items():
        setattr(record, column, value)
    return record


# Domain field -> column name, where they differ
_COLUMN_NAMES = {"vendor_ref": "vendor_id", "project_ref": "project_id"}

_SERIALIZED_FIELDS = ("network_context", "completion_metadata", "qc_result", "manual_review")

_WRITABLE_FIELDS = frozenset({
    "vendor_ref", "status", "clicked_at", "completed_at", "vendor_corrected_at",
    "network_context", "gate_flags", "disqualify_reason",
    "completion_metadata", "qc_result", "manual_review", "updated_at",
})


def _columns(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Translate domain field changes into column values."""
    values = {}
    for name, value in changes.items():
        if name not in _WRITABLE_FIELDS:
            continue
        if name in _SERIALIZED_FIELDS and value is not None:
            value = value.to_dict()
        elif name == "gate_flags":
            value = list(value or [])
        values[_COLUMN_NAMES.get(name, name)] = value
    return values


def _quota_from_record(record: QuotaCounterRecord) -> QuotaCounter:
    return QuotaCounter(record.project_id, record.vendor_id, record.limit, record.current)


def _project_from_record(record: ProjectRecord) -> Project:
    return Project(
        id=record.id,
        name=record.name,
        survey_url=record.survey_url or "",
        settings=dict(record.settings or {}),
        created_at=_aware(record.created_at),
    )


# =============================================================================
# STORE
# =============================================================================

class SQLLinkStore(LinkStore):
    """
    SQLAlchemy-backed link store.

    Usage:
        engine = create_db_engine("sqlite:///links.db")
        init_db(engine)
        store = SQLLinkStore(make_session_factory(engine), engine=engine)

    Passing the engine hands it to the store: close() disposes its pool.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        engine: Optional[Engine] = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self.engine = engine

    def _db(self):
        return get_db_context(self._session_factory)

    async def close(self):
        if self.engine is not None:
            await asyncio.to_thread(self.engine.dispose)
            logger.info("Database engine disposed")

    async def ping(self) -> bool:
        def _ping():
            try:
                with self._db() as db:
                    db.execute(text("SELECT 1"))
                return True
            except SQLAlchemyError as e:
                logger.error(f"Database connection failed: {e}")
                return False
        return await asyncio.to_thread(_ping)

    # =========================================================================
    # Projects and vendors
    # =========================================================================

    async def save_project(self, project: Project) -> Project:
        ProjectPolicy.from_settings(project.settings)

        def _save():
            with self._db() as db:
                db.merge(ProjectRecord(
                    id=project.id,
                    name=project.name,
                    survey_url=project.survey_url,
                    settings=dict(project.settings),
                    created_at=project.created_at,
                ))
            return project
        return await asyncio.to_thread(_save)

    async def get_project(self, project_ref: str) -> Project:
        def _get():
            with self._db() as db:
                record = db.get(ProjectRecord, project_ref)
                if record is None:
                    raise NotFound(f"Project not found: {project_ref}")
                return _project_from_record(record)
        return await asyncio.to_thread(_get)

    async def save_vendor(self, vendor: Vendor) -> Vendor:
        def _save():
            with self._db() as db:
                db.merge(VendorRecord(
                    id=vendor.id,
                    name=vendor.name,
                    code=vendor.code,
                    settings=dict(vendor.settings),
                ))
            return vendor
        return await asyncio.to_thread(_save)

    async def assign_vendor(self, project_ref: str, vendor_ref: str, quota: Optional[int] = None):
        def _assign():
            with self._db() as db:
                if db.get(ProjectRecord, project_ref) is None:
                    raise NotFound(f"Project not found: {project_ref}")
                if db.get(VendorRecord, vendor_ref) is None:
                    raise NotFound(f"Vendor not found: {vendor_ref}")
                existing = db.query(ProjectVendorRecord).filter(
                    ProjectVendorRecord.project_id == project_ref,
                    ProjectVendorRecord.vendor_id == vendor_ref,
                ).first()
                if existing is None:
                    db.add(ProjectVendorRecord(project_id=project_ref, vendor_id=vendor_ref))
        await asyncio.to_thread(_assign)
        if quota is not None:
            await self.set_quota(project_ref, vendor_ref, quota)

    async def project_vendor_refs(self, project_ref: str) -> List[str]:
        def _refs():
            with self._db() as db:
                rows = db.query(ProjectVendorRecord.vendor_id).filter(
                    ProjectVendorRecord.project_id == project_ref
                ).order_by(ProjectVendorRecord.id).all()
                return [row[0] for row in rows]
        return await asyncio.to_thread(_refs)

    # =========================================================================
    # Quota pools
    # =========================================================================

    async def set_quota(self, project_ref: str, vendor_ref: Optional[str], limit: int) -> QuotaCounter:
        if limit < 0:
            raise ValidationError("Quota limit must be non-negative")

        def _set():
            key = quota_key(project_ref, vendor_ref)
            with self._db() as db:
                record = db.query(QuotaCounterRecord).filter(QuotaCounterRecord.pool_key == key).first()
                if record is None:
                    record = QuotaCounterRecord(
                        pool_key=key,
                        project_id=project_ref,
                        vendor_id=vendor_ref,
                        limit=limit,
                        current=0,
                    )
                    db.add(record)
                else:
                    if limit < record.current:
                        raise ValidationError(
                            f"Quota limit {limit} is below current count {record.current}"
                        )
                    record.limit = limit
                db.flush()
                return _quota_from_record(record)
        return await asyncio.to_thread(_set)

    async def get_quota(self, project_ref: str, vendor_ref: Optional[str]) -> Optional[QuotaCounter]:
        def _get():
            with self._db() as db:
                record = db.query(QuotaCounterRecord).filter(
                    QuotaCounterRecord.pool_key == quota_key(project_ref, vendor_ref)
                ).first()
                return _quota_from_record(record) if record else None
        return await asyncio.to_thread(_get)

    # =========================================================================
    # Links
    # =========================================================================

    async def create_link(self, link: SurveyLink) -> SurveyLink:
        def _create():
            try:
                with self._db() as db:
                    db.add(_record_from_link(link))
                    db.flush()
            except IntegrityError as e:
                raise ValidationError(f"Duplicate link token or resp_id: {link.resp_id}") from e
            return link
        return await asyncio.to_thread(_create)

    async def get_link(self, link_id: str) -> SurveyLink:
        def _get():
            with self._db() as db:
                record = db.get(SurveyLinkRecord, link_id)
                if record is None:
                    raise NotFound(f"Link not found: {link_id}")
                return _link_from_record(record)
        return await asyncio.to_thread(_get)

    async def get_link_by_token(self, token: str) -> SurveyLink:
        def _get():
            with self._db() as db:
                record = db.query(SurveyLinkRecord).filter(SurveyLinkRecord.token == token).first()
                if record is None:
                    raise NotFound("Unknown link token")
                return _link_from_record(record)
        return await asyncio.to_thread(_get)

    async def list_links(
        self,
        project_ref: str,
        status: Optional[LinkStatus] = None,
        vendor_ref: Optional[str] = None,
    ) -> List[SurveyLink]:
        def _list():
            with self._db() as db:
                query = db.query(SurveyLinkRecord).filter(SurveyLinkRecord.project_id == project_ref)
                if status is not None:
                    query = query.filter(SurveyLinkRecord.status == status)
                if vendor_ref is not None:
                    query = query.filter(SurveyLinkRecord.vendor_id == vendor_ref)
                return [_link_from_record(r) for r in query.order_by(SurveyLinkRecord.created_at).all()]
        return await asyncio.to_thread(_list)

    async def update_link(
        self,
        link_id: str,
        expected_status: LinkStatus,
        changes: Dict[str, Any],
    ) -> Optional[SurveyLink]:
        _check_changes(expected_status, changes)

        def _update():
            with self._db() as db:
                values = _columns({**changes, "updated_at": utcnow()})
                conditions = [SurveyLinkRecord.id == link_id, SurveyLinkRecord.status == expected_status]
                conditions += [
                    getattr(SurveyLinkRecord, name).is_(None) for name in SET_ONCE_FIELDS if name in changes
                ]
                result = db.execute(
                    update(SurveyLinkRecord)
                    .where(*conditions)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                record = db.get(SurveyLinkRecord, link_id)
                if record is None:
                    raise NotFound(f"Link not found: {link_id}")
                if result.rowcount != 1:
                    return None
                db.refresh(record)
                return _link_from_record(record)
        return await asyncio.to_thread(_update)

    async def complete_link(self, link_id: str, changes: Dict[str, Any]) -> SurveyLink:
        def _complete():
            with self._db() as db:
                # Claim the row first; nothing else happens unless it is still CLICKED
                claimed = db.execute(
                    update(SurveyLinkRecord)
                    .where(SurveyLinkRecord.id == link_id, SurveyLinkRecord.status == LinkStatus.CLICKED)
                    .values(updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                record = db.get(SurveyLinkRecord, link_id)
                if record is None:
                    raise NotFound(f"Link not found: {link_id}")
                if claimed.rowcount != 1:
                    raise InvalidState(
                        f"Link {link_id} is not in progress",
                        current_status=record.status.value,
                    )

                pool = self._resolve_pool(db, record.project_id, record.vendor_id)
                incremented = db.execute(
                    update(QuotaCounterRecord)
                    .where(
                        QuotaCounterRecord.id == pool.id,
                        QuotaCounterRecord.current < QuotaCounterRecord.limit,
                    )
                    .values(current=QuotaCounterRecord.current + 1)
                    .execution_options(synchronize_session=False)
                )
                status = LinkStatus.COMPLETED if incremented.rowcount == 1 else LinkStatus.QUOTA_FULL
                ensure_transition(LinkStatus.CLICKED, status)

                values = _columns({**changes, "status": status, "updated_at": utcnow()})
                db.execute(
                    update(SurveyLinkRecord)
                    .where(SurveyLinkRecord.id == link_id, SurveyLinkRecord.status == LinkStatus.CLICKED)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                db.refresh(record)
                logger.info(f"Link {link_id} -> {status.value} (pool {pool.pool_key})")
                return _link_from_record(record)
        return await asyncio.to_thread(_complete)

    def _resolve_pool(self, db: Session, project_ref: str, vendor_ref: Optional[str]) -> QuotaCounterRecord:
        keys = [quota_key(project_ref, vendor_ref)] if vendor_ref else []
        keys.append(quota_key(project_ref, None))
        for key in keys:
            record = db.query(QuotaCounterRecord).filter(QuotaCounterRecord.pool_key == key).first()
            if record is not None:
                return record
        raise NotFound(
            f"No quota pool for project {project_ref}",
            {"project_ref": project_ref, "vendor_ref": vendor_ref},
        )
