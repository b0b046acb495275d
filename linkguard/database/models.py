"""
SQLAlchemy Models for the Survey Link Guard

Tables:
- projects: survey projects and their policy settings (JSON)
- vendors: panel vendors
- project_vendors: which vendors may receive links for a project
- quota_counters: completion pools per (project, vendor); vendor NULL is project-wide
- survey_links: links, lifecycle status, and typed QC/gate records as JSON

Portable across PostgreSQL and SQLite: string ids and generic JSON columns.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, DateTime, Text,
    ForeignKey, Enum, Index, CheckConstraint, UniqueConstraint,
    JSON,
)
from sqlalchemy.orm import declarative_base, relationship

from ..models import LinkStatus, LinkType

Base = declarative_base()


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# PROJECTS AND VENDORS
# =============================================================================

class ProjectRecord(Base):
    """Survey projects"""
    __tablename__ = "projects"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    survey_url = Column(Text, default="")

    # allowed_countries, anonymized_network_mode, check_quota_on_click,
    # honeypot_fields, scoring overrides
    settings = Column(JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=_now)

    vendors = relationship("ProjectVendorRecord", back_populates="project", cascade="all, delete-orphan")


class VendorRecord(Base):
    """Panel vendors"""
    __tablename__ = "vendors"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    code = Column(String(64))
    settings = Column(JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=_now)


class ProjectVendorRecord(Base):
    """Vendor membership in a project"""
    __tablename__ = "project_vendors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), ForeignKey("projects.id"), nullable=False)
    vendor_id = Column(String(64), ForeignKey("vendors.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now)

    project = relationship("ProjectRecord", back_populates="vendors")

    __table_args__ = (
        UniqueConstraint("project_id", "vendor_id", name="uq_project_vendor"),
    )


# =============================================================================
# QUOTA
# =============================================================================

class QuotaCounterRecord(Base):
    """Completion pool. Increments only through a conditional UPDATE."""
    __tablename__ = "quota_counters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # "<project>:<vendor or *>", unique even when vendor_id is NULL
    pool_key = Column(String(140), nullable=False, unique=True)
    project_id = Column(String(64), ForeignKey("projects.id"), nullable=False)
    vendor_id = Column(String(64), ForeignKey("vendors.id"), nullable=True)

    limit = Column("quota_limit", Integer, nullable=False)
    current = Column("current_count", Integer, nullable=False, default=0)

    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    __table_args__ = (
        CheckConstraint("current_count >= 0", name="ck_quota_current_non_negative"),
        CheckConstraint("current_count <= quota_limit", name="ck_quota_current_within_limit"),
        Index("idx_quota_project", "project_id"),
    )


# =============================================================================
# LINKS
# =============================================================================

class SurveyLinkRecord(Base):
    """Single-use survey links. Rows are never deleted."""
    __tablename__ = "survey_links"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(64), ForeignKey("projects.id"), nullable=False)
    vendor_id = Column(String(64), ForeignKey("vendors.id"), nullable=True)

    resp_id = Column(String(100), nullable=False)
    token = Column(String(64), nullable=False, unique=True)
    status = Column(Enum(LinkStatus, name="linkstatus"), nullable=False, default=LinkStatus.UNUSED)
    link_type = Column(Enum(LinkType, name="linktype"), nullable=False, default=LinkType.LIVE)
    survey_url = Column(Text, default="")
    batch_id = Column(String(36))

    # Timing
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)
    clicked_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    vendor_corrected_at = Column(DateTime(timezone=True))

    # Gate
    network_context = Column(JSON)
    gate_flags = Column(JSON, default=list)
    disqualify_reason = Column(String(100))

    # Completion / QC
    completion_metadata = Column(JSON)
    qc_result = Column(JSON)
    manual_review = Column(JSON)

    __table_args__ = (
        UniqueConstraint("batch_id", "vendor_id", "resp_id", name="uq_batch_vendor_resp"),
        Index("idx_link_project_status", "project_id", "status"),
        Index("idx_link_vendor", "vendor_id"),
    )
