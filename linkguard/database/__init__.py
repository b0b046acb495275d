"""
Database Module

SQLAlchemy persistence for projects, vendors, quota pools and survey links.
Uses PostgreSQL when DATABASE_URL is set, SQLite otherwise.
"""

from .models import (
    Base,
    ProjectRecord,
    ProjectVendorRecord,
    QuotaCounterRecord,
    SurveyLinkRecord,
    VendorRecord,
)
from .repository import SQLLinkStore
from .session import (
    create_db_engine,
    get_database_url,
    get_db_context,
    get_engine,
    get_session_factory,
    init_db,
    make_session_factory,
)

__all__ = [
    # Models
    "Base",
    "ProjectRecord",
    "ProjectVendorRecord",
    "QuotaCounterRecord",
    "SurveyLinkRecord",
    "VendorRecord",
    # Store
    "SQLLinkStore",
    # Session
    "create_db_engine",
    "get_database_url",
    "get_db_context",
    "get_engine",
    "get_session_factory",
    "init_db",
    "make_session_factory",
]
