"""
Persistence Layer

Provides the link store interface and its in-process implementation.
The SQL-backed store lives in linkguard.database.
"""

from .store import LinkStore, MemoryLinkStore

__all__ = [
    "LinkStore",
    "MemoryLinkStore",
]
