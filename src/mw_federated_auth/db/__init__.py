"""
Database Package

Provides async SQLAlchemy session management, the link table model and
the MediaWiki core table models used by the account directory.
"""

from .session import (
    dispose_engines,
    get_primary_sessionmaker,
    get_replica_sessionmaker,
    make_sessionmaker,
)
from .models import Base, MediaWikiBase, UserLink, MediaWikiUser, MediaWikiUserProperty
from .link_store import LinkStore

__all__ = [
    "dispose_engines",
    "get_primary_sessionmaker",
    "get_replica_sessionmaker",
    "make_sessionmaker",
    "Base",
    "MediaWikiBase",
    "UserLink",
    "MediaWikiUser",
    "MediaWikiUserProperty",
    "LinkStore",
]
