"""
SQLAlchemy Models

Defines the database schema for:
- Federated account links (owned by this service)
- The subset of MediaWiki's `user` and `user_properties` tables the
  account directory reads and writes (owned by MediaWiki)
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import (
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for models owned by this service."""
    pass


class MediaWikiBase(DeclarativeBase):
    """Base class for MediaWiki core tables. Never created by this service."""
    pass


# ---------------------------------------------------------------------
# Link Model
# ---------------------------------------------------------------------

class UserLink(Base):
    """
    Link between a local account and an external identity in one domain.

    At most one row per (user_id, domain) and per (domain, external_key).
    """
    __tablename__ = "federated_user_link"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    domain: Mapped[str] = mapped_column(String(255), nullable=False)
    external_key: Mapped[str] = mapped_column(String(767), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "domain", name="uq_link_user_domain"),
        Index("uq_link_domain_key", "domain", "external_key", unique=True),
    )


# ---------------------------------------------------------------------
# MediaWiki Core Tables
# ---------------------------------------------------------------------

class MediaWikiUser(MediaWikiBase):
    __tablename__ = "user"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    user_real_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    user_email: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # MediaWiki timestamp (YYYYMMDDHHMMSS), NULL while unconfirmed
    user_email_authenticated: Mapped[Optional[str]] = mapped_column(String(14), nullable=True)


class MediaWikiUserProperty(MediaWikiBase):
    __tablename__ = "user_properties"

    up_user: Mapped[int] = mapped_column(Integer, primary_key=True)
    up_property: Mapped[str] = mapped_column(String(255), primary_key=True)
    up_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
