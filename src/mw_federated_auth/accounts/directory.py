"""
Account Directory

Lookup, creation and persistence of local wiki accounts.

`AccountDirectory` is the interface the federation engine consumes;
`SqlAccountDirectory` implements it directly on MediaWiki's `user` and
`user_properties` tables. Lookups by name, email and real name are
case-insensitive.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import FederationError
from ..db.models import MediaWikiUser, MediaWikiUserProperty
from .models import Account

logger = logging.getLogger("fedauth.accounts")


class AccountExistsError(FederationError):
    user_message = "An account with this name already exists."
    status_code = 409


class AccountDirectory(Protocol):
    async def get(self, account_id: int) -> Optional[Account]: ...

    async def find_by_name(self, name: str) -> Optional[Account]: ...

    async def find_by_email(self, email: str) -> Optional[Account]: ...

    async def find_by_real_name(self, real_name: str) -> Optional[Account]: ...

    async def create(self, name: str, email: str = "", real_name: str = "") -> Account: ...

    async def save(self, account: Account) -> None: ...


class SqlAccountDirectory:
    """
    Parameters
    ----------
    primary : async_sessionmaker
        Session factory for the writable wiki database.
    replica : Optional[async_sessionmaker]
        Session factory for lookups. Defaults to `primary`.
    """

    def __init__(
        self,
        primary: async_sessionmaker[AsyncSession],
        replica: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        self._primary = primary
        self._replica = replica or primary

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _load_preferences(session: AsyncSession, account_id: int) -> Dict[str, str]:
        result = await session.execute(
            select(MediaWikiUserProperty.up_property, MediaWikiUserProperty.up_value).where(
                MediaWikiUserProperty.up_user == account_id
            )
        )
        return {prop: value for prop, value in result.all() if value is not None}

    async def _to_account(self, session: AsyncSession, row: MediaWikiUser) -> Account:
        return Account(
            id=row.user_id,
            name=row.user_name,
            email=row.user_email or "",
            email_authenticated=row.user_email_authenticated,
            real_name=row.user_real_name or "",
            preferences=await self._load_preferences(session, row.user_id),
        )

    async def _find_by(self, column, value: str) -> Optional[Account]:
        if not value:
            return None
        async with self._replica() as session:
            result = await session.execute(
                select(MediaWikiUser)
                .where(func.lower(column) == value.lower())
                .order_by(MediaWikiUser.user_id)
                .limit(2)
            )
            rows = result.scalars().all()
            if not rows:
                return None
            if len(rows) > 1:
                logger.warning(
                    "Several accounts match %s=%r, using the oldest (%s)",
                    column.key,
                    value,
                    rows[0].user_name,
                )
            return await self._to_account(session, rows[0])

    # ------------------------------------------------------------------
    # AccountDirectory
    # ------------------------------------------------------------------

    async def get(self, account_id: int) -> Optional[Account]:
        if account_id <= 0:
            return None
        async with self._replica() as session:
            row = await session.get(MediaWikiUser, account_id)
            return await self._to_account(session, row) if row else None

    async def find_by_name(self, name: str) -> Optional[Account]:
        return await self._find_by(MediaWikiUser.user_name, name)

    async def find_by_email(self, email: str) -> Optional[Account]:
        return await self._find_by(MediaWikiUser.user_email, email)

    async def find_by_real_name(self, real_name: str) -> Optional[Account]:
        return await self._find_by(MediaWikiUser.user_real_name, real_name)

    async def create(self, name: str, email: str = "", real_name: str = "") -> Account:
        """
        Raises
        ------
        AccountExistsError
            If the name is taken.
        """
        row = MediaWikiUser(user_name=name, user_email=email, user_real_name=real_name)
        try:
            async with self._primary() as session:
                async with session.begin():
                    session.add(row)
                    await session.flush()
                    account_id = row.user_id
        except IntegrityError as exc:
            raise AccountExistsError(f"Account {name} already exists") from exc
        logger.info("Created account %s (id %s)", name, account_id)
        return Account(id=account_id, name=name, email=email, real_name=real_name)

    async def save(self, account: Account) -> None:
        """Persist profile fields and preferences of a registered account."""
        if not account.is_registered:
            raise ValueError("Cannot save an unregistered account")
        async with self._primary() as session:
            async with session.begin():
                row = await session.get(MediaWikiUser, account.id)
                if row is None:
                    raise LookupError(f"Account {account.id} does not exist")
                row.user_email = account.email
                row.user_email_authenticated = account.email_authenticated
                row.user_real_name = account.real_name

                await session.execute(
                    delete(MediaWikiUserProperty).where(MediaWikiUserProperty.up_user == account.id)
                )
                session.add_all(
                    MediaWikiUserProperty(up_user=account.id, up_property=key, up_value=value)
                    for key, value in account.preferences.items()
                    if value is not None
                )
