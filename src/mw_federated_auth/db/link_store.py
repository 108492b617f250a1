"""
Link Store

Durable relation between (domain, external key) and local account ids.

Reads go to the replica session factory, writes to the primary. Readers
must tolerate replica lag: a link written a moment ago may not be visible
yet unless `primary=True` is requested.

Invariants
----------
- At most one link per (account, domain): `link()` replaces any prior link
  of the account in that domain inside a single transaction.
- At most one link per (domain, external key): enforced by a unique index.
  A violating insert raises LinkConflictError carrying the account that
  already holds the key.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Set

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import LinkConflictError
from .models import UserLink

logger = logging.getLogger("fedauth.links")


class LinkStore:
    """
    Parameters
    ----------
    primary : async_sessionmaker
        Session factory for the writable database.
    replica : Optional[async_sessionmaker]
        Session factory for reads. Defaults to `primary`.
    """

    def __init__(
        self,
        primary: async_sessionmaker[AsyncSession],
        replica: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        self._primary = primary
        self._replica = replica or primary

    def _reader(self, primary: bool) -> async_sessionmaker[AsyncSession]:
        return self._primary if primary else self._replica

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_account_for_external_key(
        self,
        domain: str,
        external_key: str,
        *,
        primary: bool = False,
    ) -> Optional[int]:
        async with self._reader(primary)() as session:
            result = await session.execute(
                select(UserLink.user_id).where(
                    UserLink.domain == domain,
                    UserLink.external_key == external_key,
                )
            )
            return result.scalars().first()

    async def get_external_key_for_account(
        self,
        account_id: int,
        domain: str,
        *,
        primary: bool = False,
    ) -> Optional[str]:
        if account_id <= 0:
            return None
        async with self._reader(primary)() as session:
            result = await session.execute(
                select(UserLink.external_key).where(
                    UserLink.user_id == account_id,
                    UserLink.domain == domain,
                )
            )
            return result.scalars().first()

    async def get_domains_for_account(self, account_id: int) -> Set[str]:
        if account_id <= 0:
            return set()
        async with self._replica() as session:
            result = await session.execute(
                select(UserLink.domain).where(UserLink.user_id == account_id)
            )
            return set(result.scalars().all())

    async def list_links(self, domain: str) -> List[UserLink]:
        async with self._replica() as session:
            result = await session.execute(
                select(UserLink).where(UserLink.domain == domain).order_by(UserLink.user_id)
            )
            return list(result.scalars().all())

    async def is_linked(self, account_id: int, domain: str) -> bool:
        return await self.get_external_key_for_account(account_id, domain) is not None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def link(self, account_id: int, domain: str, external_key: str) -> bool:
        """
        Link an account to an external key, replacing the account's prior
        link in `domain`.

        Returns
        -------
        bool
            Whether a prior link of the account in `domain` existed. Always
            False for accounts that are not persisted (id <= 0), which are
            never linked.

        Raises
        ------
        LinkConflictError
            If `external_key` is already linked to another account.
        """
        if account_id <= 0:
            logger.debug("Not linking unregistered account in domain %s", domain)
            return False

        try:
            async with self._primary() as session:
                async with session.begin():
                    removed = await session.execute(
                        delete(UserLink).where(
                            UserLink.user_id == account_id,
                            UserLink.domain == domain,
                        )
                    )
                    session.add(UserLink(user_id=account_id, domain=domain, external_key=external_key))
        except IntegrityError as exc:
            holder = await self.get_account_for_external_key(domain, external_key, primary=True)
            logger.warning(
                "External key %s in domain %s already linked to account %s; not linking account %s",
                external_key,
                domain,
                holder,
                account_id,
            )
            raise LinkConflictError(
                f"External key {external_key} in domain {domain} is linked to account {holder}",
                existing_account_id=holder,
            ) from exc

        replaced = (removed.rowcount or 0) > 0
        logger.info(
            "Linked account %s to %s in domain %s%s",
            account_id,
            external_key,
            domain,
            " (replaced prior link)" if replaced else "",
        )
        return replaced

    async def unlink(self, account_id: int, domain: str) -> bool:
        if account_id <= 0:
            return False
        async with self._primary() as session:
            async with session.begin():
                result = await session.execute(
                    delete(UserLink).where(
                        UserLink.user_id == account_id,
                        UserLink.domain == domain,
                    )
                )
        existed = (result.rowcount or 0) > 0
        if existed:
            logger.info("Unlinked account %s from domain %s", account_id, domain)
        return existed

    async def unlink_by_external_key(self, domain: str, external_key: str) -> bool:
        async with self._primary() as session:
            async with session.begin():
                result = await session.execute(
                    delete(UserLink).where(
                        UserLink.domain == domain,
                        UserLink.external_key == external_key,
                    )
                )
        existed = (result.rowcount or 0) > 0
        if existed:
            logger.info("Unlinked external key %s from domain %s", external_key, domain)
        return existed
