"""
Federated Domain

Long-lived handle for one configured domain. Combines the domain's
provider, attribute resolver, link store and synchronizer, and implements
the mapping step of the linking engine:

1. Primary mapping: read the map-type attribute values of the external
   identity and look up a local account for each, in order. The first
   account that is not linked in this domain, or is linked to this very
   external key, wins.
2. Hinting: only when the hint type differs from the map type. A name
   hint is either an existing account or a creatable name; email and
   real-name hints can only point to existing accounts. Hints to accounts
   already linked in this domain are discarded.

A configuration error in the primary step is only reported as Failed
when no hint exists.
"""

from __future__ import annotations

import logging
from typing import List, Mapping, Optional

from ..accounts.directory import AccountDirectory
from ..accounts.models import Account, HintedAccount
from ..accounts.usernames import Rigor, canonical_username
from ..core.errors import ConfigurationError, LinkConflictError, ProviderError
from ..db.link_store import LinkStore
from ..domains import DomainOptions
from ..providers.base import FieldSpec, Provider, ProviderSession
from ..sync.synchronizer import AttributeSynchronizer, SyncResult
from .attributes import AttributeKind, AttributeResolver, MapType
from .results import Failed, Hinted, MapResult, Mapped, NoMatch

logger = logging.getLogger("fedauth.domain")


class FederatedDomain:
    def __init__(
        self,
        name: str,
        options: DomainOptions,
        provider: Provider,
        link_store: LinkStore,
        accounts: AccountDirectory,
    ) -> None:
        self.name = name
        self.options = options
        self.provider = provider
        self.link_store = link_store
        self.accounts = accounts
        self.resolver = AttributeResolver(name, provider, options.user.attributes)
        self.synchronizer = AttributeSynchronizer(name, options.sync, self.resolver, accounts)

    def __repr__(self) -> str:
        return f"FederatedDomain({self.name!r}, provider={type(self.provider).__name__})"

    # ------------------------------------------------------------------
    # Provider delegation
    # ------------------------------------------------------------------

    @property
    def description(self) -> str:
        return self.provider.describe()

    @property
    def should_auto_create(self) -> bool:
        return self.options.should_auto_create

    def authentication_fields(self, external_key: Optional[str] = None) -> List[FieldSpec]:
        return self.provider.authentication_fields(external_key)

    def attribute_fields(self, external_key: str) -> List[FieldSpec]:
        return self.provider.attribute_fields(external_key)

    async def authenticate(self, values: Mapping[str, str]) -> Optional[ProviderSession]:
        return await self.provider.authenticate(values)

    def can_sudo(self, external_key: str) -> bool:
        return self.provider.can_sudo(external_key)

    async def sudo(self, external_key: str) -> Optional[ProviderSession]:
        return await self.provider.sudo(external_key)

    # ------------------------------------------------------------------
    # Link lookups
    # ------------------------------------------------------------------

    async def get_linked_account(self, external_key: str, *, primary: bool = False) -> Optional[Account]:
        account_id = await self.link_store.get_account_for_external_key(
            self.name, external_key, primary=primary
        )
        if account_id is None:
            return None
        account = await self.accounts.get(account_id)
        if account is None:
            logger.warning(
                "Domain %s links %s to missing account %s",
                self.name,
                external_key,
                account_id,
            )
        return account

    async def get_external_key(self, account: Account) -> Optional[str]:
        if not account.is_registered:
            return None
        return await self.link_store.get_external_key_for_account(account.id, self.name)

    async def get_external_key_by_name(self, username: str) -> Optional[str]:
        account = await self._find_by_name(username, Rigor.VALID)
        return await self.get_external_key(account) if account else None

    async def has_account_by_name(self, username: str) -> bool:
        return await self.get_external_key_by_name(username) is not None

    async def provider_has_user(self, username: str) -> bool:
        """Whether the provider knows a principal with this user name."""
        try:
            key = self.resolver.resolve_key(AttributeKind.NAME)
            return await self.provider.find_user(key, username) is not None
        except (ConfigurationError, ProviderError) as exc:
            logger.error("User lookup for %s in domain %s failed: %s", username, self.name, exc)
            return False

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    async def _find_by_name(self, value: str, rigor: Rigor) -> Optional[Account]:
        name = canonical_username(value, rigor)
        return await self.accounts.find_by_name(name) if name else None

    async def _find_account(self, map_type: MapType, value: str) -> Optional[Account]:
        if map_type is MapType.USERNAME:
            return await self._find_by_name(value, Rigor.USABLE)
        if map_type is MapType.EMAIL:
            return await self.accounts.find_by_email(value)
        return await self.accounts.find_by_real_name(value)

    async def _hint_for(self, hint_type: MapType, value: str) -> Optional[HintedAccount]:
        if hint_type is MapType.USERNAME:
            name = canonical_username(value, Rigor.CREATABLE)
            if not name:
                return None
            return HintedAccount(name, await self.accounts.find_by_name(name))
        account = await self._find_account(hint_type, value)
        return HintedAccount(account.name, account) if account else None

    async def _accepts(self, account: Account, external_key: str) -> bool:
        existing = await self.link_store.get_external_key_for_account(account.id, self.name)
        return existing is None or existing == external_key

    async def map_provider_user(self, session: ProviderSession) -> MapResult:
        """
        Map an authenticated external identity to a local account, or
        propose a hint.

        Never returns an account that is linked in this domain to a
        different external key.
        """
        record = session.record
        external_key = session.user_id
        policy = self.options.user
        error: Optional[ConfigurationError] = None

        try:
            map_type = MapType.parse(policy.map_type, self.name)
            candidates = self.resolver.get_map_attribute_values(record, map_type.kind)
        except ConfigurationError as exc:
            error = exc
            map_type, candidates = None, []

        if map_type is not None and not candidates:
            logger.info(
                "No %s values for %s in domain %s, cannot map",
                map_type.value,
                external_key,
                self.name,
            )

        for value in candidates:
            account = await self._find_account(map_type, value)
            if account is None:
                continue
            if await self._accepts(account, external_key):
                logger.info(
                    "Mapped %s in domain %s to account %s by %s",
                    external_key,
                    self.name,
                    account.name,
                    map_type.value,
                )
                return Mapped(account)
            logger.info(
                "Account %s matches %s by %s but is linked to another identity in domain %s",
                account.name,
                external_key,
                map_type.value,
                self.name,
            )

        if policy.hint_type and policy.hint_type != policy.map_type:
            try:
                hint_type = MapType.parse(policy.hint_type, self.name)
                hint_values = self.resolver.get_map_attribute_values(record, hint_type.kind)
            except ConfigurationError as exc:
                error = error or exc
                hint_type, hint_values = None, []

            for value in hint_values:
                hint = await self._hint_for(hint_type, value)
                if hint is None:
                    continue
                if hint.exists and await self.link_store.is_linked(hint.account.id, self.name):
                    logger.info(
                        "Discarding hint %s for %s: already linked in domain %s",
                        hint.name,
                        external_key,
                        self.name,
                    )
                    continue
                return Hinted(hint, error)

        if error is not None:
            return Failed(error)
        return NoMatch()

    # ------------------------------------------------------------------
    # Linking
    # ------------------------------------------------------------------

    async def link_account(self, account: Account, external_key: str) -> bool:
        return await self.link_store.link(account.id, self.name, external_key)

    async def claim_external_key(self, account: Account, external_key: str) -> Account:
        """
        Link `account`, or return the account that won a concurrent link
        of the same external key.

        Raises
        ------
        LinkConflictError
            If the holder of the key cannot be read back.
        """
        try:
            await self.link_account(account, external_key)
            return account
        except LinkConflictError as exc:
            if exc.existing_account_id is None:
                raise
            winner = await self.accounts.get(exc.existing_account_id)
            if winner is None:
                raise
            logger.warning(
                "External key %s in domain %s was linked concurrently to %s, using that account",
                external_key,
                self.name,
                winner.name,
            )
            return winner

    async def link_account_by_id(self, account_id: int, external_key: str) -> bool:
        return await self.link_store.link(account_id, self.name, external_key)

    async def link_account_by_name(self, username: str, external_key: str) -> bool:
        """Returns False when no registered account has this name."""
        account = await self._find_by_name(username, Rigor.VALID)
        if account is None or not account.is_registered:
            return False
        await self.link_account(account, external_key)
        return True

    async def unlink_account(self, account: Account) -> bool:
        return await self.link_store.unlink(account.id, self.name)

    async def unlink_account_by_id(self, account_id: int) -> bool:
        return await self.link_store.unlink(account_id, self.name)

    async def unlink_account_by_name(self, username: str) -> bool:
        account = await self._find_by_name(username, Rigor.VALID)
        if account is None:
            return False
        return await self.unlink_account(account)

    async def unlink_external_key(self, external_key: str) -> bool:
        return await self.link_store.unlink_by_external_key(self.name, external_key)

    # ------------------------------------------------------------------
    # Synchronization
    # ------------------------------------------------------------------

    async def synchronize(self, account: Account, session: ProviderSession) -> SyncResult:
        return await self.synchronizer.synchronize(account, session)

    async def close(self) -> None:
        await self.provider.close()
