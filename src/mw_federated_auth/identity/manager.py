"""
Domain Manager

Process-wide registry of federated domains. Domain definitions are read
once; `FederatedDomain` handles are created on first use and cached for
the lifetime of the manager, so directory connections are reused.

Thread Safety
-------------
- The handle cache is protected by an RLock
- Handles themselves hold no per-request state
"""

from __future__ import annotations

import logging
from threading import RLock
from typing import Dict, List

from ..accounts.directory import AccountDirectory
from ..accounts.usernames import Rigor, canonical_username
from ..core.errors import UnknownDomainError
from ..db.link_store import LinkStore
from ..domains import DomainOptions, FederationOptions
from ..providers.registry import ProviderRegistry
from .domain import FederatedDomain

logger = logging.getLogger("fedauth.domain")


class DomainManager:
    """
    Parameters
    ----------
    options : FederationOptions
        Loaded domain configuration.
    registry : ProviderRegistry
        Provider type tag to factory mapping.
    link_store : LinkStore
    accounts : AccountDirectory
    """

    def __init__(
        self,
        options: FederationOptions,
        registry: ProviderRegistry,
        link_store: LinkStore,
        accounts: AccountDirectory,
    ) -> None:
        self.options = options
        self.registry = registry
        self.link_store = link_store
        self.accounts = accounts

        self._domains: Dict[str, DomainOptions] = {}
        for name, domain in options.domains.items():
            if not domain.enabled:
                logger.info("Domain %s is disabled, skipping", name)
                continue
            if not registry.has(domain.provider):
                logger.error("Domain %s uses unknown provider type %r, skipping", name, domain.provider)
                continue
            self._domains[name] = domain

        self._handles: Dict[str, FederatedDomain] = {}
        self._lock = RLock()

    @property
    def is_local_enabled(self) -> bool:
        return self.options.enable_local

    def all_domains(self) -> List[str]:
        return list(self._domains)

    def has_domain(self, name: str) -> bool:
        return name in self._domains

    def get_domain(self, name: str) -> FederatedDomain:
        """
        Get or create the handle for a domain.

        Raises
        ------
        UnknownDomainError
            If the domain is not configured, disabled or has an unknown
            provider type.
        ConfigurationError
            If the provider rejects the domain configuration.
        """
        with self._lock:
            handle = self._handles.get(name)
            if handle is not None:
                return handle

            options = self._domains.get(name)
            if options is None:
                raise UnknownDomainError(f"Unknown domain: {name}")

            provider = self.registry.create(options.provider, name, options)
            handle = FederatedDomain(name, options, provider, self.link_store, self.accounts)
            self._handles[name] = handle
            logger.debug("Instantiated domain %s", name)
            return handle

    async def get_account_domains(self, account_id: int) -> List[str]:
        linked = await self.link_store.get_domains_for_account(account_id)
        return [d for d in self._domains if d in linked]

    async def get_account_domains_by_name(self, username: str) -> List[str]:
        name = canonical_username(username, Rigor.VALID)
        account = await self.accounts.find_by_name(name) if name else None
        if account is None or not account.is_registered:
            return []
        return await self.get_account_domains(account.id)

    async def close(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            await handle.close()
