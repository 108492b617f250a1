"""
Pluggable Authentication Flow

Single-call shape for simple login plugins: `authenticate(fields)` either
returns the identity of the local account to log in (possibly one that
still has to be created) or raises.

Unlike the primary flow there is no way to ask the user for manual
confirmation, so a hint to an existing account is rejected outright.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from ..accounts.models import Account
from ..core.errors import (
    AccountCreationDeniedError,
    ConfigurationError,
    CredentialError,
    LinkConflictError,
)
from ..identity.domain import FederatedDomain
from ..identity.manager import DomainManager
from ..identity.results import Failed, Hinted, Mapped
from ..providers.base import FieldSpec, ProviderSession
from ..sessions.store import AuthSession
from ..sync.synchronizer import SyncResult

logger = logging.getLogger("fedauth.flow")

SESSIONKEY_EXTERNAL_KEY = "fedauth.pluggable.selected-external-key"
SESSIONKEY_FIELDS = "fedauth.pluggable.selected-fields"


@dataclass(frozen=True)
class PluggableIdentity:
    """`id` is None when the account still has to be created."""

    id: Optional[int]
    username: str
    realname: str = ""
    email: str = ""


class PluggableAuthFlow:
    """
    Parameters
    ----------
    manager : DomainManager
    domain : str
        The single domain this plugin instance authenticates against.
    """

    def __init__(self, manager: DomainManager, domain: str) -> None:
        self.manager = manager
        self.domain_name = domain

    @property
    def domain(self) -> FederatedDomain:
        return self.manager.get_domain(self.domain_name)

    def get_extra_login_fields(self) -> List[FieldSpec]:
        return self.domain.authentication_fields()

    @staticmethod
    def _clear_pending(session: AuthSession) -> None:
        session.remove(SESSIONKEY_EXTERNAL_KEY)
        session.remove(SESSIONKEY_FIELDS)

    @staticmethod
    async def _sync(
        domain: FederatedDomain,
        account: Account,
        provider_session: Optional[ProviderSession],
    ) -> Optional[SyncResult]:
        if provider_session is None or not domain.synchronizer.is_configured:
            return None
        return await domain.synchronize(account, provider_session)

    async def authenticate(self, fields: Mapping[str, str], session: AuthSession) -> PluggableIdentity:
        """
        Raises
        ------
        CredentialError
            Credentials missing or rejected.
        ProviderError
            Provider unreachable.
        ConfigurationError
            Mapping misconfigured.
        LinkConflictError
            The identity maps to an existing account that cannot be
            linked without confirmation.
        AccountCreationDeniedError
            A new account would be needed but auto-creation is off.
        SyncError
            Attribute synchronization failed.
        """
        domain = self.domain
        provider_session = await domain.authenticate(fields)
        if provider_session is None:
            raise CredentialError(f"Incomplete credentials for domain {self.domain_name}")

        external_key = provider_session.user_id
        account = await domain.get_linked_account(external_key)

        if account is None:
            result = await domain.map_provider_user(provider_session)
            if isinstance(result, Mapped):
                account = result.account
            elif isinstance(result, Failed):
                raise result.error
            elif isinstance(result, Hinted) and result.hint.exists:
                logger.warning(
                    "Identity %s in domain %s maps to existing account %s, not linking",
                    external_key,
                    self.domain_name,
                    result.hint.name,
                )
                raise LinkConflictError(
                    f"{external_key} hints at existing account {result.hint.name}",
                    existing_account_id=result.hint.account.id,
                    user_message=f"An account named {result.hint.name} already exists and cannot be linked automatically.",
                )
            elif isinstance(result, Hinted) and domain.should_auto_create:
                account = Account(name=result.hint.name)
            elif isinstance(result, Hinted):
                raise AccountCreationDeniedError(f"Not creating {result.hint.name} in domain {self.domain_name}")
            else:
                raise AccountCreationDeniedError(
                    f"No usable account name for {external_key} in domain {self.domain_name}"
                )

        if account.is_registered:
            self._clear_pending(session)
            account = await domain.claim_external_key(account, external_key)
            await self._sync(domain, account, provider_session)
        else:
            # consumed by save_extra_attributes once the host created the account
            session.set(SESSIONKEY_EXTERNAL_KEY, external_key)
            session.set(SESSIONKEY_FIELDS, dict(fields))

        return PluggableIdentity(
            id=account.id if account.is_registered else None,
            username=account.name,
            realname=account.real_name,
            email=account.email,
        )

    async def save_extra_attributes(self, account_id: int, session: AuthSession) -> Optional[SyncResult]:
        """
        Link and synchronize a freshly created account. Does nothing when
        no external identity is pending in the session; the pending
        identity is consumed by the first call.

        Raises
        ------
        LinkConflictError
            If the external identity was linked to another account in the
            meantime.
        """
        external_key = session.get(SESSIONKEY_EXTERNAL_KEY)
        fields: Dict[str, str] = session.get(SESSIONKEY_FIELDS) or {}
        self._clear_pending(session)
        if external_key is None:
            return None

        domain = self.domain
        account = await self.manager.accounts.get(account_id)
        if account is None:
            raise ConfigurationError(f"Account {account_id} does not exist")

        provider_session = None
        if domain.can_sudo(external_key):
            provider_session = await domain.sudo(external_key)
        elif fields:
            try:
                provider_session = await domain.authenticate(fields)
            except CredentialError as exc:
                logger.info("Re-authentication for %s failed, skipping sync: %s", external_key, exc)
        linked = await domain.claim_external_key(account, external_key)
        if linked.id != account.id:
            raise LinkConflictError(
                f"{external_key} in domain {self.domain_name} was linked concurrently to {linked.name}",
                existing_account_id=linked.id,
            )
        return await self._sync(domain, account, provider_session)

    async def get_attributes(self, account: Account) -> Dict[str, List[str]]:
        """Provider attributes of a linked account, when the provider can sudo."""
        domain = self.domain
        external_key = await domain.get_external_key(account)
        if external_key is None or not domain.can_sudo(external_key):
            return {}
        provider_session = await domain.sudo(external_key)
        return provider_session.record.as_dict() if provider_session else {}
