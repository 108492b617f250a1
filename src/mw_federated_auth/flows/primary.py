"""
Primary Authentication Flow

Multi-step authentication shape (request enumeration -> begin -> optional
continue -> confirm data change) driving the linking engine:

1. Authenticate with the domain's provider.
2. An existing link for the external key wins. When a target account is
   given (account linking) and the link points elsewhere, fail.
3. Otherwise link the target account, or map the identity to an account.
4. Without a mapped account, use the hint: a creatable name with
   auto-create enabled starts account creation (continuation state goes
   to the authentication session and is consumed by
   `auto_created_account`); anything else becomes a link request the
   user confirms through `change_authentication_data`.
5. Linked accounts are synchronized before success is reported. A
   synchronization failure turns the response into a failure.

The flow keeps no per-attempt state of its own; every step can be resumed
from the authentication session alone.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence, Union

from ..accounts.models import Account
from ..accounts.usernames import Rigor, canonical_username
from ..core.errors import (
    ConfigurationError,
    CredentialError,
    FederationError,
    LinkConflictError,
    ProviderError,
    SyncError,
)
from ..identity.domain import FederatedDomain
from ..identity.manager import DomainManager
from ..identity.results import Failed, Hinted, Mapped
from ..providers.base import ProviderSession
from ..sessions.store import AuthSession
from .requests import (
    AttrRequest,
    AuthAction,
    AuthRequest,
    AuthResponse,
    ChangeStatus,
    LinkRequest,
)

logger = logging.getLogger("fedauth.flow")

SESSIONKEY_DOMAIN = "fedauth.primary.selected-domain"
SESSIONKEY_EXTERNAL_KEY = "fedauth.primary.selected-external-key"
SESSIONKEY_FIELDS = "fedauth.primary.selected-fields"

AnyRequest = Union[AuthRequest, LinkRequest, AttrRequest]
AutoCreateCheck = Callable[[str], bool]


def _allow_all(username: str) -> bool:
    return True


class PrimaryAuthFlow:
    """
    Parameters
    ----------
    manager : DomainManager
    authoritative : bool
        Fail (instead of abstaining) when a provider rejects credentials.
    may_auto_create : Callable[[str], bool]
        Host permission check: may the current caller auto-create an
        account with this name?
    """

    def __init__(
        self,
        manager: DomainManager,
        *,
        authoritative: bool = False,
        may_auto_create: Optional[AutoCreateCheck] = None,
    ) -> None:
        self.manager = manager
        self.authoritative = authoritative
        self.may_auto_create = may_auto_create or _allow_all

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_domain(self, name: str) -> Optional[FederatedDomain]:
        try:
            return self.manager.get_domain(name)
        except FederationError as exc:
            logger.critical("Could not instantiate domain %s: %s", name, exc)
            return None

    def _credential_failure(self, domain: str, exc: CredentialError) -> AuthResponse:
        logger.debug("Authentication in domain %s failed: %s", domain, exc)
        if self.authoritative:
            return AuthResponse.new_fail(exc.user_message)
        return AuthResponse.new_abstain()

    @staticmethod
    def _clear_pending(session: AuthSession) -> None:
        session.remove(SESSIONKEY_DOMAIN)
        session.remove(SESSIONKEY_EXTERNAL_KEY)
        session.remove(SESSIONKEY_FIELDS)

    async def _finalize(
        self,
        domain: FederatedDomain,
        account: Account,
        provider_session: Optional[ProviderSession],
    ) -> AuthResponse:
        if provider_session is not None and domain.synchronizer.is_configured:
            try:
                await domain.synchronize(account, provider_session)
            except ConfigurationError as exc:
                logger.critical("Synchronization of %s in domain %s misconfigured: %s", account.name, domain.name, exc)
                return AuthResponse.new_fail(exc.user_message)
            except SyncError as exc:
                logger.error("Synchronization of %s in domain %s failed: %s", account.name, domain.name, exc)
                return AuthResponse.new_fail(exc.user_message)
        return AuthResponse.new_pass(account.name)

    async def _enter_session(
        self,
        domain: FederatedDomain,
        external_key: str,
        fields: Optional[Dict[str, str]],
    ) -> Optional[ProviderSession]:
        if domain.can_sudo(external_key):
            return await domain.sudo(external_key)
        if fields:
            session = await domain.authenticate(fields)
            if session is not None and session.user_id == external_key:
                return session
        return None

    # ------------------------------------------------------------------
    # Request enumeration
    # ------------------------------------------------------------------

    async def get_authentication_requests(
        self,
        action: AuthAction,
        username: Optional[str] = None,
    ) -> List[AnyRequest]:
        domains = self.manager.all_domains()
        linked = await self.manager.get_account_domains_by_name(username) if username else []

        if action is AuthAction.LOGIN:
            relevant = domains
        elif action is AuthAction.LINK:
            relevant = [d for d in domains if d not in linked]
        else:
            relevant = linked

        requests: List[AnyRequest] = []
        if self.manager.is_local_enabled and action is AuthAction.LOGIN:
            requests.append(AuthRequest(None))

        for name in relevant:
            domain = self._get_domain(name)
            if domain is None:
                continue
            if action in (AuthAction.LOGIN, AuthAction.LINK):
                requests.append(AuthRequest(name, domain.description, domain.authentication_fields()))
                continue

            external_key = await domain.get_external_key_by_name(username)
            if not external_key:
                continue
            if action is AuthAction.CHANGE:
                auth_fields = None if domain.can_sudo(external_key) else domain.authentication_fields(external_key)
                requests.append(AttrRequest(
                    name,
                    domain.description,
                    external_key,
                    domain.attribute_fields(external_key),
                    auth_fields,
                ))
            else:
                requests.append(LinkRequest(name, domain.description, external_key))

        for request in requests:
            request.action = action
            request.username = username
        return requests

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def begin_authentication(
        self,
        requests: Sequence[AnyRequest],
        session: AuthSession,
    ) -> AuthResponse:
        for request in requests:
            if not isinstance(request, AuthRequest) or request.is_local or not request.values:
                continue
            return await self.begin_federated_authentication(request.domain, request.values, session)
        return AuthResponse.new_abstain()

    async def begin_account_link(
        self,
        account: Account,
        requests: Sequence[AnyRequest],
        session: AuthSession,
    ) -> AuthResponse:
        for request in requests:
            if not isinstance(request, AuthRequest) or request.is_local or not request.values:
                continue
            return await self.begin_federated_authentication(
                request.domain, request.values, session, target_account=account
            )
        return AuthResponse.new_abstain()

    async def begin_federated_authentication(
        self,
        domain_name: str,
        values: Dict[str, str],
        session: AuthSession,
        target_account: Optional[Account] = None,
    ) -> AuthResponse:
        domain = self._get_domain(domain_name)
        if domain is None:
            return AuthResponse.new_fail(ConfigurationError.user_message)

        # 1. verify the user is who they say they are
        try:
            provider_session = await domain.authenticate(values)
        except CredentialError as exc:
            return self._credential_failure(domain_name, exc)
        except ProviderError as exc:
            logger.error("Provider failure in domain %s: %s", domain_name, exc)
            return AuthResponse.new_fail(exc.user_message)
        if provider_session is None:
            return self._credential_failure(
                domain_name, CredentialError(f"Incomplete credentials for domain {domain_name}")
            )

        external_key = provider_session.user_id

        # 2. already linked?
        account = await domain.get_linked_account(external_key)
        if account is not None:
            if target_account is not None and target_account.id != account.id:
                logger.info(
                    "Not linking %s in domain %s to %s: already linked to %s",
                    external_key,
                    domain_name,
                    target_account.name,
                    account.name,
                )
                return AuthResponse.new_fail(LinkConflictError.user_message)
            return await self._finalize(domain, account, provider_session)

        # 3. link the given account, or map one
        if target_account is not None:
            try:
                await domain.link_account(target_account, external_key)
            except LinkConflictError as exc:
                return AuthResponse.new_fail(exc.user_message)
            return await self._finalize(domain, target_account, provider_session)

        result = await domain.map_provider_user(provider_session)
        if isinstance(result, Mapped):
            try:
                account = await domain.claim_external_key(result.account, external_key)
            except LinkConflictError as exc:
                return AuthResponse.new_fail(exc.user_message)
            return await self._finalize(domain, account, provider_session)

        if isinstance(result, Failed):
            return AuthResponse.new_fail(result.error.user_message)

        # 4. create or ask for a link
        hint = result.hint if isinstance(result, Hinted) else None
        if (
            hint is not None
            and not hint.exists
            and domain.should_auto_create
            and self.may_auto_create(hint.name)
        ):
            session.set(SESSIONKEY_DOMAIN, domain_name)
            session.set(SESSIONKEY_EXTERNAL_KEY, external_key)
            session.set(SESSIONKEY_FIELDS, dict(values))
            logger.info("Requesting creation of %s for %s in domain %s", hint.name, external_key, domain_name)
            return AuthResponse.new_pass(hint.name, create_account=True)

        link_request = LinkRequest(
            domain_name,
            domain.description,
            external_key,
            action=AuthAction.LINK,
            username=hint.name if hint else None,
        )
        return AuthResponse.new_pass(None, link_request=link_request)

    async def continue_authentication(
        self,
        requests: Sequence[AnyRequest],
        session: AuthSession,
    ) -> AuthResponse:
        """
        Resume a pending account creation with a user-chosen name.
        """
        domain_name = session.get(SESSIONKEY_DOMAIN)
        external_key = session.get(SESSIONKEY_EXTERNAL_KEY)
        if not domain_name or not external_key:
            return AuthResponse.new_abstain()

        for request in requests:
            if not isinstance(request, AuthRequest) or request.domain != domain_name or not request.username:
                continue
            name = canonical_username(request.username, Rigor.CREATABLE)
            if not name:
                return AuthResponse.new_fail("The chosen user name is not valid.")
            if await self.manager.accounts.find_by_name(name) is not None:
                return AuthResponse.new_fail("The chosen user name is already taken.")
            if not self.may_auto_create(name):
                return AuthResponse.new_fail("You are not allowed to create an account.")
            return AuthResponse.new_pass(name, create_account=True)
        return AuthResponse.new_abstain()

    async def auto_created_account(self, account: Account, session: AuthSession) -> AuthResponse:
        """
        Confirmation callback after the framework created the account
        requested by `begin_federated_authentication`.

        The pending state is consumed, so the link is persisted at most
        once per ceremony.
        """
        domain_name = session.get(SESSIONKEY_DOMAIN)
        external_key = session.get(SESSIONKEY_EXTERNAL_KEY)
        fields = session.get(SESSIONKEY_FIELDS) or {}
        if not domain_name or not external_key:
            return AuthResponse.new_abstain()
        self._clear_pending(session)

        domain = self._get_domain(domain_name)
        if domain is None:
            return AuthResponse.new_fail(ConfigurationError.user_message)
        if not account.is_registered:
            logger.error("Auto-created account %s for domain %s was not persisted", account.name, domain_name)
            return AuthResponse.new_fail("Account creation failed.")

        try:
            linked = await domain.claim_external_key(account, external_key)
        except LinkConflictError as exc:
            return AuthResponse.new_fail(exc.user_message)
        if linked.id != account.id:
            return AuthResponse.new_fail(LinkConflictError.user_message)

        try:
            provider_session = await self._enter_session(domain, external_key, fields)
        except FederationError as exc:
            logger.error("Could not enter session for %s in domain %s: %s", external_key, domain_name, exc)
            provider_session = None
        return await self._finalize(domain, account, provider_session)

    async def post_authentication(self, session: AuthSession) -> None:
        self._clear_pending(session)

    async def test_user_exists(self, username: str) -> bool:
        for name in self.manager.all_domains():
            domain = self._get_domain(name)
            if domain is None:
                continue
            if await domain.has_account_by_name(username):
                return True
            if await domain.provider_has_user(username):
                return True
        return False

    # ------------------------------------------------------------------
    # Authentication data changes
    # ------------------------------------------------------------------

    async def allows_authentication_data_change(
        self,
        request: AnyRequest,
        check_data: bool = True,
    ) -> ChangeStatus:
        if isinstance(request, LinkRequest):
            if request.action not in (AuthAction.LINK, AuthAction.UNLINK, AuthAction.REMOVE):
                return ChangeStatus.fatal(f"Unsupported action: {request.action.value}")
            if check_data:
                if not request.username:
                    return ChangeStatus.ignore()
                if not self.manager.has_domain(request.domain):
                    return ChangeStatus.fatal(f"Unknown domain: {request.domain}")
                if request.action is AuthAction.LINK and request.external_key is None:
                    return ChangeStatus.fatal("External identity is missing.")
            return ChangeStatus.good()

        if isinstance(request, AttrRequest):
            if request.action is not AuthAction.CHANGE:
                return ChangeStatus.fatal(f"Unsupported action: {request.action.value}")
            if check_data:
                if request.external_key is None:
                    return ChangeStatus.fatal("External identity is missing.")
                domain = self._get_domain(request.domain)
                if domain is None:
                    return ChangeStatus.fatal(f"Unknown domain: {request.domain}")
                try:
                    if domain.can_sudo(request.external_key):
                        provider_session = await domain.sudo(request.external_key)
                    else:
                        provider_session = await domain.authenticate(request.auth_values)
                except FederationError as exc:
                    return ChangeStatus.fatal(exc.user_message)
                if provider_session is None or provider_session.user_id != request.external_key:
                    return ChangeStatus.fatal(CredentialError.user_message)
                request.provider_session = provider_session
            return ChangeStatus.good()

        return ChangeStatus.ignore()

    async def change_authentication_data(self, request: AnyRequest) -> None:
        """
        Apply a confirmed link, unlink or attribute change.

        Raises
        ------
        LinkConflictError
            If the external key is linked to another account.
        """
        if not request.username:
            return

        if isinstance(request, LinkRequest):
            domain = self._get_domain(request.domain)
            if domain is None:
                return
            if request.action is AuthAction.LINK:
                if request.external_key is None:
                    return
                await domain.link_account_by_name(request.username, request.external_key)
            elif request.action in (AuthAction.UNLINK, AuthAction.REMOVE):
                await domain.unlink_account_by_name(request.username)
            return

        if isinstance(request, AttrRequest):
            provider_session = request.provider_session
            if provider_session is None:
                return
            domain = self._get_domain(request.domain)
            if domain is None:
                return
            editable = {f.name for f in domain.attribute_fields(provider_session.user_id)}
            for attribute, value in request.attribute_values.items():
                if attribute not in editable:
                    logger.warning("Ignoring change of non-editable attribute %s in domain %s", attribute, domain.name)
                    continue
                await provider_session.set_user_attributes(attribute, [value])
