"""
Attribute Synchronizer

Applies a domain's pull rules (provider -> local account) and push rules
(local account -> provider) for one linked account.

Evaluation
----------
Every rule is evaluated on a working copy of the account:

1. resolve the source values
2. run the optional filter (False skips the rule)
3. skip when the values are empty and `delete` is not set
4. skip when the destination already has a value and `overwrite` is off
5. write the values

Pull rules run before push rules, so pushes see pulled values. All rules
are evaluated before anything is written: a configuration error anywhere
aborts the pass with no writes at all. Pushes are then sent to the
provider one by one and the local account is saved once at the end. A
failed push raises SyncError and leaves the local account unsaved;
pushes already accepted by the provider are not rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..accounts.directory import AccountDirectory
from ..accounts.models import Account
from ..core.errors import ConfigurationError, ProviderError, SyncError
from ..domains import SyncPolicy, SyncRule, ValueRef
from ..identity.attributes import AttributeKind, AttributeResolver
from ..providers.base import ProviderSession
from .filters import apply_filter

logger = logging.getLogger("fedauth.sync")

PROFILE_EMAIL = "email"
PROFILE_REALNAME = "realname"
PROFILE_NAME = "name"

LOCAL_DESTINATIONS = ("profile", "preference")
PROVIDER_DESTINATIONS = ("attribute", "mapped")


@dataclass
class SyncResult:
    pulled: List[str] = field(default_factory=list)
    pushed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    saved: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.pulled or self.pushed)


def _describe(rule: SyncRule) -> str:
    return f"{rule.source.type}:{rule.source.value} -> {rule.destination.type}:{rule.destination.value}"


class AttributeSynchronizer:
    """
    Parameters
    ----------
    domain : str
        Domain name, for logging.
    policy : SyncPolicy
        Pull and push rules.
    resolver : AttributeResolver
        Resolves `mapped` value references to provider attribute keys.
    accounts : AccountDirectory
        Used to persist the local account once at the end of a pass.
    """

    def __init__(
        self,
        domain: str,
        policy: SyncPolicy,
        resolver: AttributeResolver,
        accounts: AccountDirectory,
    ) -> None:
        self.domain = domain
        self.policy = policy
        self.resolver = resolver
        self.accounts = accounts

    @property
    def is_configured(self) -> bool:
        return not self.policy.is_empty

    # ------------------------------------------------------------------
    # Value references
    # ------------------------------------------------------------------

    def _provider_key(self, ref: ValueRef) -> str:
        if ref.type == "attribute":
            return ref.value
        try:
            kind = AttributeKind(ref.value)
        except ValueError:
            raise ConfigurationError(
                f"Unknown attribute kind {ref.value!r} in sync rule of domain {self.domain}"
            ) from None
        return self.resolver.resolve_key(kind)

    def _read_profile(self, account: Account, name: str) -> List[str]:
        if name == PROFILE_EMAIL:
            value = account.email
        elif name == PROFILE_REALNAME:
            value = account.real_name
        elif name == PROFILE_NAME:
            value = account.name
        else:
            raise ConfigurationError(f"Unknown profile field {name!r} in sync rule of domain {self.domain}")
        return [value] if value else []

    def _read(self, ref: ValueRef, account: Account, session: ProviderSession) -> List[str]:
        if ref.type == "literal":
            return [ref.value]
        if ref.type in PROVIDER_DESTINATIONS:
            return [v for v in session.get_user_attributes(self._provider_key(ref)) if v != ""]
        if ref.type == "preference":
            value = account.preferences.get(ref.value)
            return [value] if value else []
        if ref.type == "profile":
            return self._read_profile(account, ref.value)
        raise ConfigurationError(f"Unknown value type {ref.type!r} in sync rule of domain {self.domain}")

    def _write_local(self, ref: ValueRef, account: Account, values: List[str]) -> bool:
        value = values[0] if values else ""
        if ref.type == "preference":
            if not value:
                return account.preferences.pop(ref.value, None) is not None
            if account.preferences.get(ref.value) == value:
                return False
            account.preferences[ref.value] = value
            return True

        if ref.type != "profile":
            raise ConfigurationError(
                f"Value type {ref.type!r} is not a pull destination in domain {self.domain}"
            )
        if ref.value == PROFILE_EMAIL:
            before = (account.email, account.is_email_confirmed)
            if not value:
                account.email = ""
                account.email_authenticated = None
                return before != ("", False)
            candidate = account.copy()
            candidate.set_confirmed_email(value)
            if before == (candidate.email, True):
                return False
            account.email = candidate.email
            account.email_authenticated = candidate.email_authenticated
            return True
        if ref.value == PROFILE_REALNAME:
            if account.real_name == value:
                return False
            account.real_name = value
            return True
        raise ConfigurationError(f"Profile field {ref.value!r} cannot be written in domain {self.domain}")

    # ------------------------------------------------------------------
    # Rule evaluation
    # ------------------------------------------------------------------

    def _source_values(
        self,
        rule: SyncRule,
        account: Account,
        session: ProviderSession,
        result: SyncResult,
    ) -> Optional[List[str]]:
        values = apply_filter(rule.filter, self._read(rule.source, account, session))
        if values is None:
            result.skipped.append(_describe(rule))
            return None
        if not values and not rule.delete:
            result.skipped.append(_describe(rule))
            return None
        return values

    def _plan_pull(self, working: Account, session: ProviderSession, result: SyncResult) -> bool:
        changed = False
        for rule in self.policy.pull:
            if rule.destination.type not in LOCAL_DESTINATIONS:
                raise ConfigurationError(
                    f"Pull rule destination {rule.destination.type!r} is not local in domain {self.domain}"
                )
            values = self._source_values(rule, working, session, result)
            if values is None:
                continue
            if not rule.overwrite and self._read(rule.destination, working, session):
                result.skipped.append(_describe(rule))
                continue
            if self._write_local(rule.destination, working, values):
                changed = True
                result.pulled.append(_describe(rule))
        return changed

    def _plan_push(
        self,
        working: Account,
        session: ProviderSession,
        result: SyncResult,
    ) -> List[Tuple[SyncRule, str, List[str]]]:
        planned = []
        for rule in self.policy.push:
            if rule.destination.type not in PROVIDER_DESTINATIONS:
                raise ConfigurationError(
                    f"Push rule destination {rule.destination.type!r} is not a provider attribute "
                    f"in domain {self.domain}"
                )
            key = self._provider_key(rule.destination)
            values = self._source_values(rule, working, session, result)
            if values is None:
                continue
            current = [v for v in session.get_user_attributes(key) if v != ""]
            if current and not rule.overwrite:
                result.skipped.append(_describe(rule))
                continue
            if current == values:
                continue
            planned.append((rule, key, values))
        return planned

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def synchronize(self, account: Account, session: ProviderSession) -> SyncResult:
        """
        Run one synchronization pass.

        On success `account` is updated in place with the pulled values.

        Raises
        ------
        ConfigurationError
            If a rule references an unknown kind, field, type or filter.
            Nothing has been written in that case.
        SyncError
            If the provider rejects a push or the account cannot be saved.
        """
        result = SyncResult()
        if not self.is_configured:
            return result

        working = account.copy()
        local_changed = self._plan_pull(working, session, result)
        pushes = self._plan_push(working, session, result)

        for rule, key, values in pushes:
            try:
                await session.set_user_attributes(key, values)
            except ProviderError as exc:
                logger.error(
                    "Pushing %s for account %s to domain %s failed: %s",
                    key,
                    account.name,
                    self.domain,
                    exc,
                )
                raise SyncError(f"Push of {key} to domain {self.domain} failed") from exc
            result.pushed.append(_describe(rule))

        if local_changed and account.is_registered:
            try:
                await self.accounts.save(working)
            except Exception as exc:
                logger.exception("Saving synchronized account %s failed", account.name)
                raise SyncError(f"Saving account {account.name} failed") from exc
            result.saved = True

        if local_changed:
            account.email = working.email
            account.email_authenticated = working.email_authenticated
            account.real_name = working.real_name
            account.preferences = working.preferences

        logger.info(
            "Synchronized account %s with domain %s (%d pulled, %d pushed, %d skipped)",
            account.name,
            self.domain,
            len(result.pulled),
            len(result.pushed),
            len(result.skipped),
        )
        return result
