"""
LDAP Provider

Authenticates users against an LDAP directory and exposes their directory
entry as an external identity record keyed by DN.

User lookup works in one of two modes:

- bind_attr set: the DN is constructed directly as
  ``<bind_attr>=<username>,<user base DN>``
- otherwise: the user base DN is searched for ``<search_attr>=<username>``
  (plus the optional search filter); more than one match is treated as
  no match and logged
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Mapping, Optional

from ldap3.utils.dn import escape_rdn
from pydantic import ValidationError

from ..core.errors import ConfigurationError, CredentialError
from ..directory.client import DN_KEY, DirectoryClient, Entry, FilterMap, entry_dn
from ..domains import DomainOptions, LDAPProviderConfig
from ..identity.attributes import AttributeKind
from .base import ExternalIdentityRecord, FieldSpec, Provider, ProviderSession

logger = logging.getLogger("fedauth.providers.ldap")


def _record_from_entry(entry: Entry) -> ExternalIdentityRecord:
    dn = entry_dn(entry) or ""
    attributes = {k: v for k, v in entry.items() if k != DN_KEY}
    return ExternalIdentityRecord(dn, attributes)


class LDAPSession(ProviderSession):
    """Session for one directory entry; writes go back to the directory."""

    def __init__(self, provider: "LDAPProvider", record: ExternalIdentityRecord) -> None:
        self._provider = provider
        self._record = record

    @property
    def user_id(self) -> str:
        return self._record.external_key

    @property
    def record(self) -> ExternalIdentityRecord:
        return self._record

    def get_user_attributes(self, attribute: str) -> List[str]:
        return self._record.get(attribute)

    async def set_user_attributes(self, attribute: str, values: Optional[List[str]]) -> None:
        await asyncio.to_thread(
            self._provider.client.modify,
            self.user_id,
            {attribute: list(values or [])},
        )
        self._record.set(attribute, values)


class LDAPProvider(Provider):
    """
    Parameters
    ----------
    domain : str
        Name of the domain this provider serves.
    options : DomainOptions
        Domain configuration; `options.config` holds the connection and
        user lookup sections.
    client : Optional[DirectoryClient]
        Pre-built client (tests inject one bound to a mock server).
    """

    def __init__(
        self,
        domain: str,
        options: DomainOptions,
        client: Optional[DirectoryClient] = None,
    ) -> None:
        self.domain = domain
        self.options = options
        try:
            self.config = LDAPProviderConfig.model_validate(options.config)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid LDAP configuration for domain {domain}: {exc}") from exc
        self.client = client or DirectoryClient(self.config.connection)

    # ------------------------------------------------------------------
    # Description & fields
    # ------------------------------------------------------------------

    def describe(self) -> str:
        return self.options.description or f"LDAP: {self.domain}"

    def authentication_fields(self, external_key: Optional[str] = None) -> List[FieldSpec]:
        return [
            FieldSpec(name="username", type="string", label="Username"),
            FieldSpec(name="password", type="password", label="Password", sensitive=True),
        ]

    def attribute_fields(self, external_key: str) -> List[FieldSpec]:
        return [FieldSpec(name=attr, label=attr) for attr in self.config.user.editable_attributes]

    def map_user_attribute(self, kind: AttributeKind) -> Optional[str]:
        user = self.config.user
        return {
            AttributeKind.NAME: user.name_attr,
            AttributeKind.EMAIL: user.email_attr,
            AttributeKind.REALNAME: user.realname_attr,
        }.get(kind)

    # ------------------------------------------------------------------
    # Directory helpers
    # ------------------------------------------------------------------

    @property
    def user_base_dn(self) -> str:
        user = self.config.user
        if user.base_dn:
            return user.base_dn
        base = self.client.base_dn
        if user.base_rdn and base:
            return f"{user.base_rdn},{base}"
        return user.base_rdn or base or ""

    def _user_filters(self, filters: Optional[Dict] = None) -> FilterMap:
        combined: Dict = dict(filters or {})
        if self.config.user.search_filter:
            combined[len(combined)] = self.config.user.search_filter
        return combined

    def _search_single(self, filters: Mapping[str, str]) -> Optional[Entry]:
        entries = self.client.search(None, self._user_filters(dict(filters)), self.user_base_dn)
        if len(entries) > 1:
            logger.warning(
                "User query in domain %s returned %d results (filter: %s), treating as no match",
                self.domain,
                len(entries),
                dict(filters),
            )
            return None
        return entries[0] if entries else None

    def _lookup_dn(self, username: str) -> Optional[str]:
        bind_attr = self.config.user.bind_attr
        if bind_attr:
            base = self.user_base_dn
            rdn = f"{bind_attr}={escape_rdn(username)}"
            return f"{rdn},{base}" if base else rdn
        entry = self._search_single({self.config.user.search_attr: username})
        return entry_dn(entry) if entry else None

    def _read_user(self, dn: str) -> Optional[Entry]:
        return self.client.read(dn, None, self._user_filters())

    # ------------------------------------------------------------------
    # Provider API
    # ------------------------------------------------------------------

    def _authenticate(self, username: str, password: str) -> LDAPSession:
        dn = self._lookup_dn(username)
        if not dn:
            logger.debug("No directory entry for %s in domain %s", username, self.domain)
            raise CredentialError(f"Unknown user {username} in domain {self.domain}")
        if not self.client.bind_as(dn, password):
            raise CredentialError(f"Bind as {dn} rejected")
        entry = self._read_user(dn)
        if entry is None:
            # bound, but outside the configured user filter
            raise CredentialError(f"Entry {dn} does not match the user filter of domain {self.domain}")
        return LDAPSession(self, _record_from_entry(entry))

    async def authenticate(self, values: Mapping[str, str]) -> Optional[LDAPSession]:
        """
        Verify a username/password pair.

        Returns None when either field is missing, so other mechanisms can
        try.

        Raises
        ------
        CredentialError
            Unknown user or wrong password.
        DirectoryError
            Directory unreachable or query failure.
        """
        username = (values.get("username") or "").strip()
        password = values.get("password") or ""
        if not username or not password:
            return None
        return await asyncio.to_thread(self._authenticate, username, password)

    def can_sudo(self, external_key: str) -> bool:
        connection = self.config.connection
        return bool(connection.bind_dn and connection.bind_pass)

    async def sudo(self, external_key: str) -> Optional[LDAPSession]:
        if not self.can_sudo(external_key):
            return None
        entry = await asyncio.to_thread(self._read_user, external_key)
        if entry is None:
            return None
        return LDAPSession(self, _record_from_entry(entry))

    async def find_user(self, attribute: str, value: str) -> Optional[str]:
        entry = await asyncio.to_thread(self._search_single, {attribute: value})
        return entry_dn(entry) if entry else None

    async def close(self) -> None:
        await asyncio.to_thread(self.client.unbind)


def create_ldap_provider(domain: str, options: DomainOptions) -> LDAPProvider:
    return LDAPProvider(domain, options)
