"""
Test doubles shared across test modules.
"""

from typing import Dict, List, Mapping, Optional, Tuple

from mw_federated_auth.core.errors import CredentialError, FederationError
from mw_federated_auth.domains import DomainOptions, SyncPolicy, SyncRule, UserPolicy, ValueRef
from mw_federated_auth.identity.attributes import AttributeKind
from mw_federated_auth.providers.base import (
    ExternalIdentityRecord,
    FieldSpec,
    Provider,
    RecordSession,
)

DEFAULT_ATTRIBUTE_MAP = {
    AttributeKind.NAME: "uid",
    AttributeKind.EMAIL: "mail",
    AttributeKind.REALNAME: "cn",
}


class StaticProvider(Provider):
    """
    Provider backed by a dict of users. Sessions share the stored record,
    so pushed attributes stay visible to later sessions.
    """

    def __init__(
        self,
        domain: str,
        options: DomainOptions,
        *,
        sudo: bool = True,
        attribute_map: Optional[Mapping[AttributeKind, str]] = None,
    ) -> None:
        self.domain = domain
        self.options = options
        self.sudo_enabled = sudo
        self.attribute_map = dict(DEFAULT_ATTRIBUTE_MAP if attribute_map is None else attribute_map)
        self.users: Dict[str, Tuple[str, ExternalIdentityRecord]] = {}
        self.failure: Optional[FederationError] = None
        self.closed = False

    def add_user(self, username: str, password: str, external_key: Optional[str] = None, **attributes) -> ExternalIdentityRecord:
        values = {
            name: value if isinstance(value, list) else [value]
            for name, value in attributes.items()
        }
        values.setdefault("uid", [username])
        record = ExternalIdentityRecord(external_key or f"uid={username}", values)
        self.users[username] = (password, record)
        return record

    def describe(self) -> str:
        return self.options.description or f"Static: {self.domain}"

    def authentication_fields(self, external_key: Optional[str] = None) -> List[FieldSpec]:
        return [
            FieldSpec(name="username"),
            FieldSpec(name="password", type="password", sensitive=True),
        ]

    def attribute_fields(self, external_key: str) -> List[FieldSpec]:
        return [FieldSpec(name="telephoneNumber")]

    def map_user_attribute(self, kind: AttributeKind) -> Optional[str]:
        return self.attribute_map.get(kind)

    async def authenticate(self, values: Mapping[str, str]) -> Optional[RecordSession]:
        if self.failure is not None:
            raise self.failure
        username = values.get("username")
        password = values.get("password")
        if not username or not password:
            return None
        stored = self.users.get(username)
        if stored is None or stored[0] != password:
            raise CredentialError(f"Rejected {username}")
        return RecordSession(stored[1])

    def can_sudo(self, external_key: str) -> bool:
        return self.sudo_enabled

    async def sudo(self, external_key: str) -> Optional[RecordSession]:
        if not self.sudo_enabled:
            return None
        for _, record in self.users.values():
            if record.external_key == external_key:
                return RecordSession(record)
        return None

    async def find_user(self, attribute: str, value: str) -> Optional[str]:
        for _, record in self.users.values():
            if value in record.get(attribute):
                return record.external_key
        return None

    async def close(self) -> None:
        self.closed = True


def ref(text: str) -> ValueRef:
    kind, _, value = text.partition(":")
    return ValueRef(type=kind, value=value)


def rule(source: str, destination: str, **kwargs) -> SyncRule:
    return SyncRule(source=ref(source), destination=ref(destination), **kwargs)


def static_domain_options(
    *,
    map_type: str = "email",
    hint_type: str = "username",
    auto_create: Optional[bool] = True,
    pull=(),
    push=(),
    **kwargs,
) -> DomainOptions:
    return DomainOptions(
        provider="static",
        user=UserPolicy(map_type=map_type, hint_type=hint_type, auto_create=auto_create),
        sync=SyncPolicy(pull=list(pull), push=list(push)),
        **kwargs,
    )


# ---------------------------------------------------------------------
# LDAP fixtures data
# ---------------------------------------------------------------------

BASE_DN = "dc=example,dc=org"
PEOPLE_DN = "ou=people,dc=example,dc=org"
ADMIN_DN = "cn=admin,dc=example,dc=org"
ADMIN_PASSWORD = "adminpw"


def user_dn(uid: str) -> str:
    return f"uid={uid},{PEOPLE_DN}"


def add_person(conn, uid: str, cn: str, mail: str, password: str, **extra) -> None:
    attributes = {
        "objectClass": ["inetOrgPerson"],
        "uid": uid,
        "cn": cn,
        "sn": cn.split()[-1],
        "mail": mail,
        "userPassword": password,
    }
    attributes.update(extra)
    conn.strategy.add_entry(user_dn(uid), attributes)


def connection_config(**overrides) -> dict:
    config = {
        "host": "fake-ldap",
        "bind_dn": ADMIN_DN,
        "bind_pass": ADMIN_PASSWORD,
        "base_dn": BASE_DN,
    }
    config.update(overrides)
    return config


def ldap_domain_options(
    *,
    map_type: str = "email",
    hint_type: str = "username",
    auto_create: Optional[bool] = True,
    connection: Optional[dict] = None,
    user: Optional[dict] = None,
    pull=(),
    push=(),
    **kwargs,
) -> DomainOptions:
    return DomainOptions(
        provider="ldap",
        config={
            "connection": connection if connection is not None else connection_config(),
            "user": user if user is not None else {"base_rdn": "ou=people"},
        },
        user=UserPolicy(map_type=map_type, hint_type=hint_type, auto_create=auto_create),
        sync=SyncPolicy(pull=list(pull), push=list(push)),
        **kwargs,
    )
