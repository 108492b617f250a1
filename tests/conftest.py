"""
Shared fixtures: an in-memory SQLite database with the link and MediaWiki
tables, an ldap3 mock directory with a service account and two users, and
a provider registry wired to both the mock directory and StaticProvider.
"""

import pytest
from ldap3 import MOCK_SYNC, NONE, Connection, Server
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from mw_federated_auth.accounts.directory import SqlAccountDirectory
from mw_federated_auth.db.link_store import LinkStore
from mw_federated_auth.db.models import Base, MediaWikiBase
from mw_federated_auth.db.session import make_sessionmaker
from mw_federated_auth.directory.client import DirectoryClient
from mw_federated_auth.domains import FederationOptions, LDAPProviderConfig
from mw_federated_auth.identity.manager import DomainManager
from mw_federated_auth.providers.ldap import LDAPProvider
from mw_federated_auth.providers.registry import ProviderRegistry

from support import (
    ADMIN_DN,
    ADMIN_PASSWORD,
    BASE_DN,
    PEOPLE_DN,
    StaticProvider,
    add_person,
    connection_config,
)


# ---------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(MediaWikiBase.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_sessionmaker(engine)


@pytest.fixture
def link_store(session_factory):
    return LinkStore(session_factory)


@pytest.fixture
def accounts(session_factory):
    return SqlAccountDirectory(session_factory)


# ---------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------

@pytest.fixture
def ldap_server():
    server = Server("fake-ldap", get_info=NONE)
    conn = Connection(server, client_strategy=MOCK_SYNC)
    conn.strategy.add_entry(BASE_DN, {"objectClass": ["domain"], "dc": "example"})
    conn.strategy.add_entry(PEOPLE_DN, {"objectClass": ["organizationalUnit"], "ou": "people"})
    conn.strategy.add_entry(ADMIN_DN, {
        "objectClass": ["person"],
        "cn": "admin",
        "sn": "admin",
        "userPassword": ADMIN_PASSWORD,
    })
    add_person(conn, "alice", "Alice Smith", "alice@example.org", "alicepw")
    add_person(conn, "bob", "Bob Jones", "bob@example.org", "bobpw")
    return server


@pytest.fixture
def ldap_conn(ldap_server):
    """Raw mock connection for adding entries inside a test."""
    return Connection(ldap_server, client_strategy=MOCK_SYNC)


@pytest.fixture
def make_client(ldap_server):
    def _make(**overrides):
        config = LDAPProviderConfig.model_validate({"connection": connection_config(**overrides)})
        return DirectoryClient(config.connection, server=ldap_server, client_strategy=MOCK_SYNC)
    return _make


@pytest.fixture
def make_ldap_provider(ldap_server):
    def _make(name, options):
        provider = LDAPProvider(name, options)
        provider.client = DirectoryClient(
            provider.config.connection, server=ldap_server, client_strategy=MOCK_SYNC
        )
        return provider
    return _make


# ---------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------

@pytest.fixture
def registry(make_ldap_provider):
    registry = ProviderRegistry()
    registry.register("ldap", make_ldap_provider)
    registry.register("static", StaticProvider)
    return registry


@pytest.fixture
def make_manager(registry, link_store, accounts):
    def _make(domains, enable_local=True):
        options = FederationOptions(enable_local=enable_local, domains=domains)
        return DomainManager(options, registry, link_store, accounts)
    return _make
