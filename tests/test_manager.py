import pytest

from mw_federated_auth.core.errors import ConfigurationError, UnknownDomainError
from mw_federated_auth.domains import DomainOptions

from support import static_domain_options


@pytest.fixture
def manager(make_manager):
    return make_manager({
        "corp": static_domain_options(),
        "partner": static_domain_options(),
        "legacy": static_domain_options(enabled=False),
        "exotic": DomainOptions(provider="saml"),
    })


def test_only_usable_domains_are_listed(manager):
    assert manager.all_domains() == ["corp", "partner"]
    assert manager.has_domain("corp")
    assert not manager.has_domain("legacy")
    assert not manager.has_domain("exotic")
    assert manager.is_local_enabled


def test_handles_are_cached(manager):
    first = manager.get_domain("corp")

    assert manager.get_domain("corp") is first
    assert manager.get_domain("partner") is not first
    assert first.name == "corp"


@pytest.mark.parametrize("name", ["legacy", "exotic", "missing"])
def test_unknown_domains(manager, name):
    with pytest.raises(UnknownDomainError):
        manager.get_domain(name)


def test_invalid_provider_configuration(make_manager):
    manager = make_manager({"broken": DomainOptions(provider="ldap", config={"connection": {"port": "x"}})})

    with pytest.raises(ConfigurationError):
        manager.get_domain("broken")


async def test_account_domains(manager, link_store, accounts):
    alice = await accounts.create("Alice")
    await link_store.link(alice.id, "partner", "p-1")
    await link_store.link(alice.id, "corp", "uid=alice")
    await link_store.link(alice.id, "legacy", "old-1")

    assert await manager.get_account_domains(alice.id) == ["corp", "partner"]
    assert await manager.get_account_domains_by_name("alice") == ["corp", "partner"]
    assert await manager.get_account_domains_by_name("nobody") == []
    assert await manager.get_account_domains_by_name("a/b") == []


async def test_close_releases_providers(manager):
    provider = manager.get_domain("corp").provider

    await manager.close()

    assert provider.closed
    assert manager.get_domain("corp").provider is not provider
