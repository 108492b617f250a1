"""
Primary Authentication Flow Tests

End-to-end scenarios against the ldap3 mock directory and the SQLite
link and account tables.
"""

import pytest

from mw_federated_auth.accounts.models import Account
from mw_federated_auth.core.errors import (
    ConfigurationError,
    CredentialError,
    DirectoryConnectionError,
    LinkConflictError,
)
from mw_federated_auth.flows.primary import (
    SESSIONKEY_DOMAIN,
    SESSIONKEY_EXTERNAL_KEY,
    PrimaryAuthFlow,
)
from mw_federated_auth.flows.requests import (
    AttrRequest,
    AuthAction,
    AuthRequest,
    LinkRequest,
    ResponseStatus,
)
from mw_federated_auth.sessions.store import AuthSessionStore

from support import ldap_domain_options, rule, static_domain_options, user_dn

REALNAME_PULL = [rule("mapped:realname", "profile:realname")]


@pytest.fixture
def manager(make_manager):
    return make_manager({
        "corp": ldap_domain_options(
            pull=REALNAME_PULL,
            user={"base_rdn": "ou=people", "editable_attributes": ["telephoneNumber"]},
        ),
    })


@pytest.fixture
def flow(manager):
    return PrimaryAuthFlow(manager)


@pytest.fixture
def session():
    return AuthSessionStore().session()


def login(domain, username, password):
    return [AuthRequest(domain, values={"username": username, "password": password})]


# ---------------------------------------------------------------------
# Request enumeration
# ---------------------------------------------------------------------

async def test_login_requests(flow):
    requests = await flow.get_authentication_requests(AuthAction.LOGIN)

    assert [r.domain for r in requests] == [None, "corp"]
    assert requests[0].is_local
    assert requests[1].description == "LDAP: corp"
    assert [f.name for f in requests[1].fields] == ["username", "password"]
    assert all(r.action is AuthAction.LOGIN for r in requests)


async def test_no_local_request_when_disabled(make_manager):
    flow = PrimaryAuthFlow(make_manager({"corp": ldap_domain_options()}, enable_local=False))

    requests = await flow.get_authentication_requests(AuthAction.LOGIN)

    assert [r.domain for r in requests] == ["corp"]


async def test_link_unlink_and_change_requests(flow, accounts, link_store):
    alice = await accounts.create("Alice")

    link_requests = await flow.get_authentication_requests(AuthAction.LINK, "Alice")
    assert [(type(r), r.domain) for r in link_requests] == [(AuthRequest, "corp")]

    await link_store.link(alice.id, "corp", user_dn("alice"))

    assert await flow.get_authentication_requests(AuthAction.LINK, "Alice") == []

    unlink_requests = await flow.get_authentication_requests(AuthAction.UNLINK, "Alice")
    assert len(unlink_requests) == 1
    assert isinstance(unlink_requests[0], LinkRequest)
    assert unlink_requests[0].external_key == user_dn("alice")
    assert unlink_requests[0].username == "Alice"

    change_requests = await flow.get_authentication_requests(AuthAction.CHANGE, "Alice")
    assert isinstance(change_requests[0], AttrRequest)
    assert [f.name for f in change_requests[0].attribute_fields] == ["telephoneNumber"]
    assert change_requests[0].auth_fields is None


# ---------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------

async def test_login_with_linked_account_synchronizes(flow, session, accounts, link_store):
    alice = await accounts.create("Alice")
    await link_store.link(alice.id, "corp", user_dn("alice"))

    response = await flow.begin_authentication(login("corp", "alice", "alicepw"), session)

    assert response.status is ResponseStatus.PASS
    assert response.username == "Alice"
    assert (await accounts.get(alice.id)).real_name == "Alice Smith"


async def test_first_login_maps_by_email_and_links(flow, session, accounts, link_store):
    ally = await accounts.create("Ally", email="alice@example.org")

    response = await flow.begin_authentication(login("corp", "alice", "alicepw"), session)

    assert response.status is ResponseStatus.PASS
    assert response.username == "Ally"
    assert await link_store.get_account_for_external_key("corp", user_dn("alice")) == ally.id


async def test_first_login_requests_account_creation(flow, session, accounts, link_store):
    response = await flow.begin_authentication(login("corp", "alice", "alicepw"), session)

    assert response.status is ResponseStatus.PASS
    assert response.create_account
    assert response.username == "Alice"
    assert session.get(SESSIONKEY_DOMAIN) == "corp"
    assert session.get(SESSIONKEY_EXTERNAL_KEY) == user_dn("alice")

    alice = await accounts.create("Alice")
    confirmed = await flow.auto_created_account(alice, session)

    assert confirmed.status is ResponseStatus.PASS
    assert await link_store.get_account_for_external_key("corp", user_dn("alice")) == alice.id
    assert (await accounts.get(alice.id)).real_name == "Alice Smith"
    assert session.get(SESSIONKEY_EXTERNAL_KEY) is None

    # pending state is consumed exactly once
    again = await flow.auto_created_account(alice, session)
    assert again.status is ResponseStatus.ABSTAIN


async def test_auto_created_account_must_be_persisted(flow, session):
    await flow.begin_authentication(login("corp", "alice", "alicepw"), session)

    response = await flow.auto_created_account(Account(name="Alice"), session)

    assert response.status is ResponseStatus.FAIL


async def test_auto_create_disabled_asks_for_link(make_manager, session):
    flow = PrimaryAuthFlow(make_manager({"corp": ldap_domain_options(auto_create=False)}))

    response = await flow.begin_authentication(login("corp", "alice", "alicepw"), session)

    assert response.status is ResponseStatus.PASS
    assert response.username is None
    assert not response.create_account
    assert response.link_request.domain == "corp"
    assert response.link_request.external_key == user_dn("alice")
    assert response.link_request.username == "Alice"
    assert session.get(SESSIONKEY_DOMAIN) is None


async def test_host_may_forbid_auto_creation(manager, session):
    flow = PrimaryAuthFlow(manager, may_auto_create=lambda name: False)

    response = await flow.begin_authentication(login("corp", "alice", "alicepw"), session)

    assert response.link_request is not None
    assert not response.create_account


async def test_hint_to_existing_account_needs_confirmation(flow, session, accounts, link_store):
    alice = await accounts.create("Alice", email="someone@elsewhere.org")

    response = await flow.begin_authentication(login("corp", "alice", "alicepw"), session)

    assert response.username is None
    request = response.link_request
    assert request.username == "Alice"
    assert not await link_store.is_linked(alice.id, "corp")

    status = await flow.allows_authentication_data_change(request)
    assert status.ok and not status.ignored

    await flow.change_authentication_data(request)

    assert await link_store.get_account_for_external_key("corp", user_dn("alice")) == alice.id


async def test_no_hint_gives_anonymous_link_request(make_manager, session, accounts, link_store):
    flow = PrimaryAuthFlow(make_manager({"corp": ldap_domain_options(map_type="email", hint_type="email")}))

    response = await flow.begin_authentication(login("corp", "alice", "alicepw"), session)

    assert response.status is ResponseStatus.PASS
    assert response.link_request.username is None
    status = await flow.allows_authentication_data_change(response.link_request)
    assert status.ignored


# ---------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------

async def test_wrong_password_abstains(flow, session):
    response = await flow.begin_authentication(login("corp", "alice", "wrong"), session)
    assert response.status is ResponseStatus.ABSTAIN


async def test_wrong_password_fails_when_authoritative(manager, session):
    flow = PrimaryAuthFlow(manager, authoritative=True)

    response = await flow.begin_authentication(login("corp", "alice", "wrong"), session)

    assert response.status is ResponseStatus.FAIL
    assert response.message == CredentialError.user_message


async def test_incomplete_credentials(manager, session):
    flow = PrimaryAuthFlow(manager, authoritative=True)

    response = await flow.begin_federated_authentication("corp", {"username": "alice"}, session)

    assert response.status is ResponseStatus.FAIL


async def test_requests_without_values_abstain(flow, session):
    requests = [AuthRequest(None, values={"username": "x", "password": "y"}), AuthRequest("corp")]

    response = await flow.begin_authentication(requests, session)

    assert response.status is ResponseStatus.ABSTAIN


async def test_unknown_domain_fails(flow, session):
    response = await flow.begin_authentication(login("nowhere", "alice", "alicepw"), session)

    assert response.status is ResponseStatus.FAIL
    assert response.message == ConfigurationError.user_message


async def test_provider_outage_fails(make_manager, session):
    manager = make_manager({"corp": static_domain_options()})
    manager.get_domain("corp").provider.failure = DirectoryConnectionError("ldap down")
    flow = PrimaryAuthFlow(manager)

    response = await flow.begin_authentication(login("corp", "alice", "alicepw"), session)

    assert response.status is ResponseStatus.FAIL
    assert response.message == DirectoryConnectionError.user_message


async def test_mapping_misconfiguration_fails(make_manager, session):
    flow = PrimaryAuthFlow(make_manager({"corp": ldap_domain_options(map_type="phone", hint_type="phone")}))

    response = await flow.begin_authentication(login("corp", "alice", "alicepw"), session)

    assert response.status is ResponseStatus.FAIL


async def test_sync_failure_fails_but_keeps_link(make_manager, session, accounts, link_store):
    bad_pull = [rule("mapped:realname", "attribute:displayName")]
    flow = PrimaryAuthFlow(make_manager({"corp": ldap_domain_options(pull=bad_pull)}))
    ally = await accounts.create("Ally", email="alice@example.org")

    response = await flow.begin_authentication(login("corp", "alice", "alicepw"), session)

    assert response.status is ResponseStatus.FAIL
    assert await link_store.get_account_for_external_key("corp", user_dn("alice")) == ally.id


# ---------------------------------------------------------------------
# Account linking
# ---------------------------------------------------------------------

async def test_account_link(flow, session, accounts, link_store):
    carol = await accounts.create("Carol")

    response = await flow.begin_account_link(carol, login("corp", "alice", "alicepw"), session)

    assert response.status is ResponseStatus.PASS
    assert response.username == "Carol"
    assert await link_store.get_account_for_external_key("corp", user_dn("alice")) == carol.id


async def test_account_link_to_identity_linked_elsewhere(flow, session, accounts, link_store):
    alice = await accounts.create("Alice")
    carol = await accounts.create("Carol")
    await link_store.link(alice.id, "corp", user_dn("alice"))

    response = await flow.begin_account_link(carol, login("corp", "alice", "alicepw"), session)

    assert response.status is ResponseStatus.FAIL
    assert response.message == LinkConflictError.user_message
    assert await link_store.get_account_for_external_key("corp", user_dn("alice")) == alice.id


async def test_concurrent_link_resolves_to_winner(manager, accounts, link_store):
    winner = await accounts.create("Winner")
    loser = await accounts.create("Loser")
    await link_store.link(winner.id, "corp", user_dn("alice"))

    account = await manager.get_domain("corp").claim_external_key(loser, user_dn("alice"))

    assert account.id == winner.id
    assert not await link_store.is_linked(loser.id, "corp")


# ---------------------------------------------------------------------
# Continuation
# ---------------------------------------------------------------------

async def test_continue_with_chosen_name(flow, session, accounts):
    await flow.begin_authentication(login("corp", "alice", "alicepw"), session)
    await accounts.create("Taken")

    chosen = await flow.continue_authentication([AuthRequest("corp", username="new_alice")], session)
    assert chosen.status is ResponseStatus.PASS
    assert chosen.username == "New alice"
    assert chosen.create_account

    taken = await flow.continue_authentication([AuthRequest("corp", username="taken")], session)
    assert taken.status is ResponseStatus.FAIL

    invalid = await flow.continue_authentication([AuthRequest("corp", username="a@b")], session)
    assert invalid.status is ResponseStatus.FAIL


async def test_continue_without_pending_state(flow, session):
    response = await flow.continue_authentication([AuthRequest("corp", username="x")], session)
    assert response.status is ResponseStatus.ABSTAIN


async def test_post_authentication_clears_pending_state(flow, session):
    await flow.begin_authentication(login("corp", "alice", "alicepw"), session)

    await flow.post_authentication(session)

    assert session.get(SESSIONKEY_DOMAIN) is None


# ---------------------------------------------------------------------
# Existence checks & data changes
# ---------------------------------------------------------------------

async def test_user_exists(flow, accounts, link_store):
    zed = await accounts.create("Zed")
    await link_store.link(zed.id, "corp", "uid=zed,ou=people,dc=example,dc=org")

    assert await flow.test_user_exists("Zed")
    assert await flow.test_user_exists("bob")
    assert not await flow.test_user_exists("nobody")


async def test_unlink_request(flow, accounts, link_store):
    alice = await accounts.create("Alice")
    await link_store.link(alice.id, "corp", user_dn("alice"))
    request = (await flow.get_authentication_requests(AuthAction.REMOVE, "Alice"))[0]

    assert (await flow.allows_authentication_data_change(request)).ok
    await flow.change_authentication_data(request)

    assert not await link_store.is_linked(alice.id, "corp")


async def test_link_request_for_unknown_domain(flow):
    request = LinkRequest("nowhere", external_key="x", username="Alice")

    status = await flow.allows_authentication_data_change(request)

    assert not status.ok


async def test_attribute_change(flow, manager, accounts, link_store):
    alice = await accounts.create("Alice")
    await link_store.link(alice.id, "corp", user_dn("alice"))
    request = (await flow.get_authentication_requests(AuthAction.CHANGE, "Alice"))[0]
    request.attribute_values = {"telephoneNumber": "555-0199", "mail": "evil@example.org"}

    status = await flow.allows_authentication_data_change(request)
    assert status.ok
    assert request.provider_session.user_id == user_dn("alice")

    await flow.change_authentication_data(request)

    entry = manager.get_domain("corp").provider.client.read(user_dn("alice"))
    assert entry["telephoneNumber"] == ["555-0199"]
    assert entry["mail"] == ["alice@example.org"]
