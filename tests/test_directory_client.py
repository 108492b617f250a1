"""
Directory Client Tests

Filter construction, entry normalization and the protocol operations
against the ldap3 mock server.
"""

import pytest

from mw_federated_auth.core.errors import DirectoryBindError
from mw_federated_auth.directory.client import (
    DirectoryClient,
    entry_dn,
    escape,
    format_filter,
    normalize_entry,
)
from mw_federated_auth.domains import LDAPConnectionConfig

from support import ADMIN_DN, PEOPLE_DN, user_dn


class TestFilters:
    def test_escape_special_characters(self):
        assert escape("a*b(c)\\") == "a\\2ab\\28c\\29\\5c"
        assert escape("nul\x00") == "nul\\00"
        assert escape("plain") == "plain"

    def test_no_filters_matches_everything(self):
        assert format_filter(None) == "(objectClass=*)"
        assert format_filter({}) == "(objectClass=*)"

    def test_single_term_is_not_wrapped(self):
        assert format_filter({"uid": "alice"}) == "(uid=alice)"

    def test_terms_are_anded_and_escaped(self):
        result = format_filter({"uid": "al*ce", "mail": "a@b"})
        assert result == "(&(uid=al\\2ace)(mail=a@b))"

    def test_empty_value_requires_absence(self):
        assert format_filter({"uid": "alice", "mail": ""}) == "(&(uid=alice)(!(mail=*)))"

    def test_raw_fragments(self):
        assert format_filter({"uid": "bob", 0: "objectClass=person"}) == "(&(uid=bob)(objectClass=person))"
        assert format_filter({0: "(|(a=1)(b=2))"}) == "(|(a=1)(b=2))"
        assert format_filter({0: "  "}) == "(objectClass=*)"


class TestNormalizeEntry:
    def test_decodes_and_drops_empty(self):
        raw = {
            "dn": "uid=x,dc=example,dc=org",
            "raw_attributes": {"uid": [b"x"], "mail": [], "cn": [b"X Y"]},
        }
        entry = normalize_entry(raw)

        assert entry["uid"] == ["x"]
        assert entry["cn"] == ["X Y"]
        assert "mail" not in entry
        assert entry_dn(entry) == "uid=x,dc=example,dc=org"

    def test_entry_dn_missing(self):
        assert entry_dn({}) is None


def test_uri_built_from_parts():
    client = DirectoryClient(LDAPConnectionConfig(host="ldap.example.org", port=636, tls=True))
    assert client.uri == "ldaps://ldap.example.org:636"

    client = DirectoryClient(LDAPConnectionConfig(host="ldap.example.org"))
    assert client.uri == "ldap://ldap.example.org"

    client = DirectoryClient(LDAPConnectionConfig(uri="ldap://other:1389", host="ignored"))
    assert client.uri == "ldap://other:1389"


# ---------------------------------------------------------------------
# Protocol operations
# ---------------------------------------------------------------------

def test_search_subtree(make_client):
    client = make_client()
    entries = client.search(["uid", "mail"], {"uid": "alice"})

    assert len(entries) == 1
    assert entries[0]["mail"] == ["alice@example.org"]
    assert entry_dn(entries[0]) == user_dn("alice")
    assert client.is_bound


def test_search_below_missing_base_is_empty(make_client):
    client = make_client()
    assert client.search(None, {"uid": "alice"}, "ou=missing,dc=example,dc=org") == []


def test_search_filters_on_absence(make_client):
    client = make_client()
    entries = client.search(None, {"uid": "alice", "telephoneNumber": None}, PEOPLE_DN)
    assert [entry_dn(e) for e in entries] == [user_dn("alice")]


def test_read_by_dn(make_client):
    client = make_client()

    entry = client.read(user_dn("bob"))
    assert entry["cn"] == ["Bob Jones"]

    assert client.read("uid=nobody," + PEOPLE_DN) is None
    assert client.read(user_dn("bob"), None, {"uid": "alice"}) is None


def test_bind_as_checks_credentials(make_client):
    client = make_client()

    assert client.bind_as(user_dn("alice"), "alicepw") is True
    assert client.bind_as(user_dn("alice"), "wrong") is False
    assert client.bind_as(user_dn("alice"), "") is False
    assert client.bind_as("", "alicepw") is False


def test_bind_as_keeps_service_binding(make_client):
    client = make_client()
    client.ensure_bound()

    client.bind_as(user_dn("alice"), "alicepw")

    assert client.is_bound
    assert client.read(ADMIN_DN) is not None


def test_service_bind_with_credentials(make_client):
    client = make_client()

    assert client.bind() is True
    assert client.is_bound

    entries = client.search(["cn"], {"uid": "bob"})
    assert [e["cn"] for e in entries] == [["Bob Jones"]]


def test_rejected_service_bind(make_client):
    client = make_client(bind_pass="not-the-password")

    with pytest.raises(DirectoryBindError):
        client.search(None, {"uid": "alice"})
    assert not client.is_bound


def test_modify_replaces_values(make_client):
    client = make_client()

    client.modify(user_dn("bob"), {"telephoneNumber": ["555-0100"]})

    assert client.read(user_dn("bob"))["telephoneNumber"] == ["555-0100"]


def test_unbind_resets_state(make_client):
    client = make_client()
    client.ensure_bound()

    client.unbind()

    assert not client.is_bound
    # reconnects transparently
    assert client.read(user_dn("alice")) is not None
