from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from passkey_server.errors import Conflict
from passkey_server.models import Authenticator, User
from passkey_server.registry import CredentialRegistry


def test_create_user_rejects_duplicate_username(database):
    with database.session() as session:
        CredentialRegistry(session).create_user("alice")

    with database.session() as session:
        registry = CredentialRegistry(session)
        with pytest.raises(Conflict):
            registry.create_user("alice")
        # usernames are case-sensitive
        assert registry.create_user("Alice").username == "Alice"


def test_racing_username_claim_is_decided_by_unique_constraint(database, monkeypatch):
    def lookup_while_another_request_wins(username):
        # another request claims the name between our lookup and our insert
        with database.session() as other:
            CredentialRegistry(other).create_user(username)
        return None

    with pytest.raises(Conflict):
        with database.session() as session:
            registry = CredentialRegistry(session)
            monkeypatch.setattr(registry, "find_user", lookup_while_another_request_wins)
            registry.create_user("alice")

    with database.session() as session:
        assert [user.username for user in session.query(User)] == ["alice"]


def test_ensure_pending_user_is_idempotent_until_credential_added(database):
    with database.session() as session:
        first = CredentialRegistry(session).ensure_pending_user("alice")
    with database.session() as session:
        registry = CredentialRegistry(session)
        again = registry.ensure_pending_user("alice")
        assert again.id == first.id
        registry.add_credential(again, "cred-1", b"key", 0, ["usb"])

    with database.session() as session:
        with pytest.raises(Conflict):
            CredentialRegistry(session).ensure_pending_user("alice")
        assert session.query(User).count() == 1


def test_credential_ids_are_unique_across_users(database):
    with database.session() as session:
        registry = CredentialRegistry(session)
        alice = registry.create_user("alice")
        registry.add_credential(alice, "shared", b"key", 3, ["internal"])

    with database.session() as session:
        registry = CredentialRegistry(session)
        bob = registry.create_user("bob")
        bob_id = bob.id
    with database.session() as session:
        registry = CredentialRegistry(session)
        bob = session.get(User, bob_id)
        with pytest.raises(Conflict):
            registry.add_credential(bob, "shared", b"other", 0)

    with database.session() as session:
        registry = CredentialRegistry(session)
        assert registry.list_credentials(registry.find_user("bob")) == []
        alice = registry.find_user("alice")
        stored = registry.list_credentials(alice)
        assert [cred.credential_id for cred in stored] == ["shared"]
        assert stored[0].counter == 3
        assert stored[0].transports == ["internal"]


def test_find_credential_is_scoped_to_user(database):
    with database.session() as session:
        registry = CredentialRegistry(session)
        alice = registry.create_user("alice")
        bob = registry.create_user("bob")
        registry.add_credential(bob, "bob-cred", b"key")

        assert registry.find_credential(alice, "bob-cred") is None
        assert registry.find_credential(bob, "bob-cred").user_id == bob.id


def test_update_counter_overwrites(database):
    with database.session() as session:
        registry = CredentialRegistry(session)
        alice = registry.create_user("alice")
        credential = registry.add_credential(alice, "cred", b"key", 10)
        registry.update_counter(credential, 2)

    with database.session() as session:
        assert session.query(Authenticator).one().counter == 2


def test_challenge_compare_and_swap(database):
    with database.session() as session:
        registry = CredentialRegistry(session)
        alice = registry.create_user("alice")
        registry.set_challenge(alice, "first", "authentication")
        registry.set_challenge(alice, "second", "authentication")

        assert not registry.clear_challenge_if(alice, "first")
        assert alice.current_challenge == "second"
        assert registry.clear_challenge_if(alice, "second")
        assert alice.current_challenge is None
        assert alice.challenge_ceremony is None


def test_user_with_credentials_cannot_be_deleted(database):
    with database.session() as session:
        registry = CredentialRegistry(session)
        alice = registry.create_user("alice")
        registry.add_credential(alice, "cred", b"key")

    with pytest.raises(IntegrityError):
        with database.session() as session:
            session.delete(CredentialRegistry(session).find_user("alice"))
            session.flush()
