from datetime import datetime, timedelta, timezone

import pytest

from chirpy.storage.errors import ConstraintViolation
from chirpy.storage.memory import MemoryStore


def test_duplicate_email_rejected():
    store = MemoryStore()
    store.create_user("a@example.com")

    with pytest.raises(ConstraintViolation) as excinfo:
        store.create_user("a@example.com")

    assert excinfo.value.field == "email"
    assert excinfo.value.detail == {"field": "email"}


def test_reads_return_copies():
    store = MemoryStore()
    user = store.create_user("a@example.com")
    now = datetime.now(timezone.utc)
    store.insert_refresh_token("t" * 64, user.id, now + timedelta(days=1))

    row = store.get_refresh_token("t" * 64)
    row.revoked_at = now

    assert store.get_refresh_token("t" * 64).revoked_at is None


def test_replace_credentials_is_all_or_nothing():
    store = MemoryStore()
    first = store.create_user("a@example.com")
    store.save_password(first.id, "old-hash", "argon2id")
    store.create_user("b@example.com")

    with pytest.raises(ConstraintViolation):
        store.replace_credentials(first.id, "b@example.com", "new-hash", "argon2id")

    assert store.get_user(first.id).email == "a@example.com"
    assert store.get_password_record(first.id) == ("old-hash", "argon2id")

    updated = store.replace_credentials(first.id, "c@example.com", "new-hash", "argon2id")
    assert updated.email == "c@example.com"
    assert store.get_user_by_email("c@example.com").id == first.id
    assert store.get_password_record(first.id) == ("new-hash", "argon2id")


def test_replace_credentials_for_missing_user():
    store = MemoryStore()

    assert store.replace_credentials("missing", "d@example.com", "hash", "argon2id") is None


def test_list_chirps_filters_and_sorts():
    store = MemoryStore()
    alice = store.create_user("alice@example.com")
    bob = store.create_user("bob@example.com")
    first = store.create_chirp("first", alice.id)
    store.create_chirp("from bob", bob.id)
    second = store.create_chirp("second", alice.id)
    # Pin creation times so ordering does not depend on clock resolution
    store.chirps[first.id].created_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    store.chirps[second.id].created_at = datetime(2024, 1, 2, tzinfo=timezone.utc)

    ascending = store.list_chirps(alice.id)
    descending = store.list_chirps(alice.id, descending=True)

    assert [c.body for c in ascending] == ["first", "second"]
    assert [c.body for c in descending] == ["second", "first"]
    assert len(store.list_chirps()) == 3


def test_delete_users_cascades():
    store = MemoryStore()
    user = store.create_user("a@example.com")
    store.save_password(user.id, "hash", "argon2id")
    store.create_chirp("hello", user.id)
    store.insert_refresh_token("t" * 64, user.id, datetime.now(timezone.utc))

    assert store.delete_users() == 1
    assert store.get_user(user.id) is None
    assert store.get_password_record(user.id) is None
    assert store.list_chirps() == []
    assert store.get_refresh_token("t" * 64) is None


def test_save_password_requires_user():
    store = MemoryStore()

    with pytest.raises(ConstraintViolation):
        store.save_password("missing", "hash", "argon2id")


def test_state_survives_restart(tmp_path):
    store = MemoryStore(state_dir=str(tmp_path))
    user = store.create_user("a@example.com")
    store.save_password(user.id, "$argon2id$hash", "argon2id")
    expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
    store.insert_refresh_token("t" * 64, user.id, expires)
    revoked_at = datetime(2024, 6, 1, tzinfo=timezone.utc)
    store.revoke_refresh_token("t" * 64, revoked_at)
    chirp = store.create_chirp("persisted", user.id)

    reloaded = MemoryStore(state_dir=str(tmp_path))

    assert reloaded.get_user(user.id).email == "a@example.com"
    assert reloaded.get_password_record(user.id) == ("$argon2id$hash", "argon2id")
    row = reloaded.get_refresh_token("t" * 64)
    assert row.expires_at == expires
    assert row.revoked_at == revoked_at
    assert reloaded.get_chirp(chirp.id).body == "persisted"
