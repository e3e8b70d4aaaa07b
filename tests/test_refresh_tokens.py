"""Unit tests for the refresh token store."""

import threading
from datetime import timedelta

import pytest

from chirpy.service.errors import (
    TokenExpiredError,
    TokenNotFoundError,
    TokenRevokedError,
)
from chirpy.service.refresh_tokens import RefreshTokenStore
from chirpy.storage.errors import ConstraintViolation
from chirpy.storage.memory import MemoryStore

TTL = timedelta(days=60)


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def user(memory_store):
    return memory_store.create_user("chirper@example.com")


@pytest.fixture
def tokens(memory_store, fake_clock):
    return RefreshTokenStore(memory_store, clock=fake_clock)


class TestIssue:
    def test_issue_returns_hex_token_and_persists_row(self, tokens, memory_store, user, fake_clock):
        token = tokens.issue(user.id, TTL)

        assert len(token) == 64
        int(token, 16)
        row = memory_store.get_refresh_token(token)
        assert row.user_id == user.id
        assert row.expires_at == fake_clock.now + TTL
        assert row.revoked_at is None

    def test_tokens_are_unique(self, tokens, user):
        issued = {tokens.issue(user.id, TTL) for _ in range(20)}

        assert len(issued) == 20

    def test_issue_for_unknown_user_fails(self, tokens):
        with pytest.raises(ConstraintViolation):
            tokens.issue("00000000-0000-0000-0000-000000000000", TTL)


class TestValidate:
    def test_valid_immediately_after_issue(self, tokens, user):
        token = tokens.issue(user.id, TTL)

        assert tokens.validate(token) == user.id

    def test_unknown_token(self, tokens):
        with pytest.raises(TokenNotFoundError):
            tokens.validate("deadbeef" * 8)

    def test_expired_at_expiry_instant(self, tokens, user, fake_clock):
        token = tokens.issue(user.id, timedelta(hours=1))

        fake_clock.advance(timedelta(hours=1) - timedelta(seconds=1))
        assert tokens.validate(token) == user.id

        fake_clock.advance(timedelta(seconds=1))
        with pytest.raises(TokenExpiredError):
            tokens.validate(token)

    def test_revoked_and_expired_reports_revoked(self, tokens, user, fake_clock):
        token = tokens.issue(user.id, timedelta(hours=1))
        tokens.revoke(token)
        fake_clock.advance(timedelta(hours=2))

        with pytest.raises(TokenRevokedError):
            tokens.validate(token)


class TestRevoke:
    def test_revoke_invalidates_token(self, tokens, user):
        token = tokens.issue(user.id, TTL)

        tokens.revoke(token)

        with pytest.raises(TokenRevokedError):
            tokens.validate(token)

    def test_revoke_is_idempotent(self, tokens, memory_store, user, fake_clock):
        token = tokens.issue(user.id, TTL)
        tokens.revoke(token)
        first_revoked_at = memory_store.get_refresh_token(token).revoked_at

        fake_clock.advance(timedelta(minutes=5))
        tokens.revoke(token)

        assert memory_store.get_refresh_token(token).revoked_at == first_revoked_at

    def test_revoke_unknown_token(self, tokens):
        with pytest.raises(TokenNotFoundError):
            tokens.revoke("deadbeef" * 8)

    def test_revoke_only_touches_one_token(self, tokens, user):
        keep = tokens.issue(user.id, TTL)
        drop = tokens.issue(user.id, TTL)

        tokens.revoke(drop)

        assert tokens.validate(keep) == user.id

    def test_revoke_races_concurrent_validation(self, tokens, user):
        """Any validate that starts after revoke returns must see the revocation."""
        token = tokens.issue(user.id, TTL)
        revoked = threading.Event()
        start = threading.Barrier(5)
        violations = []
        post_revoke_checks = []

        def validator():
            start.wait()
            checks = 0
            while checks < 200:
                revoked_before = revoked.is_set()
                try:
                    tokens.validate(token)
                    outcome = "valid"
                except TokenRevokedError:
                    outcome = "revoked"
                if revoked_before:
                    checks += 1
                    if outcome != "revoked":
                        violations.append(outcome)
            post_revoke_checks.append(checks)

        def revoker():
            start.wait()
            tokens.revoke(token)
            revoked.set()

        threads = [threading.Thread(target=validator) for _ in range(4)]
        threads.append(threading.Thread(target=revoker))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert violations == []
        assert post_revoke_checks == [200] * 4


class TestPurge:
    def test_purge_all_removes_every_row(self, tokens, user):
        issued = [tokens.issue(user.id, TTL) for _ in range(3)]

        assert tokens.purge_all() == 3
        for token in issued:
            with pytest.raises(TokenNotFoundError):
                tokens.validate(token)

    def test_purge_on_empty_store(self, tokens):
        assert tokens.purge_all() == 0
