"""Tests for opaque session tokens."""
from authgate.auth.results import AuthErrorKind
from authgate.services.token_manager import TokenManager


class TestTokenManager:

    def test_issue_and_validate(self, token_manager, alice, clock):
        issued = token_manager.issue(alice.account_id)

        assert issued.account_id == alice.account_id
        assert issued.issued_at == clock.now
        assert (issued.expires_at - issued.issued_at).total_seconds() == 3600

        validation = token_manager.validate(issued.token)
        assert validation.is_valid
        assert validation.account_id == alice.account_id
        assert validation.error is None

    def test_tokens_are_unique_and_long(self, token_manager, alice):
        tokens = {token_manager.issue(alice.account_id).token for _ in range(20)}
        assert len(tokens) == 20
        assert all(len(token) >= 43 for token in tokens)

    def test_unknown_token(self, token_manager):
        validation = token_manager.validate("not-a-token")
        assert not validation.is_valid
        assert validation.error == AuthErrorKind.TOKEN_NOT_FOUND

    def test_empty_token(self, token_manager):
        assert token_manager.validate("").error == AuthErrorKind.TOKEN_NOT_FOUND

    def test_expiry_is_fixed(self, token_manager, alice, clock):
        issued = token_manager.issue(alice.account_id)

        clock.advance(3599)
        assert token_manager.validate(issued.token).is_valid

        clock.advance(1)
        validation = token_manager.validate(issued.token)
        assert validation.error == AuthErrorKind.TOKEN_EXPIRED
        assert validation.account_id is None

    def test_validation_does_not_extend_lifetime(self, token_manager, alice, clock):
        issued = token_manager.issue(alice.account_id)
        for _ in range(6):
            clock.advance(600)
            token_manager.validate(issued.token)

        assert token_manager.validate(issued.token).error == AuthErrorKind.TOKEN_EXPIRED

    def test_custom_ttl(self, session_factory, alice, clock):
        manager = TokenManager(session_factory, ttl_seconds=60, clock=clock)
        issued = manager.issue(alice.account_id)

        clock.advance(60)
        assert manager.validate(issued.token).error == AuthErrorKind.TOKEN_EXPIRED

    def test_revoke(self, token_manager, alice):
        issued = token_manager.issue(alice.account_id)
        token_manager.revoke(issued.token)

        assert token_manager.validate(issued.token).error == AuthErrorKind.TOKEN_NOT_FOUND

    def test_revoke_unknown_token_is_silent(self, token_manager):
        token_manager.revoke("never-issued")

    def test_revoke_all_for_account(self, token_manager, alice, accounts):
        bob = accounts.create_account("bob@example.com", "another password")
        first = token_manager.issue(alice.account_id)
        second = token_manager.issue(alice.account_id)
        other = token_manager.issue(bob.account_id)

        assert token_manager.revoke_all_for(alice.account_id) == 2
        assert not token_manager.validate(first.token).is_valid
        assert not token_manager.validate(second.token).is_valid
        assert token_manager.validate(other.token).is_valid

    def test_purge_expired(self, token_manager, alice, clock):
        old = token_manager.issue(alice.account_id)
        clock.advance(1800)
        fresh = token_manager.issue(alice.account_id)
        clock.advance(1800)

        assert token_manager.purge_expired() == 1
        assert token_manager.validate(old.token).error == AuthErrorKind.TOKEN_NOT_FOUND
        assert token_manager.validate(fresh.token).is_valid
