"""End-to-end tests for the multi-step login protocol."""
from datetime import timedelta

import pyotp
import pytest
from unittest.mock import MagicMock

from authgate.auth.results import (
    AuthErrorKind,
    AuthFailure,
    BlockStatus,
    InvalidCredentials,
    IssuedToken,
    LoginOutcome,
    LoginSuccess,
    RateLimited,
    SecondFactorRequired,
    ThirdFactorRequired,
)
from authgate.auth.security import create_pending_second_factor_token
from authgate.core.exceptions import StoreUnavailableError

IP = "198.51.100.7"
PASSWORD = "correct horse battery"


def enable_totp(auth_service, account_id, clock):
    uri = auth_service.enroll_second_factor(account_id)
    totp = pyotp.parse_uri(uri)
    assert auth_service.confirm_second_factor(account_id, totp.at(clock.now))
    clock.advance(30)
    return totp


class TestPasswordStep:

    def test_password_only_login(self, auth_service, alice, clock):
        result = auth_service.login("alice@example.com", PASSWORD, IP)

        assert isinstance(result, LoginSuccess)
        assert result.outcome == LoginOutcome.SUCCESS
        assert result.token.account_id == alice.account_id
        assert result.token.expires_at == clock.now + timedelta(hours=1)

        validation = auth_service.validate_token(result.token.token)
        assert validation.account_id == alice.account_id

    def test_identifier_is_normalized(self, auth_service, alice):
        result = auth_service.login("  Alice@Example.COM ", PASSWORD, IP)
        assert isinstance(result, LoginSuccess)

    def test_wrong_password(self, auth_service, alice):
        result = auth_service.login("alice@example.com", "wrong", IP)

        assert result == InvalidCredentials()
        assert result.kind == AuthErrorKind.INVALID_CREDENTIALS
        assert auth_service.attempt_tracker.block_status(IP).failed_attempts == 1

    def test_unknown_identifier_is_indistinguishable(self, auth_service, alice):
        unknown = auth_service.login("nobody@example.com", PASSWORD, IP)
        wrong = auth_service.login("alice@example.com", "wrong", "203.0.113.5")

        assert unknown == wrong
        assert auth_service.attempt_tracker.block_status(IP).failed_attempts == 1

    def test_unknown_identifier_still_checks_a_hash(self, auth_service):
        verifier = MagicMock(wraps=auth_service.password_verifier)
        auth_service.password_verifier = verifier

        auth_service.login("nobody@example.com", "guess", IP)

        verifier.verify.assert_called_once()

    def test_success_resets_failures(self, auth_service, alice):
        for _ in range(4):
            auth_service.login("alice@example.com", "wrong", IP)

        assert isinstance(auth_service.login("alice@example.com", PASSWORD, IP), LoginSuccess)
        assert auth_service.attempt_tracker.block_status(IP).failed_attempts == 0


class TestLockout:
    """Progressive lockout as seen through the login entry point."""

    def test_lockout_scenario(self, auth_service, alice, clock):
        for _ in range(5):
            assert auth_service.login("alice@example.com", "wrong", IP) == InvalidCredentials()

        # Correct password is refused while blocked
        result = auth_service.login("alice@example.com", PASSWORD, IP)
        assert result == RateLimited(retry_after=15, permanent=False)
        assert result.kind == AuthErrorKind.RATE_LIMITED

        clock.advance(16)
        assert isinstance(auth_service.login("alice@example.com", PASSWORD, IP), LoginSuccess)

        status = auth_service.attempt_tracker.block_status(IP)
        assert status.block_count == 0
        assert status.failed_attempts == 0

    def test_attempts_while_blocked_are_not_counted(self, auth_service, alice, clock):
        for _ in range(5):
            auth_service.login("alice@example.com", "wrong", IP)
        for _ in range(10):
            assert isinstance(auth_service.login("alice@example.com", "wrong", IP), RateLimited)

        clock.advance(16)
        assert auth_service.login("alice@example.com", "wrong", IP) == InvalidCredentials()
        assert auth_service.attempt_tracker.block_status(IP).failed_attempts == 1

    def test_second_block_is_longer(self, auth_service, alice, clock):
        for _ in range(5):
            auth_service.login("alice@example.com", "wrong", IP)
        clock.advance(16)
        for _ in range(5):
            auth_service.login("alice@example.com", "wrong", IP)

        assert auth_service.login("alice@example.com", PASSWORD, IP) == RateLimited(retry_after=60)

    def test_permanent_block(self, auth_service, alice, clock):
        for wait in (15, 60, 900):
            for _ in range(5):
                auth_service.login("alice@example.com", "wrong", IP)
            clock.advance(wait + 1)
        for _ in range(5):
            auth_service.login("alice@example.com", "wrong", IP)

        result = auth_service.login("alice@example.com", PASSWORD, IP)
        assert result == RateLimited(retry_after=None, permanent=True)

    def test_rate_limit_uses_the_observed_block(self, auth_service, alice):
        auth_service.attempt_tracker.check_blocked = MagicMock(return_value=BlockStatus(
            ip_address=IP, blocked=True, permanent=False, retry_after=7, block_count=1, failed_attempts=0
        ))
        auth_service.attempt_tracker.block_status = MagicMock()

        assert auth_service.login("alice@example.com", PASSWORD, IP) == RateLimited(retry_after=7)
        auth_service.attempt_tracker.block_status.assert_not_called()

    def test_other_ips_unaffected(self, auth_service, alice):
        for _ in range(5):
            auth_service.login("alice@example.com", "wrong", IP)

        assert isinstance(auth_service.login("alice@example.com", PASSWORD, "203.0.113.5"), LoginSuccess)


class TestSecondFactor:

    def test_login_requires_totp(self, auth_service, alice, clock):
        totp = enable_totp(auth_service, alice.account_id, clock)

        result = auth_service.login("alice@example.com", PASSWORD, IP)
        assert isinstance(result, SecondFactorRequired)
        assert result.outcome == LoginOutcome.NEED_SECOND_FACTOR
        assert alice.account_id not in result.account_ref

        issued = auth_service.verify_second_factor(result.account_ref, totp.at(clock.now))
        assert isinstance(issued, IssuedToken)
        assert issued.account_id == alice.account_id

    def test_wrong_totp_code(self, auth_service, alice, clock):
        enable_totp(auth_service, alice.account_id, clock)
        result = auth_service.login("alice@example.com", PASSWORD, IP)

        assert auth_service.verify_second_factor(result.account_ref, "000000") == AuthFailure(AuthErrorKind.CHALLENGE_MISMATCH)

    def test_totp_failures_do_not_count_toward_lockout(self, auth_service, alice, clock):
        enable_totp(auth_service, alice.account_id, clock)
        result = auth_service.login("alice@example.com", PASSWORD, IP)

        for _ in range(10):
            auth_service.verify_second_factor(result.account_ref, "000000")

        assert auth_service.attempt_tracker.block_status(IP).failed_attempts == 0

    def test_repeated_wrong_totp_codes_are_rate_limited(self, auth_service, alice, clock):
        totp = enable_totp(auth_service, alice.account_id, clock)
        result = auth_service.login("alice@example.com", PASSWORD, IP)
        real = totp.at(clock.now)
        window = {totp.at(clock.now, offset) for offset in (-1, 0, 1)}
        wrong = next(code for code in ("000000", "000001", "000002", "000003") if code not in window)

        for _ in range(10):
            outcome = auth_service.verify_second_factor(result.account_ref, wrong)
            assert outcome == AuthFailure(AuthErrorKind.CHALLENGE_MISMATCH)

        outcome = auth_service.verify_second_factor(result.account_ref, real)
        assert outcome == AuthFailure(AuthErrorKind.RATE_LIMITED)

    def test_tampered_ticket(self, auth_service, alice, clock):
        totp = enable_totp(auth_service, alice.account_id, clock)

        result = auth_service.verify_second_factor("not-a-ticket", totp.at(clock.now))
        assert result == AuthFailure(AuthErrorKind.INVALID_CREDENTIALS)

    def test_expired_ticket(self, auth_service, alice, clock):
        totp = enable_totp(auth_service, alice.account_id, clock)
        result = auth_service.login("alice@example.com", PASSWORD, IP)

        clock.advance(301)
        outcome = auth_service.verify_second_factor(result.account_ref, totp.at(clock.now))
        assert outcome == AuthFailure(AuthErrorKind.INVALID_CREDENTIALS)

    def test_ticket_for_account_without_totp(self, auth_service, alice, clock):
        ticket = create_pending_second_factor_token(alice.account_id, now=clock.now)

        result = auth_service.verify_second_factor(ticket, "123456")
        assert result == AuthFailure(AuthErrorKind.SECOND_FACTOR_NOT_ENROLLED)

    def test_unconfirmed_enrolment_does_not_require_totp(self, auth_service, alice):
        auth_service.enroll_second_factor(alice.account_id)

        assert isinstance(auth_service.login("alice@example.com", PASSWORD, IP), LoginSuccess)


class TestThirdFactor:

    @pytest.fixture
    def carol(self, accounts):
        return accounts.create_account("carol@example.com", PASSWORD, third_factor_enabled=True)

    def test_login_requires_emailed_code(self, auth_service, carol, delivery):
        result = auth_service.login("carol@example.com", PASSWORD, IP)

        assert isinstance(result, ThirdFactorRequired)
        assert result.outcome == LoginOutcome.NEED_THIRD_FACTOR
        assert delivery.sent[-1][0] == "carol@example.com"

        issued = auth_service.verify_third_factor(result.challenge_id, delivery.last_code)
        assert isinstance(issued, IssuedToken)
        assert issued.account_id == carol.account_id

    def test_resend(self, auth_service, carol, delivery):
        result = auth_service.login("carol@example.com", PASSWORD, IP)

        assert auth_service.resend_third_factor(result.challenge_id) is None
        assert len(delivery.sent) == 2

    def test_guessing_the_emailed_code_exhausts_the_challenge(self, auth_service, carol, delivery):
        result = auth_service.login("carol@example.com", PASSWORD, IP)
        real = delivery.last_code

        for n in range(100000, 100500):
            if f"{n:06d}" != real:
                assert not isinstance(auth_service.verify_third_factor(result.challenge_id, f"{n:06d}"), IssuedToken)

        outcome = auth_service.verify_third_factor(result.challenge_id, real)
        assert outcome == AuthFailure(AuthErrorKind.CHALLENGE_NOT_FOUND)

    def test_second_factor_takes_priority(self, auth_service, carol, delivery, clock):
        enable_totp(auth_service, carol.account_id, clock)

        result = auth_service.login("carol@example.com", PASSWORD, IP)

        assert isinstance(result, SecondFactorRequired)
        assert delivery.sent == []


class TestSessionLifecycle:

    def test_logout_revokes_token(self, auth_service, alice):
        result = auth_service.login("alice@example.com", PASSWORD, IP)

        auth_service.logout(result.token.token)

        assert auth_service.validate_token(result.token.token).error == AuthErrorKind.TOKEN_NOT_FOUND

    def test_current_identity(self, auth_service, alice):
        identity = auth_service.current_identity(alice.account_id)
        assert identity.email == "alice@example.com"

    def test_store_failure_propagates(self, auth_service, alice):
        auth_service.attempt_tracker.check_blocked = MagicMock(
            side_effect=StoreUnavailableError("ip_login_attempts")
        )

        with pytest.raises(StoreUnavailableError):
            auth_service.login("alice@example.com", PASSWORD, IP)
