"""MFA (Multi-Factor Authentication) service implementation."""
import io
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional, Tuple

import pyotp
import qrcode
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from ..config.settings import (
    TOTP_ISSUER_NAME,
    TOTP_VALID_WINDOW,
    EMAIL_CHALLENGE_TTL_SECONDS,
    EMAIL_CODE_DIGITS,
    EMAIL_CHALLENGE_MAX_ATTEMPTS,
    TOTP_MAX_FAILURES_PER_HOUR,
    TOTP_MAX_FAILURES_PER_DAY,
)
from ..core.exceptions import AccountNotFoundError, SecondFactorAlreadyEnabledError
from ..core.locks import KeyedLocks
from ..core.logging import SecurityLogger, get_logger
from ..core.time import Clock, utcnow
from ..database import session_scope
from ..models.account import Account
from ..models.mfa import UserMFAAttempt, UserMFASecret
from ..services.challenge_store import ChallengeStore, EmailChallenge
from ..services.code_delivery import CodeDelivery
from ..services.token_manager import TokenManager
from .results import AuthErrorKind, AuthFailure, FactorResult, TotpEnrollment
from .security import encrypt_sensitive_data, decrypt_sensitive_data

STORE_NAME = "user_mfa_secrets"


class MfaChallengeService:
    """Second factor (TOTP) and third factor (emailed code) challenges."""

    def __init__(
        self,
        session_factory: sessionmaker,
        token_manager: TokenManager,
        challenge_store: ChallengeStore,
        code_delivery: CodeDelivery,
        issuer_name: str = TOTP_ISSUER_NAME,
        valid_window: int = TOTP_VALID_WINDOW,
        email_challenge_ttl_seconds: int = EMAIL_CHALLENGE_TTL_SECONDS,
        email_code_digits: int = EMAIL_CODE_DIGITS,
        email_challenge_max_attempts: int = EMAIL_CHALLENGE_MAX_ATTEMPTS,
        totp_max_failures_per_hour: int = TOTP_MAX_FAILURES_PER_HOUR,
        totp_max_failures_per_day: int = TOTP_MAX_FAILURES_PER_DAY,
        clock: Clock = utcnow,
        logger: Optional[SecurityLogger] = None
    ):
        self.session_factory = session_factory
        self.token_manager = token_manager
        self.challenge_store = challenge_store
        self.code_delivery = code_delivery
        self.issuer_name = issuer_name
        self.valid_window = valid_window
        self.email_challenge_ttl = timedelta(seconds=email_challenge_ttl_seconds)
        self.email_code_digits = email_code_digits
        self.email_challenge_max_attempts = email_challenge_max_attempts
        self.totp_max_failures_per_hour = totp_max_failures_per_hour
        self.totp_max_failures_per_day = totp_max_failures_per_day
        self.clock = clock
        self.logger = logger or get_logger(__name__)
        self._locks = KeyedLocks()

    # --- second factor: TOTP ---

    @staticmethod
    def _get_account(db: Session, account_id: str) -> Account:
        account = db.execute(select(Account).where(Account.id == account_id)).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    @staticmethod
    def _get_secret(db: Session, account_id: str, for_update: bool = False) -> Optional[UserMFASecret]:
        query = select(UserMFASecret).where(UserMFASecret.account_id == account_id)
        if for_update:
            query = query.with_for_update()
        return db.execute(query).scalar_one_or_none()

    def _provisioning_uri(self, secret: str, email: str) -> str:
        return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=self.issuer_name)

    def enroll_totp(self, account_id: str) -> TotpEnrollment:
        """Generate a new TOTP secret, stored disabled until the first valid code."""
        with self._locks.hold(account_id):
            with session_scope(self.session_factory, STORE_NAME) as db:
                account = self._get_account(db, account_id)
                existing = self._get_secret(db, account_id, for_update=True)

                if existing is not None and existing.is_enabled:
                    raise SecondFactorAlreadyEnabledError(
                        "Second factor is already enabled. Disable it first to reconfigure."
                    )

                secret = pyotp.random_base32()
                secret_encrypted = encrypt_sensitive_data(secret)

                if existing is not None:
                    existing.secret_key = secret_encrypted
                    existing.is_enabled = False
                    existing.last_used_step = None
                else:
                    db.add(UserMFASecret(
                        account_id=account_id,
                        secret_key=secret_encrypted,
                        is_enabled=False
                    ))

                provisioning_uri = self._provisioning_uri(secret, account.email)

        self.logger.info("TOTP enrolment started", extra={"account_id": account_id})
        return TotpEnrollment(secret=secret, provisioning_uri=provisioning_uri)

    def verify_totp_code(self, account_id: str, code: str) -> bool:
        """
        Check ``code`` against the current and adjacent time steps.

        A code is accepted at most once: its time step must be newer than the
        last accepted one. The first accepted code after enrolment enables
        the second factor.

        Failed codes are logged; once the hourly or daily cap is reached every
        code is refused until older failures age out.
        """
        code = (code or "").strip()
        if not code.isdigit():
            return False

        with self._locks.hold(account_id):
            with session_scope(self.session_factory, STORE_NAME) as db:
                mfa_secret = self._get_secret(db, account_id, for_update=True)
                if mfa_secret is None:
                    return False

                now = self.clock()
                if self._totp_limit_reached(db, account_id, now):
                    self.logger.warning("TOTP attempt limit reached", extra={"account_id": account_id})
                    return False

                secret = decrypt_sensitive_data(mfa_secret.secret_key)
                if not secret:
                    self.logger.error("Failed to decrypt TOTP secret", extra={"account_id": account_id})
                    return False

                matched_step = self._match_step(pyotp.TOTP(secret), code, now)
                if matched_step is None:
                    self._log_totp_attempt(db, account_id, False, now)
                    self.logger.info("TOTP verification failed", extra={"account_id": account_id})
                    return False

                if mfa_secret.last_used_step is not None and matched_step <= mfa_secret.last_used_step:
                    self._log_totp_attempt(db, account_id, False, now)
                    self.logger.warning("TOTP code replay rejected", extra={"account_id": account_id})
                    return False

                self._log_totp_attempt(db, account_id, True, now)
                mfa_secret.last_used_step = matched_step
                mfa_secret.last_used_at = now
                if not mfa_secret.is_enabled:
                    mfa_secret.is_enabled = True
                    self.logger.info("Second factor enabled", extra={"account_id": account_id})

        return True

    @staticmethod
    def _log_totp_attempt(db: Session, account_id: str, success: bool, now: datetime) -> None:
        db.add(UserMFAAttempt(account_id=account_id, attempt_type="totp", success=success, created_at=now))

    def _count_totp_failures(self, db: Session, account_id: str, since: datetime) -> int:
        return db.execute(
            select(func.count(UserMFAAttempt.id)).where(
                UserMFAAttempt.account_id == account_id,
                UserMFAAttempt.attempt_type == "totp",
                UserMFAAttempt.success.is_(False),
                UserMFAAttempt.created_at >= since
            )
        ).scalar()

    def _totp_limit_reached(self, db: Session, account_id: str, now: datetime) -> bool:
        """Failed TOTP codes in the last hour and day against their caps."""
        if self._count_totp_failures(db, account_id, now - timedelta(hours=1)) >= self.totp_max_failures_per_hour:
            return True
        return self._count_totp_failures(db, account_id, now - timedelta(days=1)) >= self.totp_max_failures_per_day

    def totp_attempts_exhausted(self, account_id: str) -> bool:
        with session_scope(self.session_factory, STORE_NAME) as db:
            return self._totp_limit_reached(db, account_id, self.clock())

    def _match_step(self, totp: pyotp.TOTP, code: str, now: datetime) -> Optional[int]:
        current_step = totp.timecode(now)
        for offset in range(-self.valid_window, self.valid_window + 1):
            if secrets.compare_digest(totp.at(now, offset), code):
                return current_step + offset
        return None

    def confirm_totp_enrollment(self, account_id: str, code: str) -> bool:
        """Verify the first code from a freshly enrolled authenticator."""
        return self.verify_totp_code(account_id, code)

    def is_totp_enabled(self, account_id: str) -> bool:
        with session_scope(self.session_factory, STORE_NAME) as db:
            mfa_secret = self._get_secret(db, account_id)
            return bool(mfa_secret and mfa_secret.is_enabled)

    def disable_totp(self, account_id: str) -> bool:
        """Remove the account's TOTP secret."""
        with self._locks.hold(account_id):
            with session_scope(self.session_factory, STORE_NAME) as db:
                mfa_secret = self._get_secret(db, account_id, for_update=True)
                if mfa_secret is None:
                    return False
                db.delete(mfa_secret)

        self.logger.info("Second factor disabled", extra={"account_id": account_id})
        return True

    def provisioning_uri(self, account_id: str) -> Optional[str]:
        """Provisioning URI of the stored secret, if any."""
        with session_scope(self.session_factory, STORE_NAME) as db:
            account = self._get_account(db, account_id)
            mfa_secret = self._get_secret(db, account_id)
            if mfa_secret is None:
                return None
            secret = decrypt_sensitive_data(mfa_secret.secret_key)
            if not secret:
                return None
            return self._provisioning_uri(secret, account.email)

    def generate_qr_code(self, account_id: str) -> Optional[bytes]:
        """PNG QR code of the provisioning URI for authenticator apps."""
        provisioning_uri = self.provisioning_uri(account_id)
        if provisioning_uri is None:
            return None

        qr = qrcode.QRCode(version=1, box_size=10, border=5)
        qr.add_data(provisioning_uri)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        img_buffer = io.BytesIO()
        img.save(img_buffer, format="PNG")
        return img_buffer.getvalue()

    # --- third factor: emailed code ---

    def _generate_email_code(self) -> str:
        low = 10 ** (self.email_code_digits - 1)
        return str(low + secrets.randbelow(9 * low))

    def _lookup_destination(self, account_id: str) -> str:
        with session_scope(self.session_factory, STORE_NAME) as db:
            return self._get_account(db, account_id).email

    def issue_email_challenge(self, account_id: str, destination: Optional[str] = None) -> str:
        """Create a challenge, send its code, and return the challenge id (never the code)."""
        destination = destination or self._lookup_destination(account_id)
        issued_at = self.clock()
        challenge = EmailChallenge(
            challenge_id=str(uuid.uuid4()),
            account_id=account_id,
            code=self._generate_email_code(),
            destination=destination,
            issued_at=issued_at,
            expires_at=issued_at + self.email_challenge_ttl
        )
        self.challenge_store.save(challenge)
        self._deliver(challenge)

        self.logger.info("Third factor challenge issued", extra={"account_id": account_id})
        return challenge.challenge_id

    def _deliver(self, challenge: EmailChallenge) -> None:
        # The challenge stays valid if delivery fails; the caller can ask for a resend
        try:
            self.code_delivery.send_one_time_code(challenge.destination, challenge.code)
        except Exception as e:
            self.logger.error(
                "One-time code delivery failed",
                extra={"account_id": challenge.account_id, "error_type": type(e).__name__}
            )

    def _load_live_challenge(self, challenge_id: str) -> Tuple[Optional[EmailChallenge], Optional[AuthFailure]]:
        challenge = self.challenge_store.get(challenge_id)
        if challenge is None:
            return None, AuthFailure(AuthErrorKind.CHALLENGE_NOT_FOUND)

        if challenge.is_expired(self.clock()):
            self.challenge_store.delete(challenge_id)
            return None, AuthFailure(AuthErrorKind.CHALLENGE_EXPIRED)

        return challenge, None

    def verify_email_challenge(self, challenge_id: str, code: str) -> FactorResult:
        """Consume the challenge on a matching code and issue a session token.

        The challenge is discarded once ``email_challenge_max_attempts`` wrong
        codes have been submitted for it.
        """
        challenge, failure = self._load_live_challenge(challenge_id)
        if failure is not None:
            return failure

        if not challenge.matches(code):
            attempts = self.challenge_store.record_mismatch(challenge_id)
            if attempts >= self.email_challenge_max_attempts:
                self.challenge_store.delete(challenge_id)
                self.logger.warning(
                    "Third factor challenge discarded after repeated wrong codes",
                    extra={"account_id": challenge.account_id, "attempts": attempts}
                )
            else:
                self.logger.info("Third factor code mismatch", extra={"account_id": challenge.account_id})
            return AuthFailure(AuthErrorKind.CHALLENGE_MISMATCH)

        if not self.challenge_store.consume(challenge_id, code, self.clock()):
            # Consumed concurrently or expired between the two reads
            return AuthFailure(AuthErrorKind.CHALLENGE_NOT_FOUND)

        return self.token_manager.issue(challenge.account_id)

    def resend_email_challenge(self, challenge_id: str) -> Optional[AuthFailure]:
        """Deliver the code of a live challenge again. Returns None when sent."""
        challenge, failure = self._load_live_challenge(challenge_id)
        if failure is not None:
            return failure

        self._deliver(challenge)
        self.logger.info("Third factor code re-sent", extra={"account_id": challenge.account_id})
        return None

    def set_third_factor(self, account_id: str, enabled: bool) -> None:
        with session_scope(self.session_factory, STORE_NAME) as db:
            self._get_account(db, account_id).third_factor_enabled = enabled

        self.logger.info(
            "Third factor setting changed",
            extra={"account_id": account_id, "enabled": enabled}
        )

    def purge_expired_challenges(self) -> int:
        return self.challenge_store.purge_expired(self.clock())
