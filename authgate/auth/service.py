"""Login orchestration: rate limit, password, then the enabled extra factors."""
from typing import Optional

from ..core.logging import SecurityLogger, get_logger
from ..core.time import Clock, utcnow
from ..services.ip_attempt_tracker import IpAttemptTracker
from ..services.token_manager import TokenManager
from .credentials import CredentialLookup, PasswordVerifier
from .identity import Identity
from .mfa_service import MfaChallengeService
from .results import (
    AuthErrorKind,
    AuthFailure,
    FactorResult,
    InvalidCredentials,
    LoginResult,
    LoginSuccess,
    RateLimited,
    SecondFactorRequired,
    ThirdFactorRequired,
    TokenValidation,
)
from .security import (
    create_pending_second_factor_token,
    get_password_hash,
    verify_pending_second_factor_token,
)


class AuthenticationService:
    """
    Multi-step login protocol.

    ``login`` moves an attempt through rate limit check, password check and
    factor routing. Every expected outcome comes back as a result value; only
    store failures raise (``StoreUnavailableError``). Nothing is retried here.
    """

    def __init__(
        self,
        credential_lookup: CredentialLookup,
        password_verifier: PasswordVerifier,
        attempt_tracker: IpAttemptTracker,
        token_manager: TokenManager,
        mfa_service: MfaChallengeService,
        clock: Clock = utcnow,
        logger: Optional[SecurityLogger] = None
    ):
        self.credential_lookup = credential_lookup
        self.password_verifier = password_verifier
        self.attempt_tracker = attempt_tracker
        self.token_manager = token_manager
        self.mfa_service = mfa_service
        self.clock = clock
        self.logger = logger or get_logger(__name__)
        self._dummy_hash: Optional[str] = None

    def _unknown_identifier_hash(self) -> str:
        # Unknown identifiers still pay for one hash comparison
        if self._dummy_hash is None:
            self._dummy_hash = get_password_hash("authgate-unknown-identifier")
        return self._dummy_hash

    def login(self, identifier: str, password: str, client_ip: str) -> LoginResult:
        status = self.attempt_tracker.check_blocked(client_ip)
        if status.blocked:
            self.logger.warning(
                "Login rejected for blocked client IP",
                extra={"ip_address": client_ip, "permanent": status.permanent}
            )
            return RateLimited(retry_after=status.retry_after, permanent=status.permanent)

        credential = self.credential_lookup.find_credential_by_identifier(identifier)
        if credential is None:
            self.password_verifier.verify(password or "", self._unknown_identifier_hash())
            password_ok = False
        else:
            password_ok = self.password_verifier.verify(password or "", credential.password_hash)

        if not password_ok:
            just_blocked = self.attempt_tracker.register_failure(client_ip)
            self.logger.info(
                "Login failed: invalid credentials",
                extra={"ip_address": client_ip, "ip_blocked": just_blocked}
            )
            return InvalidCredentials()

        self.attempt_tracker.reset_on_success(client_ip)
        account_id = credential.identity.account_id

        if credential.second_factor_enabled:
            self.logger.info("Password accepted, second factor required", extra={"account_id": account_id})
            return SecondFactorRequired(
                account_ref=create_pending_second_factor_token(account_id, now=self.clock())
            )

        if credential.third_factor_enabled:
            challenge_id = self.mfa_service.issue_email_challenge(
                account_id, credential.delivery_destination
            )
            self.logger.info("Password accepted, third factor required", extra={"account_id": account_id})
            return ThirdFactorRequired(challenge_id=challenge_id)

        token = self.token_manager.issue(account_id)
        self.logger.info("Login succeeded", extra={"account_id": account_id, "ip_address": client_ip})
        return LoginSuccess(token=token)

    def verify_second_factor(self, account_ref: str, code: str) -> FactorResult:
        """Finish a login that returned ``SecondFactorRequired``.

        A valid code issues the session token directly; the e-mailed third
        factor is not requested after it.
        """
        account_id = verify_pending_second_factor_token(account_ref, now=self.clock())
        if account_id is None:
            return AuthFailure(AuthErrorKind.INVALID_CREDENTIALS)

        if not self.mfa_service.is_totp_enabled(account_id):
            return AuthFailure(AuthErrorKind.SECOND_FACTOR_NOT_ENROLLED)

        if self.mfa_service.totp_attempts_exhausted(account_id):
            self.logger.warning("Second factor refused: attempt limit reached", extra={"account_id": account_id})
            return AuthFailure(AuthErrorKind.RATE_LIMITED)

        if not self.mfa_service.verify_totp_code(account_id, code):
            return AuthFailure(AuthErrorKind.CHALLENGE_MISMATCH)

        self.logger.info("Second factor accepted", extra={"account_id": account_id})
        return self.token_manager.issue(account_id)

    def verify_third_factor(self, challenge_id: str, code: str) -> FactorResult:
        """Finish a login that returned ``ThirdFactorRequired``."""
        return self.mfa_service.verify_email_challenge(challenge_id, code)

    def resend_third_factor(self, challenge_id: str) -> Optional[AuthFailure]:
        return self.mfa_service.resend_email_challenge(challenge_id)

    def current_identity(self, account_id: str) -> Optional[Identity]:
        return self.credential_lookup.get_identity(account_id)

    def validate_token(self, token: str) -> TokenValidation:
        return self.token_manager.validate(token)

    def logout(self, token: str) -> None:
        self.token_manager.revoke(token)

    def enroll_second_factor(self, account_id: str) -> str:
        """Start TOTP enrolment and return the provisioning URI."""
        return self.mfa_service.enroll_totp(account_id).provisioning_uri

    def confirm_second_factor(self, account_id: str, code: str) -> bool:
        return self.mfa_service.confirm_totp_enrollment(account_id, code)
