"""Typed outcomes of the authentication core.

Expected security outcomes are values, not exceptions. The HTTP layer maps
``AuthErrorKind`` to status codes directly.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class AuthErrorKind(str, Enum):
    """Failure categories returned to callers"""
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    CHALLENGE_EXPIRED = "challenge_expired"
    CHALLENGE_MISMATCH = "challenge_mismatch"
    CHALLENGE_NOT_FOUND = "challenge_not_found"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_NOT_FOUND = "token_not_found"
    SECOND_FACTOR_NOT_ENROLLED = "second_factor_not_enrolled"
    STORE_UNAVAILABLE = "store_unavailable"


class LoginOutcome(str, Enum):
    SUCCESS = "success"
    NEED_SECOND_FACTOR = "need_second_factor"
    NEED_THIRD_FACTOR = "need_third_factor"
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class IssuedToken:
    """Opaque session token handed to the client."""
    token: str
    account_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AuthFailure:
    kind: AuthErrorKind


@dataclass(frozen=True)
class LoginSuccess:
    token: IssuedToken
    outcome: LoginOutcome = LoginOutcome.SUCCESS


@dataclass(frozen=True)
class SecondFactorRequired:
    account_ref: str  # Signed pending ticket, not the raw account id
    outcome: LoginOutcome = LoginOutcome.NEED_SECOND_FACTOR


@dataclass(frozen=True)
class ThirdFactorRequired:
    challenge_id: str
    outcome: LoginOutcome = LoginOutcome.NEED_THIRD_FACTOR


@dataclass(frozen=True)
class InvalidCredentials:
    outcome: LoginOutcome = LoginOutcome.INVALID_CREDENTIALS

    @property
    def kind(self) -> AuthErrorKind:
        return AuthErrorKind.INVALID_CREDENTIALS


@dataclass(frozen=True)
class RateLimited:
    retry_after: Optional[int]  # Seconds; None when permanent
    permanent: bool = False
    outcome: LoginOutcome = LoginOutcome.RATE_LIMITED

    @property
    def kind(self) -> AuthErrorKind:
        return AuthErrorKind.RATE_LIMITED


LoginResult = Union[LoginSuccess, SecondFactorRequired, ThirdFactorRequired, InvalidCredentials, RateLimited]
FactorResult = Union[IssuedToken, AuthFailure]


@dataclass(frozen=True)
class TokenValidation:
    """Result of validating a session token."""
    account_id: Optional[str] = None
    error: Optional[AuthErrorKind] = None

    @property
    def is_valid(self) -> bool:
        return self.error is None and self.account_id is not None


@dataclass(frozen=True)
class TotpEnrollment:
    secret: str
    provisioning_uri: str


@dataclass(frozen=True)
class BlockStatus:
    """Read-only view of an IP's lockout state."""
    ip_address: str
    blocked: bool
    permanent: bool
    retry_after: Optional[int]
    block_count: int
    failed_attempts: int
    blocked_until: Optional[datetime] = None
