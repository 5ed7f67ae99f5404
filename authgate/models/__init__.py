from .base import Base
from .account import Account, Role
from .ip_attempt import IpLoginAttempt
from .token import SessionToken
from .mfa import UserMFASecret, MfaEmailChallenge, UserMFAAttempt

__all__ = ["Base", "Account", "Role", "IpLoginAttempt", "SessionToken", "UserMFASecret", "MfaEmailChallenge", "UserMFAAttempt"]
