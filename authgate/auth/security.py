from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from cryptography.fernet import Fernet, InvalidToken
import os
import base64

from ..config.settings import (
    SECRET_KEY,
    ALGORITHM,
    ENCRYPTION_KEY,
    PENDING_SECOND_FACTOR_TTL_SECONDS,
)

PENDING_SECOND_FACTOR_TYPE = "mfa_pending"

_encryption_key = ENCRYPTION_KEY
if not _encryption_key:
    # Generate a key if not provided (for development only)
    _encryption_key = base64.urlsafe_b64encode(os.urandom(32)).decode()

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Encryption context for sensitive data
fernet = Fernet(
    _encryption_key.encode() if len(_encryption_key) == 44
    else base64.urlsafe_b64encode(_encryption_key.encode()[:32].ljust(32, b"\0"))
)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against its hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # Unknown or malformed hash
        return False


def get_password_hash(password: str) -> str:
    """Generate password hash."""
    return pwd_context.hash(password)


class BcryptPasswordVerifier:
    """One-way password comparison backed by passlib."""

    def verify(self, plaintext: str, stored_hash: str) -> bool:
        return verify_password(plaintext, stored_hash)


def create_pending_second_factor_token(
    account_id: str,
    expires_delta: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> str:
    """Create the short-lived ticket returned while a TOTP code is outstanding."""
    issued_at = now or datetime.now(timezone.utc)
    expire = issued_at + (expires_delta or timedelta(seconds=PENDING_SECOND_FACTOR_TTL_SECONDS))
    to_encode = {
        "sub": account_id,
        "type": PENDING_SECOND_FACTOR_TYPE,
        "iat": int(issued_at.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_pending_second_factor_token(token: str, now: Optional[datetime] = None) -> Optional[str]:
    """Return the account id carried by a pending ticket, or None.

    Expiry is checked against ``now`` so the ticket follows the same clock as
    the rest of the login flow.
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM], options={"verify_exp": False})
    except JWTError:
        return None

    if payload.get("type") != PENDING_SECOND_FACTOR_TYPE:
        return None

    current = now or datetime.now(timezone.utc)
    expires_at = payload.get("exp")
    if not isinstance(expires_at, (int, float)) or current.timestamp() >= expires_at:
        return None

    return payload.get("sub")


def encrypt_sensitive_data(data: str) -> str:
    """Encrypt sensitive data using Fernet encryption."""
    if not data:
        return data
    return fernet.encrypt(data.encode()).decode()


def decrypt_sensitive_data(encrypted_data: str) -> str:
    """Decrypt sensitive data using Fernet encryption."""
    if not encrypted_data:
        return encrypted_data
    try:
        return fernet.decrypt(encrypted_data.encode()).decode()
    except InvalidToken:
        # Return empty string if decryption fails
        return ""
