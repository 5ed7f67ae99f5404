"""Credential lookup and password verification collaborators."""
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from ..core.time import ensure_utc
from ..database import session_scope
from ..models.account import Account, Role
from .identity import Credential, Identity, parse_profile
from .security import get_password_hash

STORE_NAME = "accounts"


class CredentialLookup(Protocol):
    def find_credential_by_identifier(self, identifier: str) -> Optional[Credential]: ...

    def get_identity(self, account_id: str) -> Optional[Identity]: ...


class PasswordVerifier(Protocol):
    def verify(self, plaintext: str, stored_hash: str) -> bool: ...


def normalize_identifier(identifier: Optional[str]) -> str:
    return (identifier or "").strip().lower()


def to_identity(account: Account) -> Identity:
    return Identity(
        account_id=account.id,
        email=account.email,
        role=account.role,
        display_name=account.display_name,
        profile=parse_profile(account.role, account.profile)
    )


class SqlCredentialRepository:
    """Reads credentials from the ``accounts`` table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def find_credential_by_identifier(self, identifier: str) -> Optional[Credential]:
        email = normalize_identifier(identifier)
        if not email:
            return None

        with session_scope(self.session_factory, STORE_NAME) as db:
            account = db.execute(
                select(Account).where(func.lower(Account.email) == email)
            ).scalar_one_or_none()

            if account is None:
                return None

            return Credential(
                identity=to_identity(account),
                password_hash=account.hashed_password,
                password_expires_at=ensure_utc(account.password_expires_at),
                password_history=list(account.password_history or []),
                second_factor_enabled=account.has_second_factor_enabled,
                third_factor_enabled=bool(account.third_factor_enabled)
            )

    def get_identity(self, account_id: str) -> Optional[Identity]:
        with session_scope(self.session_factory, STORE_NAME) as db:
            account = db.execute(select(Account).where(Account.id == account_id)).scalar_one_or_none()
            return to_identity(account) if account is not None else None

    def create_account(
        self,
        email: str,
        password: str,
        role: Role = Role.VIEWER,
        display_name: Optional[str] = None,
        profile: Optional[Dict[str, Any]] = None,
        third_factor_enabled: bool = False
    ) -> Identity:
        """Store a new account with a freshly hashed password."""
        hashed_password = get_password_hash(password)
        account = Account(
            email=normalize_identifier(email),
            display_name=display_name,
            role=role,
            profile=profile or {},
            hashed_password=hashed_password,
            password_history=[hashed_password],
            third_factor_enabled=third_factor_enabled
        )

        with session_scope(self.session_factory, STORE_NAME) as db:
            db.add(account)
            db.flush()
            return to_identity(account)
