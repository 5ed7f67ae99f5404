"""Opaque session token issuance and validation."""

import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from ..auth.results import AuthErrorKind, IssuedToken, TokenValidation
from ..config.settings import SESSION_TOKEN_TTL_SECONDS, SESSION_TOKEN_BYTES
from ..core.logging import SecurityLogger, get_logger
from ..core.time import Clock, ensure_utc, utcnow
from ..database import session_scope
from ..models.token import SessionToken

STORE_NAME = "session_tokens"


class TokenManager:
    """Issues, validates and revokes fixed-lifetime session tokens."""

    def __init__(
        self,
        session_factory: sessionmaker,
        ttl_seconds: int = SESSION_TOKEN_TTL_SECONDS,
        token_bytes: int = SESSION_TOKEN_BYTES,
        clock: Clock = utcnow,
        logger: Optional[SecurityLogger] = None
    ):
        self.session_factory = session_factory
        self.ttl = timedelta(seconds=ttl_seconds)
        self.token_bytes = token_bytes
        self.clock = clock
        self.logger = logger or get_logger(__name__)

    def _generate_token(self) -> str:
        """Generate unguessable token string."""
        return secrets.token_urlsafe(self.token_bytes)

    def issue(self, account_id: str) -> IssuedToken:
        """Create and persist a token for ``account_id``."""
        issued_at = self.clock()
        record = SessionToken(
            token=self._generate_token(),
            account_id=account_id,
            issued_at=issued_at,
            expires_at=issued_at + self.ttl
        )

        with session_scope(self.session_factory, STORE_NAME) as db:
            db.add(record)

        self.logger.info("Session token issued", extra={"account_id": account_id})
        return IssuedToken(
            token=record.token,
            account_id=account_id,
            issued_at=issued_at,
            expires_at=issued_at + self.ttl
        )

    def validate(self, token: str) -> TokenValidation:
        """Resolve ``token`` to its owner. Expiry is fixed; validation never extends it."""
        if not token:
            return TokenValidation(error=AuthErrorKind.TOKEN_NOT_FOUND)

        with session_scope(self.session_factory, STORE_NAME) as db:
            record = db.execute(
                select(SessionToken).where(SessionToken.token == token)
            ).scalar_one_or_none()

            if record is None:
                return TokenValidation(error=AuthErrorKind.TOKEN_NOT_FOUND)

            if self.clock() >= ensure_utc(record.expires_at):
                return TokenValidation(error=AuthErrorKind.TOKEN_EXPIRED)

            return TokenValidation(account_id=record.account_id)

    def revoke(self, token: str) -> None:
        """Delete ``token``; revoking an unknown token is not an error."""
        with session_scope(self.session_factory, STORE_NAME) as db:
            deleted = db.execute(
                delete(SessionToken).where(SessionToken.token == token)
            ).rowcount

        if deleted:
            self.logger.info("Session token revoked")

    def revoke_all_for(self, account_id: str) -> int:
        """Delete every token owned by ``account_id``."""
        with session_scope(self.session_factory, STORE_NAME) as db:
            deleted = db.execute(
                delete(SessionToken).where(SessionToken.account_id == account_id)
            ).rowcount

        self.logger.info("Session tokens revoked for account", extra={"account_id": account_id, "revoked": deleted})
        return deleted

    def purge_expired(self) -> int:
        """Remove tokens whose lifetime has ended."""
        with session_scope(self.session_factory, STORE_NAME) as db:
            deleted = db.execute(
                delete(SessionToken).where(SessionToken.expires_at <= self.clock())
            ).rowcount

        self.logger.info("Expired session tokens purged", extra={"purged": deleted})
        return deleted
