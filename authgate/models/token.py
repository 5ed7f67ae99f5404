"""Opaque session token storage."""

from sqlalchemy import Column, String, DateTime, ForeignKey, Index
from .base import Base


class SessionToken(Base):
    """Issued session token; absence of the row means revoked."""
    __tablename__ = "session_tokens"

    token = Column(String(128), primary_key=True)
    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_session_tokens_account", "account_id"),
        Index("idx_session_tokens_expires", "expires_at"),
    )

    def __repr__(self):
        return f"<SessionToken(account_id={self.account_id}, expires_at={self.expires_at})>"
