"""MFA (Multi-Factor Authentication) database models."""
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Integer, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .base import Base
import uuid


class UserMFASecret(Base):
    """Account TOTP secret and enrolment state."""
    __tablename__ = "user_mfa_secrets"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, unique=True)
    secret_key = Column(String, nullable=False)  # Encrypted TOTP secret
    is_enabled = Column(Boolean, default=False)
    last_used_step = Column(Integer, nullable=True)  # Last accepted TOTP time step
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationship
    account = relationship("Account", back_populates="mfa_secret")

    def __repr__(self):
        return f"<UserMFASecret(id={self.id}, account_id={self.account_id}, enabled={self.is_enabled})>"


class MfaEmailChallenge(Base):
    """Emailed one-time code awaiting confirmation."""
    __tablename__ = "mfa_email_challenges"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    code = Column(String(12), nullable=False)
    destination = Column(String, nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    failed_attempts = Column(Integer, nullable=False, default=0)  # Wrong codes submitted

    __table_args__ = (
        Index("idx_mfa_email_challenges_expires", "expires_at"),
    )

    def __repr__(self):
        return f"<MfaEmailChallenge(id={self.id}, account_id={self.account_id})>"


class UserMFAAttempt(Base):
    """Second-factor verification attempts, counted for rate limiting."""
    __tablename__ = "user_mfa_attempts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    attempt_type = Column(String(20), nullable=False)  # "totp"
    success = Column(Boolean, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_user_mfa_attempts_account_created", "account_id", "created_at"),
    )

    def __repr__(self):
        return f"<UserMFAAttempt(account_id={self.account_id}, type={self.attempt_type}, success={self.success})>"
