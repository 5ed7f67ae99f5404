from sqlalchemy import Column, String, DateTime, Boolean, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from enum import Enum
from .base import Base
import uuid


class Role(str, Enum):
    VIEWER = "viewer"
    CONTENT_MANAGER = "content_manager"
    ADMINISTRATOR = "administrator"


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String, nullable=True)
    role = Column(SQLEnum(Role), nullable=False, default=Role.VIEWER)
    profile = Column(JSON, nullable=True, default=dict)  # Role-specific payload
    hashed_password = Column(String, nullable=False)
    password_expires_at = Column(DateTime(timezone=True), nullable=True)
    password_history = Column(JSON, nullable=False, default=list)  # Previous hashes
    third_factor_enabled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    mfa_secret = relationship("UserMFASecret", back_populates="account", uselist=False, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Account(id={self.id}, email={self.email}, role={self.role})>"

    @property
    def has_second_factor_enabled(self) -> bool:
        """Check if the account has a confirmed TOTP secret."""
        return self.mfa_secret is not None and self.mfa_secret.is_enabled
