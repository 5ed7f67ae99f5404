"""Identity and credential records handed to the login flow.

Account kinds are a single record with a ``Role`` tag and an optional
role-specific profile; code that needs role behaviour matches on the tag.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ..models.account import Role


@dataclass(frozen=True)
class ViewerProfile:
    alias: Optional[str] = None
    birth_date: Optional[str] = None
    vip: bool = False


@dataclass(frozen=True)
class ContentManagerProfile:
    alias: Optional[str] = None
    specialty: Optional[str] = None
    content_type: Optional[str] = None  # "audio" or "video"


@dataclass(frozen=True)
class AdministratorProfile:
    department: Optional[str] = None


RoleProfile = Union[ViewerProfile, ContentManagerProfile, AdministratorProfile]


def parse_profile(role: Role, data: Optional[Dict[str, Any]]) -> Optional[RoleProfile]:
    """Build the payload dataclass for ``role`` from its stored JSON."""
    if not data:
        return None
    if role == Role.VIEWER:
        return ViewerProfile(
            alias=data.get("alias"),
            birth_date=data.get("birth_date"),
            vip=bool(data.get("vip", False)),
        )
    if role == Role.CONTENT_MANAGER:
        return ContentManagerProfile(
            alias=data.get("alias"),
            specialty=data.get("specialty"),
            content_type=data.get("content_type"),
        )
    if role == Role.ADMINISTRATOR:
        return AdministratorProfile(department=data.get("department"))
    raise ValueError(f"Unknown role: {role}")


@dataclass(frozen=True)
class Identity:
    """Who an account is, independent of how they authenticated."""
    account_id: str
    email: str
    role: Role
    display_name: Optional[str] = None
    profile: Optional[RoleProfile] = None


@dataclass(frozen=True)
class Credential:
    """What the login flow needs to know about an account."""
    identity: Identity
    password_hash: str
    password_expires_at: Optional[datetime] = None
    password_history: List[str] = field(default_factory=list)
    second_factor_enabled: bool = False
    third_factor_enabled: bool = False

    @property
    def delivery_destination(self) -> str:
        return self.identity.email
