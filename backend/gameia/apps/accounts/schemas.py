# backend/gameia/apps/accounts/schemas.py

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from ..gamification.schemas import LevelInfo
from .models import OrgRole


# ---------------------------------------------------------------------------
# ORGANIZATIONS
# ---------------------------------------------------------------------------


class OrganizationBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str = Field(min_length=2, max_length=64, pattern=r"^[a-z0-9][a-z0-9-]*$")
    plan: str = "free"
    logo_url: Optional[str] = None


class OrganizationCreate(OrganizationBase):
    owner_user_id: Optional[str] = None


class OrganizationRead(OrganizationBase):
    id: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class MembershipRead(BaseModel):
    id: str
    organization_id: str
    user_id: str
    role: OrgRole
    team_id: Optional[str] = None
    is_active: bool
    joined_at: datetime
    organization: Optional[OrganizationRead] = None

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# USERS
# ---------------------------------------------------------------------------


class UserBase(BaseModel):
    email: EmailStr
    full_name: str = Field(min_length=1, max_length=255)
    nickname: Optional[str] = Field(default=None, max_length=64)
    avatar_url: Optional[str] = None


class UserCreate(UserBase):
    password: str
    organization_id: Optional[str] = None
    role: OrgRole = OrgRole.MEMBER
    is_superuser: bool = False


class UserUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    nickname: Optional[str] = Field(default=None, max_length=64)
    avatar_url: Optional[str] = None


class UserRead(UserBase):
    id: str
    organization_id: Optional[str] = None
    is_active: bool
    is_superuser: bool
    xp: int
    coins: int
    level: int
    current_streak: int
    longest_streak: int
    last_activity_date: Optional[date] = None
    created_at: datetime

    class Config:
        from_attributes = True


class UserProfile(UserRead):
    level_info: LevelInfo
    memberships: List[MembershipRead] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# AUTH
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserRead


class SwitchOrganization(BaseModel):
    organization_id: str
