from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

MetricPeriod = Literal["7d", "30d", "90d"]


# ---------------------------------------------------------------------------
# TEAMS
# ---------------------------------------------------------------------------


class TeamBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    manager_id: Optional[str] = None
    parent_team_id: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=16)
    icon: Optional[str] = Field(default=None, max_length=16)


class TeamCreate(TeamBase):
    pass


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    manager_id: Optional[str] = None
    parent_team_id: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=16)
    icon: Optional[str] = Field(default=None, max_length=16)


class TeamManager(BaseModel):
    id: str
    nickname: Optional[str] = None
    full_name: str
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True


class TeamRead(BaseModel):
    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    manager_id: Optional[str] = None
    parent_team_id: Optional[str] = None
    color: str
    icon: str
    created_at: datetime
    updated_at: datetime
    manager: Optional[TeamManager] = None
    members_count: int = 0

    class Config:
        from_attributes = True


class TeamAssignment(BaseModel):
    user_id: str
    team_id: Optional[str] = None


# ---------------------------------------------------------------------------
# INVITES
# ---------------------------------------------------------------------------


class InviteCreate(BaseModel):
    email: Optional[EmailStr] = None
    role: Literal["member", "admin"] = "member"
    expires_in_days: int = Field(default=7, ge=1, le=90)


class InviteCreated(BaseModel):
    id: str
    code: str
    url: str
    expires_at: datetime


class InviteRead(BaseModel):
    id: str
    email: Optional[str] = None
    invite_code: str
    role: str
    created_at: datetime
    expires_at: datetime
    used_at: Optional[datetime] = None
    used_by: Optional[str] = None
    is_expired: bool
    is_used: bool


class InviteAccept(BaseModel):
    code: str = Field(min_length=4, max_length=32)


class InviteAcceptResult(BaseModel):
    success: bool
    organization_id: Optional[str] = None
    error: Optional[str] = None
    rate_limited: bool = False
    retry_after_minutes: Optional[int] = None


# ---------------------------------------------------------------------------
# METRICS
# ---------------------------------------------------------------------------


class EngagementMetrics(BaseModel):
    total_members: int
    dau: int
    wau: int
    mau: int
    avg_streak: float
    total_activities: int
    period: MetricPeriod


class SourceXp(BaseModel):
    source: str
    total_xp: int
    count: int


class LearningMetrics(BaseModel):
    total_xp: int
    avg_xp_per_user: float
    total_coins: int
    active_learners: int
    top_sources: List[SourceXp]
    period: MetricPeriod


class MemberWithMetrics(BaseModel):
    user_id: str
    org_role: str
    joined_at: datetime
    team_id: Optional[str] = None
    nickname: Optional[str] = None
    full_name: str
    avatar_url: Optional[str] = None
    team_name: Optional[str] = None
    current_streak: int
    total_xp: int
    activities_week: int
