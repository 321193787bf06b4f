from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .models import CriterionType, InsigniaType


# ---------------------------------------------------------------------------
# LEVELS
# ---------------------------------------------------------------------------


class LevelInfo(BaseModel):
    level: int
    xp: int
    xp_required: int
    xp_for_next: int
    progress: int
    title: str
    icon: str
    tier: str


class Wallet(BaseModel):
    xp: int
    coins: int
    level: int
    current_streak: int
    longest_streak: int
    level_info: LevelInfo


# ---------------------------------------------------------------------------
# CORE EVENTS
# ---------------------------------------------------------------------------


class CoreEventCreate(BaseModel):
    user_id: str
    event_type: str
    team_id: Optional[str] = None
    skill_ids: List[str] = Field(default_factory=list)
    xp_earned: int = 0
    coins_earned: int = 0
    score: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class GameCompletedCreate(BaseModel):
    game_type: str
    score: float = Field(ge=0)
    skill_ids: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ScoredTestCreate(BaseModel):
    test_id: str
    score: float = Field(ge=0)
    target_score: float = Field(ge=0)
    xp_earned: int = Field(default=0, ge=0)
    skill_ids: List[str] = Field(default_factory=list)


class CoreEventRead(BaseModel):
    id: str
    user_id: str
    organization_id: Optional[str] = None
    team_id: Optional[str] = None
    event_type: str
    skill_ids: List[str] = Field(default_factory=list)
    xp_earned: int
    coins_earned: int
    score: Optional[float] = None
    metadata: Optional[dict] = Field(default=None, validation_alias="metadata_json")
    created_at: datetime

    class Config:
        from_attributes = True
        populate_by_name = True


class UserEventStat(BaseModel):
    event_type: str
    event_count: int
    total_xp: int
    total_coins: int
    avg_score: Optional[float] = None
    last_event_at: Optional[datetime] = None


class TeamEventStat(BaseModel):
    event_type: str
    event_count: int
    unique_users: int
    total_xp: int
    avg_score: Optional[float] = None


# ---------------------------------------------------------------------------
# INSIGNIAS
# ---------------------------------------------------------------------------


class CriterionBase(BaseModel):
    criterion_type: CriterionType
    event_type: Optional[str] = None
    min_count: int = Field(default=0, ge=0)
    min_value: float = 0
    avg_value: float = 0
    time_window_days: Optional[int] = Field(default=None, ge=1)
    context_config: Dict[str, Any] = Field(default_factory=dict)
    weight: float = Field(default=1, gt=0)
    is_required: bool = True
    description: str = ""
    sort_order: int = 0


class CriterionCreate(CriterionBase):
    pass


class CriterionRead(CriterionBase):
    id: str

    class Config:
        from_attributes = True


class InsigniaBase(BaseModel):
    insignia_key: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    icon: str = "🏅"
    color: Optional[str] = None
    category: str = "general"
    star_level: int = Field(default=1, ge=1, le=5)
    insignia_type: InsigniaType = InsigniaType.SKILL
    level: int = Field(default=1, ge=1)
    prerequisites: List[str] = Field(default_factory=list)
    related_skill_ids: List[str] = Field(default_factory=list)
    unlock_message: Optional[str] = None
    xp_reward: int = Field(default=0, ge=0)
    coins_reward: int = Field(default=0, ge=0)


class InsigniaCreate(InsigniaBase):
    criteria: List[CriterionCreate] = Field(default_factory=list)


class InsigniaUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    category: Optional[str] = None
    star_level: Optional[int] = Field(default=None, ge=1, le=5)
    prerequisites: Optional[List[str]] = None
    unlock_message: Optional[str] = None
    xp_reward: Optional[int] = Field(default=None, ge=0)
    coins_reward: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    criteria: Optional[List[CriterionCreate]] = None


class InsigniaRead(InsigniaBase):
    id: str
    organization_id: Optional[str] = None
    is_active: bool
    created_at: datetime
    criteria: List[CriterionRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class CriterionProgress(BaseModel):
    criterion_id: str
    criterion_type: CriterionType
    description: str
    current: float
    required: float
    progress: int
    met: bool
    weight: float
    is_required: bool


class MissingPrerequisite(BaseModel):
    id: str
    name: str


class CriteriaCheckResult(BaseModel):
    eligible: bool
    progress: int
    already_unlocked: Optional[bool] = None
    prerequisites_missing: Optional[bool] = None
    missing_prerequisites: List[MissingPrerequisite] = Field(default_factory=list)
    no_criteria: Optional[bool] = None
    all_required_met: Optional[bool] = None
    criteria: List[CriterionProgress] = Field(default_factory=list)


class InsigniaWithStatus(BaseModel):
    insignia: InsigniaRead
    unlocked: bool
    unlocked_at: Optional[datetime] = None
    is_displayed: bool = False
    progress: int
    criteria_status: Optional[CriteriaCheckResult] = None


class UnlockResult(BaseModel):
    checked_user: str
    unlocked_count: int
    unlocked_insignia_ids: List[str]


class TotalUnlocked(BaseModel):
    total: int
    unlocked: int


class UserInsigniasStats(BaseModel):
    total: int
    unlocked: int
    by_type: Dict[str, TotalUnlocked]
    by_star_level: Dict[int, TotalUnlocked]
    recent_unlocks: List[InsigniaWithStatus]


class UserInsigniaRead(BaseModel):
    id: str
    user_id: str
    insignia_id: str
    unlocked_at: datetime
    awarded_by: str
    xp_awarded: int
    coins_awarded: int
    is_displayed: bool

    class Config:
        from_attributes = True
