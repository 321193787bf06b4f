from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .models import GoalPriority, GoalStatus, PlanStatus

SourceType = Literal["training", "module", "game", "challenge", "cognitive_test"]


# ---------------------------------------------------------------------------
# PLANS
# ---------------------------------------------------------------------------


class PlanCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    user_id: Optional[str] = None
    manager_id: Optional[str] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    status: PlanStatus = PlanStatus.ACTIVE


class PlanUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    manager_id: Optional[str] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    status: Optional[PlanStatus] = None
    overall_progress: Optional[int] = Field(default=None, ge=0, le=100)


class PlanRead(BaseModel):
    id: str
    organization_id: Optional[str] = None
    user_id: str
    manager_id: Optional[str] = None
    title: str
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    status: PlanStatus
    overall_progress: int
    xp_on_completion: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# GOALS
# ---------------------------------------------------------------------------


class GoalCreate(BaseModel):
    plan_id: str
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    skill_id: Optional[str] = None
    success_criteria: List[str] = Field(default_factory=list)
    target_date: Optional[date] = None
    priority: GoalPriority = GoalPriority.MEDIUM
    status: GoalStatus = GoalStatus.NOT_STARTED
    xp_reward: int = Field(default=100, ge=0)
    weight: float = Field(default=1, gt=0)
    linked_training_ids: List[str] = Field(default_factory=list)
    linked_challenge_ids: List[str] = Field(default_factory=list)
    linked_cognitive_test_ids: List[str] = Field(default_factory=list)
    related_games: List[str] = Field(default_factory=list)
    auto_progress_enabled: bool = True


class GoalUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    status: Optional[GoalStatus] = None
    priority: Optional[GoalPriority] = None
    target_date: Optional[date] = None
    manager_notes: Optional[str] = None
    linked_training_ids: Optional[List[str]] = None
    linked_challenge_ids: Optional[List[str]] = None
    linked_cognitive_test_ids: Optional[List[str]] = None
    related_games: Optional[List[str]] = None
    auto_progress_enabled: Optional[bool] = None


class GoalRead(BaseModel):
    id: str
    plan_id: str
    skill_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    success_criteria: List[str] = Field(default_factory=list)
    target_date: Optional[date] = None
    priority: GoalPriority
    status: GoalStatus
    progress: int
    evidence_urls: List[str] = Field(default_factory=list)
    manager_notes: Optional[str] = None
    xp_reward: Optional[int] = None
    weight: float
    linked_training_ids: List[str] = Field(default_factory=list)
    linked_challenge_ids: List[str] = Field(default_factory=list)
    linked_cognitive_test_ids: List[str] = Field(default_factory=list)
    related_games: List[str] = Field(default_factory=list)
    auto_progress_enabled: bool
    last_auto_update: Optional[datetime] = None
    stagnant_since: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class GoalSummary(BaseModel):
    id: str
    title: str
    progress: int
    priority: GoalPriority

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# AUTOMATIC PROGRESS
# ---------------------------------------------------------------------------


class ProgressEventIn(BaseModel):
    """Platform event that may advance goals. Missing ids are rejected by the service."""

    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    event_type: str = "completed"
    source_type: Optional[SourceType] = None
    source_id: Optional[str] = None
    source_name: Optional[str] = None
    score: Optional[float] = None
    skill_ids: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class GoalUpdateResult(BaseModel):
    goal_id: str
    progress_delta: int
    new_progress: int


class ProgressUpdateResult(BaseModel):
    success: bool
    goals_updated: int
    total_xp_earned: int
    updates: List[GoalUpdateResult] = Field(default_factory=list)


class ProgressEventRead(BaseModel):
    id: str
    goal_id: str
    source_type: str
    source_id: Optional[str] = None
    source_name: Optional[str] = None
    progress_before: int
    progress_after: int
    progress_delta: int
    xp_earned: int
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_json")
    created_at: datetime

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# LINKED ACTIONS
# ---------------------------------------------------------------------------


class LinkedActionCreate(BaseModel):
    goal_id: str
    action_type: str = Field(min_length=1, max_length=32)
    action_id: Optional[str] = None
    action_name: str = Field(min_length=1, max_length=255)
    priority: int = Field(default=5, ge=1, le=10)
    expected_progress_impact: int = Field(default=10, ge=0, le=100)
    deadline_at: Optional[datetime] = None


class LinkedActionRead(BaseModel):
    id: str
    goal_id: str
    action_type: str
    action_id: Optional[str] = None
    action_name: str
    priority: int
    expected_progress_impact: int
    deadline_at: Optional[datetime] = None
    suggested_at: datetime
    completed_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LinkedActionWithGoal(LinkedActionRead):
    goal: Optional[GoalSummary] = None
