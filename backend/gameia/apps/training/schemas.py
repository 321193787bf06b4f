# backend/gameia/apps/training/schemas.py

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .models import ApplicationStatus, StepType, TrainingStatus


# ---------------------------------------------------------------------------
# TRAININGS
# ---------------------------------------------------------------------------


class TrainingBase(BaseModel):
    """
    Catalog fields of a training.

    - training_key       -> stable slug used by imports and PDI links
    - display_order      -> position in the catalog listing
    - certificate_*      -> whether completion issues a certificate, and for how long it is valid
    """

    training_key: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: str = "general"
    difficulty: str = "beginner"
    icon: str = "📚"
    color: str = "#6366f1"
    thumbnail_url: Optional[str] = None
    estimated_hours: float = Field(1, ge=0)

    xp_reward: int = Field(0, ge=0)
    coins_reward: int = Field(0, ge=0)
    skill_ids: List[str] = Field(default_factory=list)

    status: TrainingStatus = TrainingStatus.ACTIVE
    is_active: bool = True
    is_onboarding: bool = False
    display_order: int = 0

    certificate_enabled: bool = False
    certificate_validity_days: Optional[int] = Field(None, gt=0)
    insignia_reward_id: Optional[str] = None


class TrainingCreate(TrainingBase):
    """
    organization_id comes from the current user in the router; superusers may
    pass `is_global` to publish into the shared catalog.
    """

    is_global: bool = False


class TrainingUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = None
    difficulty: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    thumbnail_url: Optional[str] = None
    estimated_hours: Optional[float] = Field(None, ge=0)
    xp_reward: Optional[int] = Field(None, ge=0)
    coins_reward: Optional[int] = Field(None, ge=0)
    skill_ids: Optional[List[str]] = None
    status: Optional[TrainingStatus] = None
    is_active: Optional[bool] = None
    is_onboarding: Optional[bool] = None
    display_order: Optional[int] = None
    certificate_enabled: Optional[bool] = None
    certificate_validity_days: Optional[int] = Field(None, gt=0)
    insignia_reward_id: Optional[str] = None


class TrainingRead(TrainingBase):
    id: str
    organization_id: Optional[str] = None
    created_by_user_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# MODULES
# ---------------------------------------------------------------------------


class ModuleBase(BaseModel):
    module_key: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    step_type: StepType = StepType.CONTENT
    content_data: Optional[Dict[str, Any]] = None
    step_config: Dict[str, Any] = Field(default_factory=dict)
    time_minutes: int = Field(5, ge=0)
    xp_reward: int = Field(0, ge=0)
    coins_reward: int = Field(0, ge=0)
    skill_ids: List[str] = Field(default_factory=list)
    min_score: Optional[float] = Field(None, ge=0, le=100)
    is_preview: bool = False
    requires_completion: bool = True
    is_optional: bool = False
    application_deadline_days: Optional[int] = Field(None, gt=0)


class ModuleCreate(ModuleBase):
    """Appended at the end of the training unless `order_index` is given."""

    order_index: Optional[int] = Field(None, ge=0)


class ModuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    step_type: Optional[StepType] = None
    content_data: Optional[Dict[str, Any]] = None
    step_config: Optional[Dict[str, Any]] = None
    time_minutes: Optional[int] = Field(None, ge=0)
    xp_reward: Optional[int] = Field(None, ge=0)
    coins_reward: Optional[int] = Field(None, ge=0)
    skill_ids: Optional[List[str]] = None
    min_score: Optional[float] = Field(None, ge=0, le=100)
    is_preview: Optional[bool] = None
    requires_completion: Optional[bool] = None
    is_optional: Optional[bool] = None
    application_deadline_days: Optional[int] = Field(None, gt=0)


class ModuleRead(ModuleBase):
    id: str
    training_id: str
    order_index: int

    class Config:
        from_attributes = True


class ModuleReorder(BaseModel):
    module_ids: List[str] = Field(..., min_length=1)


class TrainingDetail(TrainingRead):
    modules: List[ModuleRead] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# PROGRESS / PLAYER
# ---------------------------------------------------------------------------


class TrainingProgressRead(BaseModel):
    id: str
    user_id: str
    training_id: str
    progress_percent: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    deadline_at: Optional[datetime] = None
    total_time_seconds: int = 0

    class Config:
        from_attributes = True


class ModuleProgressRead(BaseModel):
    id: str
    user_id: str
    module_id: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent_seconds: int = 0
    score: Optional[float] = None
    attempts: int = 0

    class Config:
        from_attributes = True


class ModuleState(BaseModel):
    module: ModuleRead
    progress: Optional[ModuleProgressRead] = None
    is_completed: bool = False
    is_locked: bool = False


class PlayerState(BaseModel):
    """Everything the player screen needs for one training."""

    training: TrainingRead
    progress: Optional[TrainingProgressRead] = None
    modules: List[ModuleState] = Field(default_factory=list)
    next_module_id: Optional[str] = None


class ModuleCompletion(BaseModel):
    score: Optional[float] = Field(None, ge=0)
    time_spent_seconds: Optional[int] = Field(None, ge=0)


class ModuleCompletionResult(BaseModel):
    module_id: str
    already_completed: bool = False
    xp_earned: int = 0
    coins_earned: int = 0
    progress_percent: int
    training_completed: bool = False
    certificate_available: bool = False


class TimeSpentUpdate(BaseModel):
    time_spent_seconds: int = Field(..., ge=0)


# ---------------------------------------------------------------------------
# ASSIGNMENTS
# ---------------------------------------------------------------------------


class TrainingAssignment(BaseModel):
    user_ids: List[str] = Field(..., min_length=1)
    deadline_at: Optional[datetime] = None


class AssignmentResult(BaseModel):
    assigned: int
    progress: List[TrainingProgressRead] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# ROUTINE APPLICATIONS
# ---------------------------------------------------------------------------


class ApplicationCreate(BaseModel):
    module_id: str
    commitment: Optional[str] = None
    deadline_at: Optional[datetime] = None


class ApplicationSubmit(BaseModel):
    evidence_type: str = Field(..., min_length=1, max_length=32)
    evidence_content: Optional[str] = None
    evidence_url: Optional[str] = Field(None, max_length=512)
    reflection_summary: Optional[str] = None


class ApplicationFeedback(BaseModel):
    feedback: str = Field(..., min_length=1)


class ApplicationRead(BaseModel):
    id: str
    user_id: str
    organization_id: Optional[str] = None
    training_id: str
    module_id: str
    status: ApplicationStatus
    commitment: Optional[str] = None
    evidence_type: Optional[str] = None
    evidence_content: Optional[str] = None
    evidence_url: Optional[str] = None
    reflection_summary: Optional[str] = None
    started_at: datetime
    deadline_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    is_late: bool = False
    manager_feedback: Optional[str] = None
    manager_viewed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TeamApplication(ApplicationRead):
    """Application row as seen by a manager, with names resolved."""

    user_name: str = "User"
    user_avatar: Optional[str] = None
    module_name: Optional[str] = None
    training_name: Optional[str] = None


class TeamApplicationStats(BaseModel):
    total_applications: int = 0
    completed: int = 0
    in_progress: int = 0
    completed_on_time: int = 0
    completed_late: int = 0
    on_time_rate: float = 0
    participation_rate: float = 0
