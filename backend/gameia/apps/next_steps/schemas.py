from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .models import NextStepPriority, NextStepType

PersonalStepType = Literal["daily_mission", "1on1_action", "commitment"]


class NextStepRead(BaseModel):
    id: str
    step_type: NextStepType
    source_id: Optional[str] = None
    source_table: Optional[str] = None
    title: str
    description: Optional[str] = None
    deadline_at: Optional[datetime] = None
    priority: NextStepPriority
    source_context: Dict[str, Any] = Field(default_factory=dict)
    days_remaining: Optional[int] = None
    is_overdue: bool = False
    created_at: Optional[datetime] = None


class NextStepList(BaseModel):
    steps: List[NextStepRead]
    urgent_count: int = 0
    overdue_count: int = 0


class NextStepCreate(BaseModel):
    step_type: PersonalStepType = "commitment"
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    deadline_at: Optional[datetime] = None
    priority: Optional[NextStepPriority] = None


class NextStepCompleted(BaseModel):
    id: str
    is_completed: bool
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
