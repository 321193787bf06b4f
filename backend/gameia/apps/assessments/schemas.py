from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .models import AssessmentRelationship, AssessmentStatus, CycleStatus


class CycleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    cycle_type: str = "360"
    start_date: date
    end_date: date
    status: CycleStatus = CycleStatus.DRAFT
    evaluated_skills: List[str] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)


class CycleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    cycle_type: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[CycleStatus] = None
    evaluated_skills: Optional[List[str]] = None
    config: Optional[Dict[str, Any]] = None


class CycleRead(BaseModel):
    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    cycle_type: str
    start_date: date
    end_date: date
    status: CycleStatus
    evaluated_skills: List[str] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AssessmentCreate(BaseModel):
    cycle_id: str
    evaluatee_id: str
    evaluator_id: Optional[str] = None
    relationship: AssessmentRelationship


class AssessmentSubmit(BaseModel):
    responses: Dict[str, Any]


class AssessmentRead(BaseModel):
    id: str
    cycle_id: str
    evaluatee_id: str
    evaluator_id: str
    relationship: AssessmentRelationship
    status: AssessmentStatus
    responses: Dict[str, Any] = Field(default_factory=dict)
    submitted_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AssessmentResultRead(BaseModel):
    id: str
    cycle_id: str
    user_id: str
    consolidated_scores: Dict[str, float] = Field(default_factory=dict)
    strengths: List[str] = Field(default_factory=list)
    development_areas: List[str] = Field(default_factory=list)
    responses_count: int = 0
    ai_insights: Optional[str] = None
    updated_at: datetime

    class Config:
        from_attributes = True
