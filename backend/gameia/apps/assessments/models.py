# backend/gameia/apps/assessments/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import orm

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CycleStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"


class AssessmentRelationship(str, enum.Enum):
    SELF = "self"
    MANAGER = "manager"
    PEER = "peer"
    DIRECT_REPORT = "direct_report"


class AssessmentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class AssessmentCycle(Base):
    __tablename__ = "assessment_cycles"

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    cycle_type = Column(String(32), nullable=False, default="360")
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(
        Enum(CycleStatus, name="assessment_cycle_status_enum", native_enum=False),
        nullable=False,
        default=CycleStatus.DRAFT,
    )
    evaluated_skills = Column(JSON, nullable=False, default=list)
    config = Column(JSON, nullable=False, default=dict)

    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class Assessment360(Base):
    __tablename__ = "assessments_360"
    __table_args__ = (
        UniqueConstraint("cycle_id", "evaluatee_id", "evaluator_id", name="uq_assessment_360_pair"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    cycle_id = Column(
        String(36),
        ForeignKey("assessment_cycles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    evaluatee_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    evaluator_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    relationship = Column(
        Enum(AssessmentRelationship, name="assessment_relationship_enum", native_enum=False),
        nullable=False,
    )
    status = Column(
        Enum(AssessmentStatus, name="assessment_status_enum", native_enum=False),
        nullable=False,
        default=AssessmentStatus.PENDING,
    )
    # {"scores": {"communication": 4, ...}, "comments": "..."}
    responses = Column(JSON, nullable=False, default=dict)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    cycle = orm.relationship("AssessmentCycle", lazy="joined")


class Assessment360Result(Base):
    """Scores of one evaluatee consolidated over the completed assessments of a cycle."""

    __tablename__ = "assessment_360_results"
    __table_args__ = (
        UniqueConstraint("cycle_id", "user_id", name="uq_assessment_360_result"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    cycle_id = Column(
        String(36),
        ForeignKey("assessment_cycles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    consolidated_scores = Column(JSON, nullable=False, default=dict)
    strengths = Column(JSON, nullable=False, default=list)
    development_areas = Column(JSON, nullable=False, default=list)
    responses_count = Column(Integer, nullable=False, default=0)
    ai_insights = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
