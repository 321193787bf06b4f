# backend/gameia/apps/pdi/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class GoalStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class GoalPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DevelopmentPlan(Base):
    __tablename__ = "development_plans"
    __table_args__ = (
        Index("ix_development_plans_user_status", "user_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    manager_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    title = Column(String(255), nullable=False)
    period_start = Column(Date, nullable=True)
    period_end = Column(Date, nullable=True)
    status = Column(
        Enum(PlanStatus, name="development_plan_status_enum", native_enum=False),
        nullable=False,
        default=PlanStatus.ACTIVE,
    )
    overall_progress = Column(Integer, nullable=False, default=0)
    xp_on_completion = Column(Integer, nullable=False, default=500)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    goals = relationship(
        "DevelopmentGoal",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="DevelopmentGoal.created_at",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<DevelopmentPlan id={self.id} user={self.user_id} status={self.status}>"


class DevelopmentGoal(Base):
    """
    One goal of a plan. Goals with `auto_progress_enabled` advance on their
    own when the owner completes a linked training, game, challenge or test.
    """

    __tablename__ = "development_goals"

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    plan_id = Column(
        String(36),
        ForeignKey("development_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    skill_id = Column(String(36), nullable=True, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    success_criteria = Column(JSON, nullable=False, default=list)
    target_date = Column(Date, nullable=True)
    priority = Column(
        Enum(GoalPriority, name="development_goal_priority_enum", native_enum=False),
        nullable=False,
        default=GoalPriority.MEDIUM,
    )
    status = Column(
        Enum(GoalStatus, name="development_goal_status_enum", native_enum=False),
        nullable=False,
        default=GoalStatus.NOT_STARTED,
    )
    progress = Column(Integer, nullable=False, default=0)
    evidence_urls = Column(JSON, nullable=False, default=list)
    manager_notes = Column(Text, nullable=True)
    xp_reward = Column(Integer, nullable=True, default=100)
    weight = Column(Float, nullable=False, default=1)

    linked_training_ids = Column(JSON, nullable=False, default=list)
    linked_challenge_ids = Column(JSON, nullable=False, default=list)
    linked_cognitive_test_ids = Column(JSON, nullable=False, default=list)
    related_games = Column(JSON, nullable=False, default=list)
    auto_progress_enabled = Column(Boolean, nullable=False, default=True)
    last_auto_update = Column(DateTime(timezone=True), nullable=True)
    stagnant_since = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    plan = relationship("DevelopmentPlan", back_populates="goals")

    def __repr__(self) -> str:
        return f"<DevelopmentGoal id={self.id} plan={self.plan_id} progress={self.progress}>"


class GoalProgressEvent(Base):
    """Append-only history of goal progress changes."""

    __tablename__ = "goal_progress_events"
    __table_args__ = (
        Index("ix_goal_progress_events_goal_time", "goal_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    goal_id = Column(
        String(36),
        ForeignKey("development_goals.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
    )
    source_type = Column(String(32), nullable=False)
    source_id = Column(String(64), nullable=True)
    source_name = Column(String(255), nullable=True)
    progress_before = Column(Integer, nullable=False, default=0)
    progress_after = Column(Integer, nullable=False, default=0)
    progress_delta = Column(Integer, nullable=False, default=0)
    xp_earned = Column(Integer, nullable=False, default=0)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class PdiLinkedAction(Base):
    """A suggested action (training, game, challenge...) attached to a goal."""

    __tablename__ = "pdi_linked_actions"
    __table_args__ = (
        Index("ix_pdi_linked_actions_user_open", "user_id", "completed_at", "dismissed_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    goal_id = Column(
        String(36),
        ForeignKey("development_goals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
    )
    action_type = Column(String(32), nullable=False)
    action_id = Column(String(64), nullable=True)
    action_name = Column(String(255), nullable=False)
    priority = Column(Integer, nullable=False, default=5)
    expected_progress_impact = Column(Integer, nullable=False, default=10)
    deadline_at = Column(DateTime(timezone=True), nullable=True)

    suggested_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    dismissed_at = Column(DateTime(timezone=True), nullable=True)

    goal = relationship("DevelopmentGoal", lazy="joined")
