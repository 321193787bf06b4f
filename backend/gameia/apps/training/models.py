# backend/gameia/apps/training/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class TrainingStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class StepType(str, enum.Enum):
    CONTENT = "content"
    QUIZ = "quiz"
    ARENA_GAME = "arena_game"
    COGNITIVE_TEST = "cognitive_test"
    PRACTICAL_CHALLENGE = "practical_challenge"
    SIMULATION = "simulation"
    REFLECTION = "reflection"
    GUIDED_READING = "guided_reading"
    AI_REFLECTION = "ai_reflection"
    ROUTINE_APPLICATION = "routine_application"
    VALIDATION = "validation"


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# ---------------------------------------------------------------------------
# CATALOG
# ---------------------------------------------------------------------------


class Training(Base):
    """
    A learning journey made of ordered modules. `organization_id` NULL marks
    a global catalog training available to every tenant.
    """

    __tablename__ = "trainings"
    __table_args__ = (
        Index("ix_trainings_org_order", "organization_id", "display_order"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    training_key = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(64), nullable=False, default="general")
    difficulty = Column(String(32), nullable=False, default="beginner")
    icon = Column(String(16), nullable=False, default="📚")
    color = Column(String(16), nullable=False, default="#6366f1")
    thumbnail_url = Column(String(512), nullable=True)
    estimated_hours = Column(Float, nullable=False, default=1)

    xp_reward = Column(Integer, nullable=False, default=0)
    coins_reward = Column(Integer, nullable=False, default=0)
    skill_ids = Column(JSON, nullable=False, default=list)

    status = Column(
        Enum(TrainingStatus, name="training_status_enum", native_enum=False),
        nullable=False,
        default=TrainingStatus.ACTIVE,
    )
    is_active = Column(Boolean, nullable=False, default=True)
    is_onboarding = Column(Boolean, nullable=False, default=False)
    display_order = Column(Integer, nullable=False, default=0)

    certificate_enabled = Column(Boolean, nullable=False, default=False)
    certificate_validity_days = Column(Integer, nullable=True)
    insignia_reward_id = Column(String(36), ForeignKey("insignias.id", ondelete="SET NULL"), nullable=True)

    created_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    modules = relationship(
        "TrainingModule",
        back_populates="training",
        cascade="all, delete-orphan",
        order_by="TrainingModule.order_index",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Training id={self.id} key={self.training_key}>"


class TrainingModule(Base):
    __tablename__ = "training_modules"
    __table_args__ = (
        Index("ix_training_modules_training_order", "training_id", "order_index"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    training_id = Column(
        String(36),
        ForeignKey("trainings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    module_key = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    step_type = Column(
        Enum(StepType, name="training_step_type_enum", native_enum=False),
        nullable=False,
        default=StepType.CONTENT,
    )
    content_data = Column(JSON, nullable=True)
    step_config = Column(JSON, nullable=False, default=dict)
    order_index = Column(Integer, nullable=False, default=0)
    time_minutes = Column(Integer, nullable=False, default=5)

    xp_reward = Column(Integer, nullable=False, default=0)
    coins_reward = Column(Integer, nullable=False, default=0)
    skill_ids = Column(JSON, nullable=False, default=list)
    min_score = Column(Float, nullable=True)

    is_preview = Column(Boolean, nullable=False, default=False)
    requires_completion = Column(Boolean, nullable=False, default=True)
    is_optional = Column(Boolean, nullable=False, default=False)
    # Practical application deadline, in days after the module is started
    application_deadline_days = Column(Integer, nullable=True)

    training = relationship("Training", back_populates="modules")

    def __repr__(self) -> str:
        return f"<TrainingModule id={self.id} training={self.training_id} order={self.order_index}>"


# ---------------------------------------------------------------------------
# PROGRESS
# ---------------------------------------------------------------------------


class UserTrainingProgress(Base):
    __tablename__ = "user_training_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "training_id", name="uq_user_training_progress"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    training_id = Column(
        String(36),
        ForeignKey("trainings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    progress_percent = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    assigned_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    deadline_at = Column(DateTime(timezone=True), nullable=True)
    total_time_seconds = Column(Integer, nullable=False, default=0)

    training = relationship("Training", lazy="joined")


class ModuleProgress(Base):
    __tablename__ = "user_module_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "module_id", name="uq_user_module_progress"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    module_id = Column(
        String(36),
        ForeignKey("training_modules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    time_spent_seconds = Column(Integer, nullable=False, default=0)
    score = Column(Float, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    metadata_json = Column("metadata", JSON, nullable=True)

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


class RoutineApplication(Base):
    """
    Practical application of a module in the learner's routine. Managers
    review the evidence; deadline alerts are scheduled when it is created.
    """

    __tablename__ = "routine_applications"
    __table_args__ = (
        UniqueConstraint("user_id", "module_id", name="uq_routine_application_user_module"),
        Index("ix_routine_applications_training_status", "training_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    training_id = Column(String(36), ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False)
    module_id = Column(String(36), ForeignKey("training_modules.id", ondelete="CASCADE"), nullable=False)

    status = Column(
        Enum(ApplicationStatus, name="routine_application_status_enum", native_enum=False),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )
    commitment = Column(Text, nullable=True)
    evidence_type = Column(String(32), nullable=True)
    evidence_content = Column(Text, nullable=True)
    evidence_url = Column(String(512), nullable=True)
    reflection_summary = Column(Text, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    deadline_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    is_late = Column(Boolean, nullable=False, default=False)

    manager_feedback = Column(Text, nullable=True)
    manager_viewed_at = Column(DateTime(timezone=True), nullable=True)

    module = relationship("TrainingModule", lazy="joined")
    training = relationship("Training", lazy="joined")
