# backend/gameia/apps/next_steps/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NextStepType(str, enum.Enum):
    BOOK_APPLICATION = "book_application"
    DAILY_MISSION = "daily_mission"
    ONE_ON_ONE_ACTION = "1on1_action"
    PDI_GOAL = "pdi_goal"
    TRAINING_MODULE = "training_module"
    COMMITMENT = "commitment"


class NextStepPriority(str, enum.Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


# Sort rank: lower comes first.
PRIORITY_RANK = {
    NextStepPriority.URGENT: 0,
    NextStepPriority.HIGH: 1,
    NextStepPriority.NORMAL: 2,
    NextStepPriority.LOW: 3,
}


class NextStep(Base):
    """
    One pending action of a user. Rows with a `source_table` are derived
    from another table and refreshed from it; rows without one are personal
    entries created directly by the user.
    """

    __tablename__ = "user_next_steps"
    __table_args__ = (
        UniqueConstraint("user_id", "source_table", "source_id", name="uq_next_step_source"),
        Index("ix_user_next_steps_user_open", "user_id", "is_completed"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    step_type = Column(
        Enum(NextStepType, name="next_step_type_enum", native_enum=False),
        nullable=False,
    )
    source_id = Column(String(64), nullable=True)
    source_table = Column(String(64), nullable=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    deadline_at = Column(DateTime(timezone=True), nullable=True)
    priority = Column(
        Enum(NextStepPriority, name="next_step_priority_enum", native_enum=False),
        nullable=False,
        default=NextStepPriority.NORMAL,
    )
    source_context = Column(JSON, nullable=False, default=dict)

    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
