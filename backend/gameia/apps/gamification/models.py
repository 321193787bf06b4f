# backend/gameia/apps/gamification/models.py

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
    desc,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# CORE EVENTS
# ---------------------------------------------------------------------------


class CoreEventType(str, enum.Enum):
    GAME_COMPLETED = "GAME_COMPLETED"
    TRAINING_COMPLETED = "TRAINING_COMPLETED"
    MODULE_COMPLETED = "MODULE_COMPLETED"
    TEST_COMPLETED = "TEST_COMPLETED"
    TEST_FAILED_TARGET = "TEST_FAILED_TARGET"
    STREAK_MAINTAINED = "STREAK_MAINTAINED"
    STREAK_BROKEN = "STREAK_BROKEN"
    GOAL_ACHIEVED = "GOAL_ACHIEVED"
    GOAL_FAILED = "GOAL_FAILED"
    FEEDBACK_GIVEN = "FEEDBACK_GIVEN"
    FEEDBACK_RECEIVED = "FEEDBACK_RECEIVED"
    PDI_PROGRESS_AUTO = "PDI_PROGRESS_AUTO"
    INSIGNIA_UNLOCKED = "INSIGNIA_UNLOCKED"


class CoreEvent(Base):
    """
    Append-only ledger of everything that earns (or could earn) XP.

    Insignia criteria, metrics and team stats are all computed from here.
    """

    __tablename__ = "core_events"
    __table_args__ = (
        Index("ix_core_events_user_type_time", "user_id", "event_type", "created_at"),
        Index("ix_core_events_org_time", "organization_id", desc("created_at")),
        Index("ix_core_events_team_time", "team_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    team_id = Column(String(36), ForeignKey("org_teams.id", ondelete="SET NULL"), nullable=True)

    event_type = Column(String(64), nullable=False, index=True)
    skill_ids = Column(JSON, nullable=False, default=list)
    xp_earned = Column(Integer, nullable=False, default=0)
    coins_earned = Column(Integer, nullable=False, default=0)
    score = Column(Float, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    def __repr__(self) -> str:
        return f"<CoreEvent id={self.id} user={self.user_id} type={self.event_type}>"


# ---------------------------------------------------------------------------
# INSIGNIAS
# ---------------------------------------------------------------------------


class InsigniaType(str, enum.Enum):
    SKILL = "skill"
    BEHAVIOR = "behavior"
    IMPACT = "impact"
    LEADERSHIP = "leadership"
    SPECIAL = "special"


class CriterionType(str, enum.Enum):
    EVENT_COUNT = "event_count"
    EVENT_AVG_SCORE = "event_avg_score"
    EVENT_MIN_SCORE = "event_min_score"
    STREAK_DAYS = "streak_days"
    DIVERSITY = "diversity"
    SKILL_LEVEL = "skill_level"
    CONSECUTIVE = "consecutive"
    NO_FAILURES = "no_failures"


class Insignia(Base):
    """
    Badge definition. `organization_id` NULL means a global badge visible to
    every tenant.
    """

    __tablename__ = "insignias"
    __table_args__ = (
        UniqueConstraint("organization_id", "insignia_key", name="uq_insignia_org_key"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    insignia_key = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String(16), nullable=False, default="🏅")
    color = Column(String(32), nullable=True)
    category = Column(String(64), nullable=False, default="general")
    star_level = Column(Integer, nullable=False, default=1)

    insignia_type = Column(
        Enum(InsigniaType, name="insignia_type_enum", native_enum=False),
        nullable=False,
        default=InsigniaType.SKILL,
    )
    level = Column(Integer, nullable=False, default=1)
    prerequisites = Column(JSON, nullable=False, default=list)
    related_skill_ids = Column(JSON, nullable=False, default=list)
    unlock_message = Column(Text, nullable=True)

    xp_reward = Column(Integer, nullable=False, default=0)
    coins_reward = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    criteria = relationship(
        "InsigniaCriterion",
        back_populates="insignia",
        cascade="all, delete-orphan",
        order_by="InsigniaCriterion.sort_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Insignia id={self.id} key={self.insignia_key}>"


class InsigniaCriterion(Base):
    __tablename__ = "insignia_criteria"

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    insignia_id = Column(
        String(36),
        ForeignKey("insignias.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    criterion_type = Column(
        Enum(CriterionType, name="insignia_criterion_type_enum", native_enum=False),
        nullable=False,
    )
    event_type = Column(String(64), nullable=True)
    min_count = Column(Integer, nullable=False, default=0)
    min_value = Column(Float, nullable=False, default=0)
    avg_value = Column(Float, nullable=False, default=0)
    time_window_days = Column(Integer, nullable=True)
    context_config = Column(JSON, nullable=False, default=dict)
    weight = Column(Float, nullable=False, default=1)
    is_required = Column(Boolean, nullable=False, default=True)
    description = Column(String(255), nullable=False, default="")
    sort_order = Column(Integer, nullable=False, default=0)

    insignia = relationship("Insignia", back_populates="criteria")


class UserInsignia(Base):
    __tablename__ = "user_insignias"
    __table_args__ = (
        UniqueConstraint("user_id", "insignia_id", name="uq_user_insignia"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    insignia_id = Column(
        String(36),
        ForeignKey("insignias.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    unlocked_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    progress_snapshot = Column(JSON, nullable=True)
    source_events = Column(JSON, nullable=False, default=list)
    awarded_by = Column(String(64), nullable=False, default="system")
    xp_awarded = Column(Integer, nullable=False, default=0)
    coins_awarded = Column(Integer, nullable=False, default=0)
    is_displayed = Column(Boolean, nullable=False, default=False)

    insignia = relationship("Insignia", lazy="joined")
