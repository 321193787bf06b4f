# backend/gameia/apps/organizations/models.py

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7
from ..accounts.models import OrgRole


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


DEFAULT_TEAM_COLOR = "#6366f1"
DEFAULT_TEAM_ICON = "👥"


class OrgTeam(Base):
    """
    Team inside an organization. Members point at it through
    `OrganizationMember.team_id`; teams may nest via `parent_team_id`.
    """

    __tablename__ = "org_teams"
    __table_args__ = (
        Index("ix_org_teams_org_name", "organization_id", "name"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    manager_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    parent_team_id = Column(String(36), ForeignKey("org_teams.id", ondelete="SET NULL"), nullable=True)
    color = Column(String(16), nullable=False, default=DEFAULT_TEAM_COLOR)
    icon = Column(String(16), nullable=False, default=DEFAULT_TEAM_ICON)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    manager = relationship("User", foreign_keys=[manager_id])

    def __repr__(self) -> str:
        return f"<OrgTeam id={self.id} name={self.name}>"


class OrgInvite(Base):
    __tablename__ = "org_invites"
    __table_args__ = (
        Index("ix_org_invites_org_created", "organization_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    email = Column(String(255), nullable=True)
    invite_code = Column(String(32), nullable=False, unique=True, index=True)
    role = Column(
        Enum(OrgRole, name="org_invite_role_enum", native_enum=False),
        nullable=False,
        default=OrgRole.MEMBER,
    )
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    used_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<OrgInvite id={self.id} code={self.invite_code}>"


class InviteAttempt(Base):
    """One accept attempt; failed ones feed the rate limit."""

    __tablename__ = "invite_attempts"
    __table_args__ = (
        Index("ix_invite_attempts_user_created", "user_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    invite_code = Column(String(32), nullable=False)
    client_ip = Column(String(64), nullable=True)
    success = Column(Boolean, nullable=False, default=False)
    error = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
