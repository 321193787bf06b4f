from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, JSON, String, desc

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Entity types written by the admin flows. Stored as plain strings so new
# flows can log without a schema change.
AUDITED_ENTITIES = (
    "org_member",
    "org_team",
    "org_invite",
    "training",
    "core_event",
    "certificate",
    "insignia",
    "assessment_cycle",
    "development_plan",
)


class AuditEvent(Base):
    """
    Who changed what in an organization's admin panel.

    `before`/`after` hold the changed fields only; `metadata` carries extra
    context such as the invited email or the insignia criteria that matched.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_events_entity", "organization_id", "entity_type", "entity_id"),
        Index("ix_audit_events_recent", "organization_id", desc("occurred_at")),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    actor_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(64), nullable=False)
    action = Column(String(64), nullable=False, index=True)

    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)

    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def event_type(self) -> str:
        return f"{self.entity_type}.{self.action}".lower()

    def __repr__(self) -> str:
        return f"<AuditEvent {self.event_type} entity_id={self.entity_id}>"
