from __future__ import annotations

from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)

from gameia.database import Base
from gameia.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationType(str, enum.Enum):
    INFO = "info"
    REMINDER = "reminder"
    URGENT = "urgent"
    ALERT = "alert"
    ACHIEVEMENT = "achievement"
    LEVEL_UP = "level_up"
    INVITE = "invite"
    ASSESSMENT = "assessment"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
        Index("ix_notifications_user_unread", "user_id", "is_read"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    type = Column(
        SAEnum(NotificationType, name="notification_type_enum", native_enum=False),
        nullable=False,
        default=NotificationType.INFO,
    )
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False, default="")
    link = Column(String(512), nullable=True)
    priority = Column(String(16), nullable=False, default="normal")
    metadata_json = Column("metadata", JSON, nullable=True)

    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} type={self.type}>"


class AlertType(str, enum.Enum):
    REMINDER_3D = "reminder_3d"
    REMINDER_1D = "reminder_1d"
    OVERDUE = "overdue"


class ApplicationAlert(Base):
    """
    Scheduled reminder for a practical application. Picked up by the alert
    runner once `scheduled_for` has passed; `sent_at` makes it one-shot and
    is also set when the alert is skipped or abandoned.
    """

    __tablename__ = "application_alerts"
    __table_args__ = (
        Index("ix_application_alerts_due", "sent_at", "scheduled_for"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # No FK: alerts outlive deleted applications and are skipped by the runner.
    application_id = Column(String(36), nullable=False, index=True)
    alert_type = Column(String(32), nullable=False)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    # Failed processing runs; the runner gives up after ALERT_MAX_ATTEMPTS.
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    notification_id = Column(
        String(36),
        ForeignKey("notifications.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class EmailStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED_NO_PROVIDER = "SKIPPED_NO_PROVIDER"


class EmailLog(Base):
    __tablename__ = "email_logs"
    __table_args__ = (
        Index("ix_email_logs_org_created", "organization_id", "created_at"),
        Index("ix_email_logs_org_status", "organization_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    recipient = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    template_key = Column(String(128), nullable=False, index=True)
    status = Column(
        SAEnum(EmailStatus, name="email_status_enum", native_enum=False),
        nullable=False,
        index=True,
    )
    error = Column(Text, nullable=True)
    context_json = Column(JSON, nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<EmailLog id={self.id} recipient={self.recipient} status={self.status}>"
