from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from gameia.apps.events.broker import publish_change
from gameia.database import WriteSessionLocal

from . import models, providers, templates

logger = logging.getLogger(__name__)

LIST_LIMIT = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationNotFound(Exception):
    pass


# ---------------------------------------------------------------------------
# EMAIL
# ---------------------------------------------------------------------------


def send_email(
    template_key: str,
    recipient: str,
    context: dict,
    correlation_id: Optional[str] = None,
    critical: bool = False,
    *,
    organization_id: Optional[str] = None,
    db: Optional[Session] = None,
) -> models.EmailLog:
    """
    Render and deliver a transactional email, recording the attempt in
    `email_logs`. Delivery failures are logged on the row; they only
    propagate when `critical` is set.
    """
    subject, html = templates.render(template_key, context)
    owns_session = db is None
    db = db or WriteSessionLocal()
    log = models.EmailLog(
        organization_id=organization_id,
        recipient=recipient,
        subject=subject,
        template_key=template_key,
        status=models.EmailStatus.QUEUED,
        context_json=context or {},
        correlation_id=correlation_id,
    )
    try:
        db.add(log)
        db.flush()

        provider, configured = providers.get_email_provider()
        if not configured:
            log.status = models.EmailStatus.SKIPPED_NO_PROVIDER
            log.error = "No provider configured"
            db.add(log)
            if owns_session:
                db.commit()
            return log

        try:
            provider.send(
                template_key=template_key,
                recipient=recipient,
                subject=subject,
                html=html,
                correlation_id=correlation_id,
            )
            log.status = models.EmailStatus.SENT
            log.sent_at = _utcnow()
        except Exception as exc:
            log.status = models.EmailStatus.FAILED
            log.error = str(exc)
            logger.warning(
                "Email delivery failed",
                extra={"template_key": template_key, "email_log_id": log.id},
            )
            if critical:
                db.add(log)
                if owns_session:
                    db.commit()
                raise
        db.add(log)
        if owns_session:
            db.commit()
        return log
    finally:
        if owns_session:
            db.close()


# ---------------------------------------------------------------------------
# IN-APP NOTIFICATIONS
# ---------------------------------------------------------------------------


def create_notification(
    db: Session,
    *,
    user_id: str,
    title: str,
    message: str = "",
    type: models.NotificationType | str = models.NotificationType.INFO,
    link: Optional[str] = None,
    metadata: Optional[dict] = None,
    priority: str = "normal",
    organization_id: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> models.Notification:
    notification = models.Notification(
        user_id=user_id,
        organization_id=organization_id,
        type=models.NotificationType(type),
        title=title,
        message=message,
        link=link,
        metadata_json=metadata or {},
        priority=priority,
        expires_at=expires_at,
    )
    db.add(notification)
    db.flush()
    publish_change(
        entity_type="notification",
        entity_id=notification.id,
        action="INSERT",
        user_id=user_id,
        metadata={"notificationType": notification.type.value},
    )
    return notification


def list_notifications(db: Session, *, user_id: str, limit: int = LIST_LIMIT) -> List[models.Notification]:
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id)
        .order_by(models.Notification.created_at.desc())
        .limit(limit)
        .all()
    )


def unread_count(db: Session, *, user_id: str) -> int:
    return (
        db.query(models.Notification)
        .filter(
            models.Notification.user_id == user_id,
            models.Notification.is_read.is_(False),
        )
        .count()
    )


def _get_owned(db: Session, *, user_id: str, notification_id: str) -> models.Notification:
    notification = (
        db.query(models.Notification)
        .filter(
            models.Notification.id == notification_id,
            models.Notification.user_id == user_id,
        )
        .first()
    )
    if notification is None:
        raise NotificationNotFound(notification_id)
    return notification


def mark_read(db: Session, *, user_id: str, notification_id: str) -> models.Notification:
    notification = _get_owned(db, user_id=user_id, notification_id=notification_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = _utcnow()
        db.add(notification)
    return notification


def mark_all_read(db: Session, *, user_id: str) -> int:
    now = _utcnow()
    updated = (
        db.query(models.Notification)
        .filter(
            models.Notification.user_id == user_id,
            models.Notification.is_read.is_(False),
        )
        .update(
            {models.Notification.is_read: True, models.Notification.read_at: now},
            synchronize_session=False,
        )
    )
    return int(updated or 0)


def delete_notification(db: Session, *, user_id: str, notification_id: str) -> None:
    notification = _get_owned(db, user_id=user_id, notification_id=notification_id)
    db.delete(notification)


def clear_all(db: Session, *, user_id: str) -> int:
    # Alerts keep their history; only the link to the notification goes away.
    ids = [
        row.id
        for row in db.query(models.Notification.id).filter(models.Notification.user_id == user_id).all()
    ]
    if not ids:
        return 0
    db.query(models.ApplicationAlert).filter(models.ApplicationAlert.notification_id.in_(ids)).update(
        {models.ApplicationAlert.notification_id: None},
        synchronize_session=False,
    )
    deleted = (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id)
        .delete(synchronize_session=False)
    )
    return int(deleted or 0)
