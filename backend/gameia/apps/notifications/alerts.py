"""
Deadline alerts for practical applications.

`schedule_application_alerts` queues the three reminders when an
application with a deadline is created; `process_due_alerts` turns the due
ones into notifications and is run by `gameia.jobs.alert_runner`.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.apps.training import models as training_models

from . import models, service

logger = logging.getLogger(__name__)

BATCH_SIZE = int(os.getenv("ALERT_RUNNER_BATCH_SIZE", "100"))
MAX_ATTEMPTS = int(os.getenv("ALERT_MAX_ATTEMPTS", "3"))

ALERT_OFFSETS = {
    models.AlertType.REMINDER_3D.value: timedelta(days=3),
    models.AlertType.REMINDER_1D.value: timedelta(days=1),
    models.AlertType.OVERDUE.value: timedelta(0),
}

EMAIL_ALERT_TYPES = {models.AlertType.REMINDER_1D.value, models.AlertType.OVERDUE.value}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def schedule_application_alerts(
    db: Session,
    application: training_models.RoutineApplication,
    *,
    now: Optional[datetime] = None,
) -> List[models.ApplicationAlert]:
    """
    Queue reminder_3d / reminder_1d / overdue for the application deadline.
    Reminders whose time already passed are not queued (overdue always is).
    """
    if application.deadline_at is None:
        return []
    now = now or _utcnow()
    deadline = application.deadline_at
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    created: List[models.ApplicationAlert] = []
    for alert_type, offset in ALERT_OFFSETS.items():
        scheduled_for = deadline - offset
        if offset and scheduled_for <= now:
            continue
        alert = models.ApplicationAlert(
            user_id=application.user_id,
            application_id=application.id,
            alert_type=alert_type,
            scheduled_for=scheduled_for,
        )
        db.add(alert)
        created.append(alert)
    db.flush()
    return created


def _alert_copy(alert_type: str, module_name: Optional[str], training_name: Optional[str]):
    """(title, message, notification type) for an alert, or None if unknown."""
    subject = module_name or "the practical application"
    if alert_type == models.AlertType.REMINDER_3D.value:
        return (
            "Practical application pending",
            f'You have 3 days to complete "{subject}" from the training "{training_name or ""}"',
            models.NotificationType.REMINDER,
        )
    if alert_type == models.AlertType.REMINDER_1D.value:
        return (
            "Deadline tomorrow!",
            f'The deadline for "{subject}" is tomorrow. Complete it now!',
            models.NotificationType.URGENT,
        )
    if alert_type == models.AlertType.OVERDUE.value:
        return (
            "Deadline missed!",
            f'The deadline for "{subject}" has passed. Complete it as soon as possible!',
            models.NotificationType.ALERT,
        )
    return None


def _process_alert(db: Session, alert: models.ApplicationAlert, now: datetime) -> bool:
    """Returns True when a notification was sent for the alert."""
    application = (
        db.query(training_models.RoutineApplication)
        .filter(training_models.RoutineApplication.id == alert.application_id)
        .first()
    )
    if application is None:
        logger.info(
            "Skipping alert for missing application",
            extra={"alert_id": alert.id, "application_id": alert.application_id},
        )
        alert.sent_at = now
        db.add(alert)
        return False

    if application.status == training_models.ApplicationStatus.COMPLETED:
        alert.sent_at = now
        db.add(alert)
        return False

    copy = _alert_copy(
        alert.alert_type,
        application.module.name if application.module else None,
        application.training.name if application.training else None,
    )
    if copy is None:
        logger.warning(
            "Unknown application alert type",
            extra={"alert_id": alert.id, "alert_type": alert.alert_type},
        )
        alert.sent_at = now
        db.add(alert)
        return False
    title, message, notification_type = copy

    if alert.alert_type == models.AlertType.OVERDUE.value:
        application.is_late = True
        db.add(application)

    notification = service.create_notification(
        db,
        user_id=alert.user_id,
        organization_id=application.organization_id,
        title=title,
        message=message,
        type=notification_type,
        link=f"/app/trainings/{application.training_id}",
        priority="high" if notification_type != models.NotificationType.REMINDER else "normal",
        metadata={
            "alert_type": alert.alert_type,
            "application_id": alert.application_id,
            "module_id": application.module_id,
            "training_id": application.training_id,
        },
    )

    alert.sent_at = now
    alert.notification_id = notification.id
    db.add(alert)

    if alert.alert_type in EMAIL_ALERT_TYPES:
        user = db.query(account_models.User).filter(account_models.User.id == alert.user_id).first()
        if user is not None and user.email:
            service.send_email(
                "application_alert",
                user.email,
                {
                    "nickname": user.nickname or user.full_name,
                    "title": title,
                    "message": message,
                },
                correlation_id=alert.id,
                organization_id=application.organization_id,
                db=db,
            )
    return True


def _record_failure(db: Session, alert_id: str, exc: Exception, now: datetime) -> None:
    """Count a failed run; past MAX_ATTEMPTS the alert is closed so it stops holding a batch slot."""
    try:
        alert = db.get(models.ApplicationAlert, alert_id)
        if alert is None:
            return
        alert.attempts = (alert.attempts or 0) + 1
        alert.last_error = str(exc)[:500]
        if alert.attempts >= MAX_ATTEMPTS:
            alert.sent_at = now
            logger.warning(
                "Giving up on application alert",
                extra={"alert_id": alert_id, "attempts": alert.attempts},
            )
        db.add(alert)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Could not record alert failure", extra={"alert_id": alert_id})


def process_due_alerts(
    db: Session,
    *,
    now: Optional[datetime] = None,
    limit: int = BATCH_SIZE,
) -> dict:
    """
    Send every unsent alert whose `scheduled_for` has passed.

    Each alert is committed on its own; one failing alert is logged and the
    rest of the batch continues.
    """
    now = now or _utcnow()
    alerts = (
        db.query(models.ApplicationAlert)
        .filter(
            models.ApplicationAlert.sent_at.is_(None),
            models.ApplicationAlert.scheduled_for <= now,
        )
        .order_by(models.ApplicationAlert.scheduled_for.asc())
        .limit(limit)
        .all()
    )
    if not alerts:
        return {"processed": 0, "message": "No pending alerts"}

    processed: List[str] = []
    for alert in alerts:
        alert_id = alert.id
        try:
            sent = _process_alert(db, alert, now)
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.exception("Error processing application alert", extra={"alert_id": alert_id})
            _record_failure(db, alert_id, exc, now)
            continue
        if sent:
            processed.append(alert_id)

    logger.info("Application alerts processed", extra={"processed": len(processed), "due": len(alerts)})
    return {"processed": len(processed), "alerts": processed}
