from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from gameia.apps.accounts.models import User
from gameia.database import get_db
from gameia.security import get_current_active_user, require_org_roles, require_superuser

from . import alerts, models, schemas, service, templates


router = APIRouter(prefix="/notifications", tags=["notifications"])


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")


# ---------------------------------------------------------------------------
# IN-APP
# ---------------------------------------------------------------------------


@router.get("", response_model=schemas.NotificationList, summary="Latest notifications of the current user")
def list_notifications(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return schemas.NotificationList(
        items=service.list_notifications(db, user_id=current_user.id),
        unread_count=service.unread_count(db, user_id=current_user.id),
    )


@router.get("/unread-count", response_model=schemas.UnreadCount)
def unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return schemas.UnreadCount(unread_count=service.unread_count(db, user_id=current_user.id))


@router.post("/{notification_id}/read", response_model=schemas.NotificationRead)
def mark_read(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    try:
        notification = service.mark_read(db, user_id=current_user.id, notification_id=notification_id)
    except service.NotificationNotFound:
        raise _not_found()
    db.commit()
    return notification


@router.post("/read-all", response_model=schemas.BulkResult)
def mark_all_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    updated = service.mark_all_read(db, user_id=current_user.id)
    db.commit()
    return schemas.BulkResult(updated=updated)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    try:
        service.delete_notification(db, user_id=current_user.id, notification_id=notification_id)
    except service.NotificationNotFound:
        raise _not_found()
    db.commit()


@router.delete("", response_model=schemas.BulkResult, summary="Clear all notifications of the current user")
def clear_all(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    deleted = service.clear_all(db, user_id=current_user.id)
    db.commit()
    return schemas.BulkResult(updated=deleted)


# ---------------------------------------------------------------------------
# ALERTS / EMAIL (operators)
# ---------------------------------------------------------------------------


@router.post(
    "/alerts/process",
    response_model=schemas.AlertRunResult,
    summary="Send due practical-application alerts",
)
def process_alerts(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_superuser),
):
    return alerts.process_due_alerts(db)


@router.post(
    "/email",
    response_model=schemas.EmailLogRead,
    summary="Send a templated transactional email",
)
def send_notification_email(
    payload: schemas.EmailSendRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_org_roles("OWNER", "ADMIN")),
):
    if payload.type not in templates.TEMPLATES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown email type: {payload.type}",
        )
    log = service.send_email(
        payload.type,
        str(payload.to),
        payload.data,
        organization_id=current_user.organization_id,
        db=db,
    )
    db.commit()
    return log


@router.get("/email-logs", response_model=List[schemas.EmailLogRead])
def list_email_logs(
    status_filter: Optional[models.EmailStatus] = Query(None, alias="status"),
    template_key: Optional[str] = None,
    recipient: Optional[str] = None,
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_org_roles("OWNER", "ADMIN")),
):
    qs = db.query(models.EmailLog).filter(models.EmailLog.organization_id == current_user.organization_id)
    if status_filter:
        qs = qs.filter(models.EmailLog.status == status_filter)
    if template_key:
        qs = qs.filter(models.EmailLog.template_key == template_key)
    if recipient:
        qs = qs.filter(models.EmailLog.recipient.ilike(f"%{recipient}%"))
    if start:
        qs = qs.filter(models.EmailLog.created_at >= start)
    if end:
        qs = qs.filter(models.EmailLog.created_at <= end)
    return qs.order_by(models.EmailLog.created_at.desc()).limit(500).all()
