from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from gameia.apps.events.broker import EventEnvelope, publish_event

from . import models

logger = logging.getLogger(__name__)


class UnknownAuditEntity(ValueError):
    pass


def create_audit_event(
    db: Session,
    *,
    organization_id: Optional[str],
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    action: str,
    before: Optional[dict] = None,
    after: Optional[dict] = None,
    metadata: Optional[dict] = None,
) -> models.AuditEvent:
    event = models.AuditEvent(
        organization_id=organization_id,
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action.upper(),
        before=before,
        after=after,
        metadata_json=metadata,
    )
    db.add(event)
    db.flush()
    return event


def _announce(event: models.AuditEvent) -> None:
    metadata = dict(event.metadata_json or {})
    if event.organization_id:
        metadata["organizationId"] = event.organization_id
    publish_event(
        EventEnvelope(
            id=str(event.id),
            type=event.event_type,
            entityType=event.entity_type,
            entityId=event.entity_id,
            action=event.action,
            timestamp=event.occurred_at.isoformat(),
            actor={"userId": event.actor_user_id} if event.actor_user_id else None,
            metadata=metadata,
        )
    )


def log_event(
    db: Session,
    *,
    organization_id: Optional[str],
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    action: str,
    before: Optional[dict] = None,
    after: Optional[dict] = None,
    metadata: Optional[dict] = None,
    critical: bool = False,
) -> Optional[models.AuditEvent]:
    """
    Record an admin change and announce it on the event stream.

    Certificate issue/revoke and role changes pass `critical=True` so a failed
    write aborts the request; everything else is logged and skipped.
    """
    try:
        with db.begin_nested():
            event = create_audit_event(
                db,
                organization_id=organization_id,
                actor_user_id=actor_user_id,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                before=before,
                after=after,
                metadata=metadata,
            )
        _announce(event)
        return event
    except Exception:
        logger.warning(
            "Failed to log audit event",
            extra={
                "organization_id": organization_id,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "action": action,
                "critical": critical,
            },
        )
        if critical:
            raise
        return None


def list_audit_events(
    db: Session,
    *,
    organization_id: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 200,
) -> Sequence[models.AuditEvent]:
    query = db.query(models.AuditEvent).filter(models.AuditEvent.organization_id == organization_id)
    if entity_type:
        query = query.filter(models.AuditEvent.entity_type == entity_type)
    if entity_id:
        query = query.filter(models.AuditEvent.entity_id == entity_id)
    if action:
        query = query.filter(models.AuditEvent.action == action.upper())
    if actor_user_id:
        query = query.filter(models.AuditEvent.actor_user_id == actor_user_id)
    if start:
        query = query.filter(models.AuditEvent.occurred_at >= start)
    if end:
        query = query.filter(models.AuditEvent.occurred_at <= end)
    return query.order_by(models.AuditEvent.occurred_at.desc()).limit(limit).all()


def entity_history(db: Session, *, organization_id: str, entity_type: str, entity_id: str) -> dict:
    if entity_type not in models.AUDITED_ENTITIES:
        raise UnknownAuditEntity(entity_type)
    events = (
        db.query(models.AuditEvent)
        .filter(
            models.AuditEvent.organization_id == organization_id,
            models.AuditEvent.entity_type == entity_type,
            models.AuditEvent.entity_id == entity_id,
        )
        .order_by(models.AuditEvent.occurred_at.asc(), models.AuditEvent.id.asc())
        .all()
    )
    created = next((e for e in events if e.action == "CREATED"), None)
    return {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "created_by": created.actor_user_id if created else None,
        "last_changed_at": events[-1].occurred_at if events else None,
        "events": events,
    }
