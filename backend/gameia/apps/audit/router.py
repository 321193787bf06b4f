from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from gameia.apps.accounts.models import User
from gameia.database import get_read_db
from gameia.security import require_org_roles

from . import schemas, services

router = APIRouter(prefix="/audit", tags=["audit"])

AUDIT_READERS = ("OWNER", "ADMIN")


@router.get("/", response_model=List[schemas.AuditEventRead], summary="Recent admin changes")
def list_audit_events(
    entity_type: Optional[str] = None,
    action: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_read_db),
    current_user: User = Depends(require_org_roles(*AUDIT_READERS)),
):
    return services.list_audit_events(
        db,
        organization_id=current_user.organization_id,
        entity_type=entity_type,
        action=action,
        actor_user_id=actor_user_id,
        start=start,
        end=end,
        limit=limit,
    )


@router.get("/{entity_type}/{entity_id}", response_model=schemas.EntityHistory)
def entity_history(
    entity_type: str,
    entity_id: str,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(require_org_roles(*AUDIT_READERS)),
):
    try:
        return services.entity_history(
            db,
            organization_id=current_user.organization_id,
            entity_type=entity_type,
            entity_id=entity_id,
        )
    except services.UnknownAuditEntity:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown audit entity type")
