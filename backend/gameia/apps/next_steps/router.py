from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.database import get_db
from gameia.security import get_current_active_user

from . import models, schemas, services

router = APIRouter(prefix="/next-steps", tags=["next-steps"])


@router.get("", response_model=schemas.NextStepList, summary="Pending next steps of the caller")
def list_next_steps(
    step_type: Optional[models.NextStepType] = Query(default=None, alias="type"),
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    steps = services.list_next_steps(db, user=current_user)
    db.commit()
    # Counters always describe the whole list.
    urgent = services.urgent_count(steps)
    overdue = services.overdue_count(steps)
    if step_type is not None:
        steps = services.get_steps_by_type(steps, step_type)
    return schemas.NextStepList(steps=steps, urgent_count=urgent, overdue_count=overdue)


@router.post("", response_model=schemas.NextStepRead, status_code=status.HTTP_201_CREATED)
def create_step(
    payload: schemas.NextStepCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    step = services.create_step(
        db,
        user=current_user,
        step_type=models.NextStepType(payload.step_type),
        title=payload.title,
        description=payload.description,
        deadline_at=payload.deadline_at,
        priority=payload.priority,
    )
    db.commit()
    return services.step_view(step, datetime.now(timezone.utc))


@router.post("/{step_id}/complete", response_model=schemas.NextStepCompleted)
def complete_step(
    step_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        step = services.complete_step(db, user=current_user, step_id=step_id)
    except services.NextStepNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Next step not found")
    db.commit()
    return step
