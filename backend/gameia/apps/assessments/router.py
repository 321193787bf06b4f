from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.database import get_db, get_read_db
from gameia.security import get_current_active_user, get_membership, require_org_roles

from . import models, schemas, services

router = APIRouter(prefix="/assessments", tags=["assessments"])

MANAGER_ROLES = ("OWNER", "ADMIN", "MANAGER")


def _is_manager(db: Session, user: account_models.User) -> bool:
    if user.is_superuser:
        return True
    membership = get_membership(db, organization_id=user.organization_id, user_id=user.id)
    return membership is not None and membership.role.value in MANAGER_ROLES


def _cycle_for(db: Session, cycle_id: str, user: account_models.User) -> models.AssessmentCycle:
    try:
        return services.get_cycle(db, cycle_id=cycle_id, organization_id=user.organization_id)
    except services.CycleNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assessment cycle not found")


# ---------------------------------------------------------------------------
# CYCLES
# ---------------------------------------------------------------------------


@router.get("/cycles", response_model=List[schemas.CycleRead])
def list_cycles(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    if not current_user.organization_id:
        return []
    return services.list_cycles(db, organization_id=current_user.organization_id)


@router.post("/cycles", response_model=schemas.CycleRead, status_code=status.HTTP_201_CREATED)
def create_cycle(
    payload: schemas.CycleCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    try:
        cycle = services.create_cycle(db, user=current_user, data=payload)
    except services.AssessmentError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    return cycle


@router.patch("/cycles/{cycle_id}", response_model=schemas.CycleRead)
def update_cycle(
    cycle_id: str,
    payload: schemas.CycleUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    cycle = _cycle_for(db, cycle_id, current_user)
    try:
        services.update_cycle(db, cycle=cycle, data=payload, actor_user_id=current_user.id)
    except services.AssessmentError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    return cycle


@router.get("/cycles/{cycle_id}/results", response_model=List[schemas.AssessmentResultRead])
def cycle_results(
    cycle_id: str,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    cycle = _cycle_for(db, cycle_id, current_user)
    return services.list_results(db, cycle_id=cycle.id)


# ---------------------------------------------------------------------------
# ASSESSMENTS
# ---------------------------------------------------------------------------


@router.post("", response_model=schemas.AssessmentRead, status_code=status.HTTP_201_CREATED)
def create_assessment(
    payload: schemas.AssessmentCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    cycle = _cycle_for(db, payload.cycle_id, current_user)
    evaluator_id = payload.evaluator_id or current_user.id
    if evaluator_id != current_user.id and not _is_manager(db, current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only managers can assign evaluators")
    try:
        assessment = services.create_assessment(
            db,
            cycle=cycle,
            evaluatee_id=payload.evaluatee_id,
            evaluator_id=evaluator_id,
            relationship=payload.relationship,
        )
    except services.AssessmentError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    return assessment


@router.get("/me", response_model=List[schemas.AssessmentRead], summary="Assessments the caller has to answer")
def my_assessments(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_my_assessments(db, evaluator_id=current_user.id)


@router.get("/results/me", response_model=List[schemas.AssessmentResultRead])
def my_results(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_results(db, user_id=current_user.id)


@router.post("/{assessment_id}/submit", response_model=schemas.AssessmentRead)
def submit_assessment(
    assessment_id: str,
    payload: schemas.AssessmentSubmit,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        assessment = services.get_assessment(db, assessment_id=assessment_id)
        services.submit_assessment(db, user=current_user, assessment=assessment, responses=payload.responses)
    except services.AssessmentNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assessment not found")
    except services.AssessmentError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    db.commit()
    return assessment
