from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.database import get_db, get_read_db
from gameia.security import get_current_active_user, get_membership, require_org_roles

from . import models, schemas, services

router = APIRouter(prefix="/pdi", tags=["pdi"])

MANAGER_ROLES = ("OWNER", "ADMIN", "MANAGER")


def _is_manager(db: Session, user: account_models.User) -> bool:
    if user.is_superuser:
        return True
    membership = get_membership(db, organization_id=user.organization_id, user_id=user.id)
    return membership is not None and membership.role.value in MANAGER_ROLES


def _plan_for(db: Session, plan_id: str, user: account_models.User) -> models.DevelopmentPlan:
    try:
        plan = services.get_plan(db, plan_id=plan_id)
    except services.PlanNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")
    if plan.user_id == user.id or plan.manager_id == user.id:
        return plan
    if plan.organization_id == user.organization_id and _is_manager(db, user):
        return plan
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")


def _goal_for(db: Session, goal_id: str, user: account_models.User) -> models.DevelopmentGoal:
    try:
        goal = services.get_goal(db, goal_id=goal_id)
    except services.GoalNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")
    _plan_for(db, goal.plan_id, user)
    return goal


# ---------------------------------------------------------------------------
# PLANS
# ---------------------------------------------------------------------------


@router.get("/plans", response_model=List[schemas.PlanRead], summary="Every plan of the organization")
def list_org_plans(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    return services.list_org_plans(db, organization_id=current_user.organization_id)


@router.get("/plans/me", response_model=List[schemas.PlanRead])
def list_my_plans(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_user_plans(db, user_id=current_user.id)


@router.post("/plans", response_model=schemas.PlanRead, status_code=status.HTTP_201_CREATED)
def create_plan(
    payload: schemas.PlanCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    if payload.user_id and payload.user_id != current_user.id:
        if not _is_manager(db, current_user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only managers can create plans for others")
        if get_membership(db, organization_id=current_user.organization_id, user_id=payload.user_id) is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User is not a member")
    plan = services.create_plan(db, user=current_user, data=payload)
    db.commit()
    return plan


@router.patch("/plans/{plan_id}", response_model=schemas.PlanRead)
def update_plan(
    plan_id: str,
    payload: schemas.PlanUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    plan = _plan_for(db, plan_id, current_user)
    services.update_plan(db, plan=plan, data=payload)
    db.commit()
    return plan


# ---------------------------------------------------------------------------
# GOALS
# ---------------------------------------------------------------------------


@router.get("/plans/{plan_id}/goals", response_model=List[schemas.GoalRead])
def list_goals(
    plan_id: str,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    _plan_for(db, plan_id, current_user)
    return services.list_goals(db, plan_id=plan_id)


@router.post("/goals", response_model=schemas.GoalRead, status_code=status.HTTP_201_CREATED)
def create_goal(
    payload: schemas.GoalCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    _plan_for(db, payload.plan_id, current_user)
    goal = services.create_goal(db, data=payload)
    db.commit()
    return goal


@router.patch("/goals/{goal_id}", response_model=schemas.GoalRead)
def update_goal(
    goal_id: str,
    payload: schemas.GoalUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    goal = _goal_for(db, goal_id, current_user)
    services.update_goal(db, goal=goal, data=payload)
    db.commit()
    return goal


@router.get("/goals/{goal_id}/history", response_model=List[schemas.ProgressEventRead])
def goal_history(
    goal_id: str,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    _goal_for(db, goal_id, current_user)
    return services.get_progress_history(db, goal_id=goal_id)


@router.get("/goals/{goal_id}/actions", response_model=List[schemas.LinkedActionRead])
def goal_pending_actions(
    goal_id: str,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    _goal_for(db, goal_id, current_user)
    return services.get_pending_actions(db, goal_id=goal_id)


# ---------------------------------------------------------------------------
# AUTOMATIC PROGRESS
# ---------------------------------------------------------------------------


@router.post("/progress", response_model=schemas.ProgressUpdateResult, summary="Advance goals from a platform event")
def update_progress(
    payload: schemas.ProgressEventIn,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    if not current_user.is_superuser or not payload.user_id:
        payload.user_id = current_user.id
        payload.organization_id = payload.organization_id or current_user.organization_id
    try:
        result = services.update_pdi_progress(db, event=payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except LookupError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    db.commit()
    return result


# ---------------------------------------------------------------------------
# LINKED ACTIONS
# ---------------------------------------------------------------------------


@router.get("/actions/pending", response_model=List[schemas.LinkedActionWithGoal])
def all_pending_actions(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.get_all_pending_actions(db, user_id=current_user.id)


@router.post("/actions", response_model=schemas.LinkedActionRead, status_code=status.HTTP_201_CREATED)
def add_action(
    payload: schemas.LinkedActionCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    _goal_for(db, payload.goal_id, current_user)
    action = services.add_linked_action(db, user=current_user, data=payload)
    db.commit()
    return action


@router.post("/actions/{action_id}/dismiss", response_model=schemas.LinkedActionRead)
def dismiss_action(
    action_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        action = services.get_action(db, action_id=action_id, user_id=current_user.id)
    except services.ActionNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Action not found")
    services.dismiss_action(db, action=action)
    db.commit()
    return action


@router.post("/actions/{action_id}/complete", response_model=schemas.LinkedActionRead)
def complete_action(
    action_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        action = services.get_action(db, action_id=action_id, user_id=current_user.id)
    except services.ActionNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Action not found")
    services.complete_action(db, action=action)
    db.commit()
    return action
