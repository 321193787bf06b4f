"""
Individual development plans (PDI).

Besides plain CRUD for plans, goals and linked actions, this module owns the
automatic progress engine: platform events (a finished training, a game, a
challenge...) advance the matching goals of the player's active plans.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.apps.audit import services as audit_services
from gameia.apps.gamification import models as gamification_models
from gameia.apps.gamification import services as gamification_services

from . import models, schemas

logger = logging.getLogger(__name__)

# (base, max) progress points granted per source type
PROGRESS_IMPACT: Dict[str, Tuple[int, int]] = {
    "training": (25, 40),
    "module": (8, 15),
    "game": (5, 12),
    "challenge": (15, 30),
    "cognitive_test": (10, 20),
}
DEFAULT_GOAL_XP = 100
HISTORY_LIMIT = 50
PENDING_ACTIONS_LIMIT = 10

# source type -> (goal column holding linked ids, match reason)
_SOURCE_LINK_FIELD = {
    "training": ("linked_training_ids", "linked_training"),
    "challenge": ("linked_challenge_ids", "linked_challenge"),
    "cognitive_test": ("linked_cognitive_test_ids", "linked_cognitive_test"),
    "game": ("related_games", "related_game"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanNotFound(Exception):
    pass


class GoalNotFound(Exception):
    pass


class ActionNotFound(Exception):
    pass


# ---------------------------------------------------------------------------
# PLANS
# ---------------------------------------------------------------------------


def list_org_plans(db: Session, *, organization_id: str) -> List[models.DevelopmentPlan]:
    return (
        db.query(models.DevelopmentPlan)
        .filter(models.DevelopmentPlan.organization_id == organization_id)
        .order_by(models.DevelopmentPlan.created_at.desc())
        .all()
    )


def list_user_plans(db: Session, *, user_id: str) -> List[models.DevelopmentPlan]:
    return (
        db.query(models.DevelopmentPlan)
        .filter(models.DevelopmentPlan.user_id == user_id)
        .order_by(models.DevelopmentPlan.created_at.desc())
        .all()
    )


def get_plan(db: Session, *, plan_id: str) -> models.DevelopmentPlan:
    plan = db.query(models.DevelopmentPlan).filter(models.DevelopmentPlan.id == plan_id).first()
    if plan is None:
        raise PlanNotFound(plan_id)
    return plan


def create_plan(
    db: Session,
    *,
    user: account_models.User,
    data: schemas.PlanCreate,
) -> models.DevelopmentPlan:
    plan = models.DevelopmentPlan(
        organization_id=user.organization_id,
        user_id=data.user_id or user.id,
        manager_id=data.manager_id,
        title=data.title.strip(),
        period_start=data.period_start,
        period_end=data.period_end,
        status=data.status,
    )
    db.add(plan)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=user.organization_id,
        actor_user_id=user.id,
        entity_type="development_plan",
        entity_id=plan.id,
        action="CREATED",
        after={"user_id": plan.user_id, "title": plan.title},
    )
    return plan


def update_plan(db: Session, *, plan: models.DevelopmentPlan, data: schemas.PlanUpdate) -> models.DevelopmentPlan:
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(plan, field, value)
    plan.updated_at = _utcnow()
    db.add(plan)
    db.flush()
    return plan


# ---------------------------------------------------------------------------
# GOALS
# ---------------------------------------------------------------------------


def list_goals(db: Session, *, plan_id: str) -> List[models.DevelopmentGoal]:
    return (
        db.query(models.DevelopmentGoal)
        .filter(models.DevelopmentGoal.plan_id == plan_id)
        .order_by(models.DevelopmentGoal.created_at.asc())
        .all()
    )


def get_goal(db: Session, *, goal_id: str) -> models.DevelopmentGoal:
    goal = db.query(models.DevelopmentGoal).filter(models.DevelopmentGoal.id == goal_id).first()
    if goal is None:
        raise GoalNotFound(goal_id)
    return goal


def create_goal(db: Session, *, data: schemas.GoalCreate) -> models.DevelopmentGoal:
    get_plan(db, plan_id=data.plan_id)
    goal = models.DevelopmentGoal(**data.model_dump())
    goal.title = goal.title.strip()
    db.add(goal)
    db.flush()
    return goal


def update_goal(db: Session, *, goal: models.DevelopmentGoal, data: schemas.GoalUpdate) -> models.DevelopmentGoal:
    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(goal, field, value)
    if changes.get("progress") is not None and goal.progress >= 100 and "status" not in changes:
        goal.status = models.GoalStatus.COMPLETED
    db.add(goal)
    db.flush()
    return goal


# ---------------------------------------------------------------------------
# AUTOMATIC PROGRESS
# ---------------------------------------------------------------------------


def _match_reason(goal: models.DevelopmentGoal, event: schemas.ProgressEventIn) -> Optional[str]:
    link = _SOURCE_LINK_FIELD.get(event.source_type)
    if link is not None and event.source_id in (getattr(goal, link[0]) or []):
        return link[1]
    if goal.skill_id and goal.skill_id in (event.skill_ids or []):
        return "skill_match"
    return None


def calculate_progress_delta(source_type: str, score: Optional[float] = None) -> int:
    """Progress points for one event, scaled by the score (up to 1.5x) and capped."""
    base, maximum = PROGRESS_IMPACT.get(source_type, (5, 10))
    delta = base
    if score is not None:
        delta = round(base * min(score / 100, 1.5))
    return min(delta, maximum)


def _eligible_goals(db: Session, *, user_id: str) -> List[models.DevelopmentGoal]:
    return (
        db.query(models.DevelopmentGoal)
        .join(models.DevelopmentPlan, models.DevelopmentPlan.id == models.DevelopmentGoal.plan_id)
        .filter(
            models.DevelopmentPlan.user_id == user_id,
            models.DevelopmentPlan.status == models.PlanStatus.ACTIVE,
            models.DevelopmentGoal.status == models.GoalStatus.IN_PROGRESS,
            models.DevelopmentGoal.auto_progress_enabled.is_(True),
        )
        .order_by(models.DevelopmentGoal.created_at.asc())
        .all()
    )


def update_pdi_progress(
    db: Session,
    *,
    event: schemas.ProgressEventIn,
    now: Optional[datetime] = None,
) -> schemas.ProgressUpdateResult:
    """
    Advance every eligible goal matched by the event.

    Raises ValueError when user_id, source_type or source_id is missing and
    LookupError when the user does not exist.
    """
    if not event.user_id or not event.source_type or not event.source_id:
        raise ValueError("Missing required fields: user_id, source_type, source_id")

    user = db.query(account_models.User).filter(account_models.User.id == event.user_id).first()
    if user is None:
        raise LookupError(event.user_id)

    now = now or _utcnow()
    organization_id = event.organization_id or user.organization_id
    updates: List[schemas.GoalUpdateResult] = []
    total_xp = 0

    for goal in _eligible_goals(db, user_id=user.id):
        reason = _match_reason(goal, event)
        if reason is None:
            continue

        current = goal.progress or 0
        new_progress = min(current + calculate_progress_delta(event.source_type, event.score), 100)
        actual_delta = new_progress - current
        if actual_delta <= 0:
            continue

        xp_earned = round(actual_delta / 100 * (goal.xp_reward or DEFAULT_GOAL_XP))
        goal.progress = new_progress
        goal.last_auto_update = now
        goal.stagnant_since = None
        if new_progress >= 100:
            goal.status = models.GoalStatus.COMPLETED
        db.add(goal)

        db.add(
            models.GoalProgressEvent(
                goal_id=goal.id,
                user_id=user.id,
                organization_id=organization_id,
                source_type=event.source_type,
                source_id=event.source_id,
                source_name=event.source_name,
                progress_before=current,
                progress_after=new_progress,
                progress_delta=actual_delta,
                xp_earned=xp_earned,
                metadata_json={"match_reason": reason, "score": event.score, "event_type": event.event_type},
                created_at=now,
            )
        )

        matching_actions = (
            db.query(models.PdiLinkedAction)
            .filter(
                models.PdiLinkedAction.goal_id == goal.id,
                models.PdiLinkedAction.action_type == event.source_type,
                models.PdiLinkedAction.action_id == event.source_id,
                models.PdiLinkedAction.completed_at.is_(None),
            )
            .all()
        )
        for action in matching_actions:
            action.completed_at = now
            db.add(action)

        total_xp += xp_earned
        updates.append(
            schemas.GoalUpdateResult(goal_id=goal.id, progress_delta=actual_delta, new_progress=new_progress)
        )

    if total_xp > 0:
        gamification_services.record_core_event(
            db,
            user=user,
            event_type=gamification_models.CoreEventType.PDI_PROGRESS_AUTO,
            organization_id=organization_id,
            xp_earned=total_xp,
            metadata={
                "goals_updated": len(updates),
                "source_type": event.source_type,
                "source_id": event.source_id,
            },
            now=now,
        )
    db.flush()

    if updates:
        logger.info(
            "PDI goals advanced",
            extra={"user_id": user.id, "source_type": event.source_type, "goals": len(updates), "xp": total_xp},
        )
    return schemas.ProgressUpdateResult(
        success=True,
        goals_updated=len(updates),
        total_xp_earned=total_xp,
        updates=updates,
    )


def propagate_progress(db: Session, **event_fields) -> Optional[schemas.ProgressUpdateResult]:
    """
    Best-effort wrapper used by other apps after a completion. A failure is
    logged and never reaches the caller's flow; the savepoint drops whatever
    the failed update had already written.
    """
    try:
        with db.begin_nested():
            return update_pdi_progress(db, event=schemas.ProgressEventIn(**event_fields))
    except Exception:
        logger.exception(
            "PDI progress propagation failed",
            extra={"source_type": event_fields.get("source_type"), "source_id": event_fields.get("source_id")},
        )
        return None


def get_progress_history(db: Session, *, goal_id: str) -> List[models.GoalProgressEvent]:
    return (
        db.query(models.GoalProgressEvent)
        .filter(models.GoalProgressEvent.goal_id == goal_id)
        .order_by(models.GoalProgressEvent.created_at.desc())
        .limit(HISTORY_LIMIT)
        .all()
    )


# ---------------------------------------------------------------------------
# LINKED ACTIONS
# ---------------------------------------------------------------------------


def _open_actions_query(db: Session):
    return db.query(models.PdiLinkedAction).filter(
        models.PdiLinkedAction.completed_at.is_(None),
        models.PdiLinkedAction.dismissed_at.is_(None),
    )


def get_pending_actions(db: Session, *, goal_id: str) -> List[models.PdiLinkedAction]:
    return (
        _open_actions_query(db)
        .filter(models.PdiLinkedAction.goal_id == goal_id)
        .order_by(models.PdiLinkedAction.priority.asc(), models.PdiLinkedAction.suggested_at.asc())
        .all()
    )


def get_all_pending_actions(db: Session, *, user_id: str) -> List[models.PdiLinkedAction]:
    return (
        _open_actions_query(db)
        .filter(models.PdiLinkedAction.user_id == user_id)
        .order_by(models.PdiLinkedAction.priority.asc(), models.PdiLinkedAction.suggested_at.asc())
        .limit(PENDING_ACTIONS_LIMIT)
        .all()
    )


def get_action(db: Session, *, action_id: str, user_id: str) -> models.PdiLinkedAction:
    action = (
        db.query(models.PdiLinkedAction)
        .filter(
            models.PdiLinkedAction.id == action_id,
            models.PdiLinkedAction.user_id == user_id,
        )
        .first()
    )
    if action is None:
        raise ActionNotFound(action_id)
    return action


def add_linked_action(
    db: Session,
    *,
    user: account_models.User,
    data: schemas.LinkedActionCreate,
) -> models.PdiLinkedAction:
    get_goal(db, goal_id=data.goal_id)
    action = models.PdiLinkedAction(
        user_id=user.id,
        organization_id=user.organization_id,
        **data.model_dump(),
    )
    db.add(action)
    db.flush()
    return action


def dismiss_action(db: Session, *, action: models.PdiLinkedAction) -> models.PdiLinkedAction:
    action.dismissed_at = _utcnow()
    db.add(action)
    db.flush()
    return action


def complete_action(db: Session, *, action: models.PdiLinkedAction) -> models.PdiLinkedAction:
    if action.completed_at is None:
        action.completed_at = _utcnow()
        db.add(action)
        db.flush()
    return action
