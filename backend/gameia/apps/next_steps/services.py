"""
Next-step aggregation.

`refresh_next_steps` rebuilds the derived rows of a user from the tables
that hold open work, `list_next_steps` returns them decorated with
`days_remaining` / `is_overdue` and sorted by priority then deadline.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.apps.events.broker import publish_change
from gameia.apps.pdi import models as pdi_models
from gameia.apps.training import models as training_models
from gameia.utils.identifiers import ensure_utc

from . import models

logger = logging.getLogger(__name__)

APPLICATIONS_TABLE = "routine_applications"
PDI_ACTIONS_TABLE = "pdi_linked_actions"
TRAININGS_TABLE = "user_training_progress"

URGENT_WINDOW = timedelta(days=1)
HIGH_WINDOW = timedelta(days=3)

SourceKey = Tuple[str, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NextStepNotFound(Exception):
    pass


def priority_for_deadline(deadline_at: Optional[datetime], now: datetime) -> models.NextStepPriority:
    if deadline_at is None:
        return models.NextStepPriority.NORMAL
    remaining = ensure_utc(deadline_at) - now
    if remaining <= URGENT_WINDOW:
        return models.NextStepPriority.URGENT
    if remaining <= HIGH_WINDOW:
        return models.NextStepPriority.HIGH
    return models.NextStepPriority.NORMAL


# ---------------------------------------------------------------------------
# AGGREGATION
# ---------------------------------------------------------------------------


def _open_applications(db: Session, user_id: str) -> Iterable[Tuple[SourceKey, Dict[str, Any]]]:
    rows = (
        db.query(training_models.RoutineApplication)
        .filter(
            training_models.RoutineApplication.user_id == user_id,
            training_models.RoutineApplication.status != training_models.ApplicationStatus.COMPLETED,
        )
        .all()
    )
    for application in rows:
        module_name = application.module.name if application.module else None
        training_name = application.training.name if application.training else None
        yield (APPLICATIONS_TABLE, application.id), {
            "step_type": models.NextStepType.BOOK_APPLICATION,
            "title": f'Apply "{module_name}" in your routine' if module_name else "Practical application",
            "description": application.commitment,
            "deadline_at": application.deadline_at,
            "source_context": {
                "training_id": application.training_id,
                "training_name": training_name,
                "module_id": application.module_id,
                "module_name": module_name,
            },
        }


def _pending_pdi_actions(db: Session, user_id: str) -> Iterable[Tuple[SourceKey, Dict[str, Any]]]:
    rows = (
        db.query(pdi_models.PdiLinkedAction)
        .filter(
            pdi_models.PdiLinkedAction.user_id == user_id,
            pdi_models.PdiLinkedAction.completed_at.is_(None),
            pdi_models.PdiLinkedAction.dismissed_at.is_(None),
        )
        .all()
    )
    for action in rows:
        goal = action.goal
        yield (PDI_ACTIONS_TABLE, action.id), {
            "step_type": models.NextStepType.PDI_GOAL,
            "title": action.action_name,
            "description": f"Goal: {goal.title}" if goal else None,
            "deadline_at": action.deadline_at,
            "source_context": {
                "goal_id": action.goal_id,
                "action_type": action.action_type,
                "action_id": action.action_id,
                "expected_progress_impact": action.expected_progress_impact,
            },
        }


def _assigned_trainings(db: Session, user_id: str) -> Iterable[Tuple[SourceKey, Dict[str, Any]]]:
    rows = (
        db.query(training_models.UserTrainingProgress)
        .filter(
            training_models.UserTrainingProgress.user_id == user_id,
            training_models.UserTrainingProgress.deadline_at.isnot(None),
            training_models.UserTrainingProgress.completed_at.is_(None),
        )
        .all()
    )
    for progress in rows:
        training = progress.training
        yield (TRAININGS_TABLE, progress.id), {
            "step_type": models.NextStepType.TRAINING_MODULE,
            "title": training.name if training else "Assigned training",
            "description": f"{progress.progress_percent or 0}% completed",
            "deadline_at": progress.deadline_at,
            "source_context": {
                "training_id": progress.training_id,
                "progress_percent": progress.progress_percent or 0,
            },
        }


def collect_sources(db: Session, *, user_id: str) -> Dict[SourceKey, Dict[str, Any]]:
    sources: Dict[SourceKey, Dict[str, Any]] = {}
    for collector in (_open_applications, _pending_pdi_actions, _assigned_trainings):
        sources.update(collector(db, user_id))
    return sources


def refresh_next_steps(
    db: Session,
    *,
    user: account_models.User,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Sync the derived next steps of `user` with their sources.

    New open work creates a row, rows whose source is no longer open are
    closed, and open rows get their title, deadline and priority refreshed.
    A row the user completed by hand is left completed.
    """
    now = now or _utcnow()
    sources = collect_sources(db, user_id=user.id)
    existing = (
        db.query(models.NextStep)
        .filter(
            models.NextStep.user_id == user.id,
            models.NextStep.source_table.isnot(None),
        )
        .all()
    )

    created = closed = 0
    seen = set()
    for step in existing:
        key = (step.source_table, step.source_id)
        seen.add(key)
        fields = sources.get(key)
        if fields is None:
            if not step.is_completed:
                step.is_completed = True
                step.completed_at = now
                db.add(step)
                closed += 1
            continue
        if step.is_completed:
            continue
        for attr, value in fields.items():
            setattr(step, attr, value)
        step.priority = priority_for_deadline(fields["deadline_at"], now)
        db.add(step)

    for key, fields in sources.items():
        if key in seen:
            continue
        source_table, source_id = key
        db.add(
            models.NextStep(
                user_id=user.id,
                organization_id=user.organization_id,
                source_table=source_table,
                source_id=source_id,
                priority=priority_for_deadline(fields["deadline_at"], now),
                **fields,
            )
        )
        created += 1

    db.flush()
    if created or closed:
        publish_change(
            entity_type="next_step",
            entity_id=user.id,
            action="REFRESHED",
            organization_id=user.organization_id,
            user_id=user.id,
            metadata={"created": created, "closed": closed},
        )
    return {"created": created, "closed": closed}


# ---------------------------------------------------------------------------
# LISTING
# ---------------------------------------------------------------------------


def step_view(step: models.NextStep, now: datetime) -> Dict[str, Any]:
    deadline = ensure_utc(step.deadline_at)
    days_remaining = None
    if deadline is not None:
        days_remaining = math.ceil((deadline - now).total_seconds() / 86400)
    return {
        "id": step.id,
        "step_type": step.step_type,
        "source_id": step.source_id,
        "source_table": step.source_table,
        "title": step.title,
        "description": step.description,
        "deadline_at": deadline,
        "priority": step.priority,
        "source_context": step.source_context or {},
        "days_remaining": days_remaining,
        "is_overdue": bool(deadline and deadline < now),
        "created_at": step.created_at,
    }


def sort_steps(steps: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Priority rank first, then earliest deadline; steps without deadline go last."""

    def _key(step):
        deadline = step["deadline_at"]
        return (
            models.PRIORITY_RANK[models.NextStepPriority(step["priority"])],
            deadline is None,
            deadline.timestamp() if deadline else 0,
        )

    return sorted(steps, key=_key)


def list_next_steps(
    db: Session,
    *,
    user: account_models.User,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    now = now or _utcnow()
    try:
        refresh_next_steps(db, user=user, now=now)
    except Exception:
        logger.exception("Next steps refresh failed; serving stored rows", extra={"user_id": user.id})
        db.rollback()

    rows = (
        db.query(models.NextStep)
        .filter(models.NextStep.user_id == user.id, models.NextStep.is_completed.is_(False))
        .all()
    )
    return sort_steps([step_view(row, now) for row in rows])


def get_steps_by_type(steps: List[Dict[str, Any]], step_type: models.NextStepType) -> List[Dict[str, Any]]:
    return [s for s in steps if s["step_type"] == step_type]


def urgent_count(steps: List[Dict[str, Any]]) -> int:
    return sum(1 for s in steps if s["priority"] == models.NextStepPriority.URGENT or s["is_overdue"])


def overdue_count(steps: List[Dict[str, Any]]) -> int:
    return sum(1 for s in steps if s["is_overdue"])


# ---------------------------------------------------------------------------
# MUTATIONS
# ---------------------------------------------------------------------------


def get_step(db: Session, *, step_id: str, user_id: str) -> models.NextStep:
    step = (
        db.query(models.NextStep)
        .filter(models.NextStep.id == step_id, models.NextStep.user_id == user_id)
        .first()
    )
    if step is None:
        raise NextStepNotFound(step_id)
    return step


def create_step(
    db: Session,
    *,
    user: account_models.User,
    step_type: models.NextStepType,
    title: str,
    description: Optional[str] = None,
    deadline_at: Optional[datetime] = None,
    priority: Optional[models.NextStepPriority] = None,
    now: Optional[datetime] = None,
) -> models.NextStep:
    """Personal step (commitment, mission, 1:1 action) not backed by a source table."""
    now = now or _utcnow()
    step = models.NextStep(
        user_id=user.id,
        organization_id=user.organization_id,
        step_type=step_type,
        title=title,
        description=description,
        deadline_at=deadline_at,
        priority=priority or priority_for_deadline(deadline_at, now),
        source_context={},
    )
    db.add(step)
    db.flush()
    publish_change(
        entity_type="next_step",
        entity_id=step.id,
        action="CREATE",
        organization_id=user.organization_id,
        user_id=user.id,
    )
    return step


def complete_step(
    db: Session,
    *,
    user: account_models.User,
    step_id: str,
    now: Optional[datetime] = None,
) -> models.NextStep:
    step = get_step(db, step_id=step_id, user_id=user.id)
    if step.is_completed:
        return step
    step.is_completed = True
    step.completed_at = now or _utcnow()
    db.add(step)
    db.flush()
    publish_change(
        entity_type="next_step",
        entity_id=step.id,
        action="COMPLETED",
        organization_id=user.organization_id,
        user_id=user.id,
        metadata={"stepType": step.step_type.value},
    )
    logger.info("Next step completed", extra={"user_id": user.id, "step_id": step.id})
    return step
