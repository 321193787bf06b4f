"""
Training catalog, the module player and practical applications.

Completing the last module of a training awards the training rewards,
records TRAINING_COMPLETED on the core ledger and pushes progress into the
learner's development plan.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.apps.audit import services as audit_services
from gameia.apps.events.broker import publish_change
from gameia.apps.gamification import insignias as insignia_services
from gameia.apps.gamification import models as gamification_models
from gameia.apps.gamification import services as gamification_services
from gameia.apps.notifications import alerts as notification_alerts
from gameia.apps.notifications import models as notification_models
from gameia.apps.notifications import service as notification_service
from gameia.apps.pdi import services as pdi_services
from gameia.utils.identifiers import ensure_utc

from . import models, schemas

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrainingNotFound(Exception):
    pass


class ModuleNotFound(Exception):
    pass


class ModuleLocked(Exception):
    pass


class ApplicationNotFound(Exception):
    pass


# ---------------------------------------------------------------------------
# CATALOG
# ---------------------------------------------------------------------------


def visible_trainings_query(db: Session, organization_id: Optional[str]):
    """Trainings of the organization plus the global catalog."""
    query = db.query(models.Training)
    if organization_id:
        return query.filter(
            or_(
                models.Training.organization_id == organization_id,
                models.Training.organization_id.is_(None),
            )
        )
    return query.filter(models.Training.organization_id.is_(None))


def list_trainings(
    db: Session,
    *,
    organization_id: Optional[str],
    include_inactive: bool = False,
) -> List[models.Training]:
    query = visible_trainings_query(db, organization_id)
    if not include_inactive:
        query = query.filter(
            models.Training.is_active.is_(True),
            models.Training.status == models.TrainingStatus.ACTIVE,
        )
    return query.order_by(models.Training.display_order.asc(), models.Training.name.asc()).all()


def get_training(db: Session, *, training_id: str, organization_id: Optional[str]) -> models.Training:
    training = (
        visible_trainings_query(db, organization_id)
        .filter(models.Training.id == training_id)
        .first()
    )
    if training is None:
        raise TrainingNotFound(training_id)
    return training


def get_editable_training(db: Session, *, training_id: str, user: account_models.User) -> models.Training:
    """Global trainings can only be edited by platform superusers."""
    training = get_training(db, training_id=training_id, organization_id=user.organization_id)
    if training.organization_id is None and not user.is_superuser:
        raise TrainingNotFound(training_id)
    return training


def create_training(
    db: Session,
    *,
    user: account_models.User,
    data: schemas.TrainingCreate,
) -> models.Training:
    organization_id = None if (data.is_global and user.is_superuser) else user.organization_id
    duplicate = (
        db.query(models.Training.id)
        .filter(
            models.Training.training_key == data.training_key,
            models.Training.organization_id.is_(None)
            if organization_id is None
            else models.Training.organization_id == organization_id,
        )
        .first()
    )
    if duplicate:
        raise ValueError(f"Training key '{data.training_key}' already exists")

    training = models.Training(
        organization_id=organization_id,
        created_by_user_id=user.id,
        **data.model_dump(exclude={"is_global"}),
    )
    db.add(training)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=organization_id,
        actor_user_id=user.id,
        entity_type="training",
        entity_id=training.id,
        action="CREATED",
        after={"training_key": training.training_key, "name": training.name},
    )
    return training


def update_training(
    db: Session,
    *,
    training: models.Training,
    data: schemas.TrainingUpdate,
    actor_user_id: Optional[str] = None,
) -> models.Training:
    changes = data.model_dump(exclude_unset=True)
    before = {field: getattr(training, field) for field in changes}
    for field, value in changes.items():
        setattr(training, field, value)
    training.updated_at = _utcnow()
    db.add(training)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=training.organization_id,
        actor_user_id=actor_user_id,
        entity_type="training",
        entity_id=training.id,
        action="UPDATED",
        before=before,
        after=changes,
    )
    return training


def delete_training(db: Session, *, training: models.Training, actor_user_id: Optional[str] = None) -> None:
    audit_services.log_event(
        db,
        organization_id=training.organization_id,
        actor_user_id=actor_user_id,
        entity_type="training",
        entity_id=training.id,
        action="DELETED",
        before={"training_key": training.training_key},
    )
    db.delete(training)
    db.flush()


# ---------------------------------------------------------------------------
# MODULES
# ---------------------------------------------------------------------------


def get_module(db: Session, *, module_id: str, training: models.Training) -> models.TrainingModule:
    module = (
        db.query(models.TrainingModule)
        .filter(
            models.TrainingModule.id == module_id,
            models.TrainingModule.training_id == training.id,
        )
        .first()
    )
    if module is None:
        raise ModuleNotFound(module_id)
    return module


def create_module(db: Session, *, training: models.Training, data: schemas.ModuleCreate) -> models.TrainingModule:
    fields = data.model_dump(exclude={"order_index"})
    order_index = data.order_index
    if order_index is None:
        order_index = max((m.order_index for m in training.modules), default=-1) + 1
    module = models.TrainingModule(order_index=order_index, **fields)
    training.modules.append(module)
    db.flush()
    db.expire(training, ["modules"])
    return module


def update_module(db: Session, *, module: models.TrainingModule, data: schemas.ModuleUpdate) -> models.TrainingModule:
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(module, field, value)
    db.add(module)
    db.flush()
    return module


def delete_module(db: Session, *, module: models.TrainingModule) -> None:
    db.delete(module)
    db.flush()


def reorder_modules(db: Session, *, training: models.Training, module_ids: Sequence[str]) -> List[models.TrainingModule]:
    """Rewrite order_index to each module's position in `module_ids`."""
    by_id = {module.id: module for module in training.modules}
    if len(module_ids) != len(set(module_ids)) or set(module_ids) != set(by_id):
        raise ValueError("module_ids must list every module of the training exactly once")
    for index, module_id in enumerate(module_ids):
        by_id[module_id].order_index = index
        db.add(by_id[module_id])
    db.flush()
    db.expire(training, ["modules"])
    return list(training.modules)


# ---------------------------------------------------------------------------
# PLAYER
# ---------------------------------------------------------------------------


def is_module_locked(
    modules: Sequence[models.TrainingModule],
    module: models.TrainingModule,
    completed_ids: Iterable[str],
) -> bool:
    """
    Preview modules and the first module are always open; any other module
    is locked while the previous one requires completion and is not done.
    """
    if module.is_preview:
        return False
    ids = [m.id for m in modules]
    if module.id not in ids:
        return True
    index = ids.index(module.id)
    if index == 0:
        return False
    previous = modules[index - 1]
    return bool(previous.requires_completion) and previous.id not in set(completed_ids)


def get_next_incomplete_module(
    modules: Sequence[models.TrainingModule],
    completed_ids: Iterable[str],
) -> Optional[models.TrainingModule]:
    completed = set(completed_ids)
    for module in modules:
        if module.id not in completed and not is_module_locked(modules, module, completed):
            return module
    return None


def get_training_progress(db: Session, *, user_id: str, training_id: str) -> Optional[models.UserTrainingProgress]:
    return (
        db.query(models.UserTrainingProgress)
        .filter(
            models.UserTrainingProgress.user_id == user_id,
            models.UserTrainingProgress.training_id == training_id,
        )
        .first()
    )


def module_progress_map(db: Session, *, user_id: str, training: models.Training) -> Dict[str, models.ModuleProgress]:
    module_ids = [m.id for m in training.modules]
    if not module_ids:
        return {}
    rows = (
        db.query(models.ModuleProgress)
        .filter(
            models.ModuleProgress.user_id == user_id,
            models.ModuleProgress.module_id.in_(module_ids),
        )
        .all()
    )
    return {row.module_id: row for row in rows}


def _completed_ids(progress: Dict[str, models.ModuleProgress]) -> set:
    return {module_id for module_id, row in progress.items() if row.completed_at is not None}


def get_player_state(db: Session, *, user: account_models.User, training: models.Training) -> schemas.PlayerState:
    modules = list(training.modules)
    progress = module_progress_map(db, user_id=user.id, training=training)
    completed = _completed_ids(progress)
    next_module = get_next_incomplete_module(modules, completed)
    training_progress = get_training_progress(db, user_id=user.id, training_id=training.id)
    return schemas.PlayerState(
        training=schemas.TrainingRead.model_validate(training),
        progress=schemas.TrainingProgressRead.model_validate(training_progress) if training_progress else None,
        modules=[
            schemas.ModuleState(
                module=schemas.ModuleRead.model_validate(module),
                progress=schemas.ModuleProgressRead.model_validate(progress[module.id])
                if module.id in progress
                else None,
                is_completed=module.id in completed,
                is_locked=is_module_locked(modules, module, completed),
            )
            for module in modules
        ],
        next_module_id=next_module.id if next_module else None,
    )


def _ensure_training_progress(
    db: Session,
    *,
    user: account_models.User,
    training: models.Training,
    now: datetime,
) -> models.UserTrainingProgress:
    progress = get_training_progress(db, user_id=user.id, training_id=training.id)
    if progress is None:
        progress = models.UserTrainingProgress(
            user_id=user.id,
            training_id=training.id,
            progress_percent=0,
            started_at=now,
        )
        db.add(progress)
        db.flush()
    elif progress.started_at is None:
        progress.started_at = now
        db.add(progress)
    return progress


def start_module(
    db: Session,
    *,
    user: account_models.User,
    module: models.TrainingModule,
    now: Optional[datetime] = None,
) -> models.ModuleProgress:
    """Idempotent: a module already started keeps its original row."""
    now = now or _utcnow()
    existing = (
        db.query(models.ModuleProgress)
        .filter(
            models.ModuleProgress.user_id == user.id,
            models.ModuleProgress.module_id == module.id,
        )
        .first()
    )
    _ensure_training_progress(db, user=user, training=module.training, now=now)
    if existing is not None:
        return existing
    row = models.ModuleProgress(user_id=user.id, module_id=module.id, started_at=now)
    db.add(row)
    db.flush()
    return row


def _award_training_insignia(db: Session, *, user: account_models.User, training: models.Training) -> None:
    if not training.insignia_reward_id:
        return
    already = (
        db.query(gamification_models.UserInsignia.id)
        .filter(
            gamification_models.UserInsignia.user_id == user.id,
            gamification_models.UserInsignia.insignia_id == training.insignia_reward_id,
        )
        .first()
    )
    insignia = db.get(gamification_models.Insignia, training.insignia_reward_id)
    if already or insignia is None:
        return
    insignia_services.unlock_insignia(
        db,
        user=user,
        insignia=insignia,
        snapshot={"training_id": training.id},
        awarded_by="system",
    )


def complete_module(
    db: Session,
    *,
    user: account_models.User,
    module: models.TrainingModule,
    score: Optional[float] = None,
    time_spent_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> schemas.ModuleCompletionResult:
    """
    Mark a module complete (once) and recompute the training progress.

    Raises ModuleLocked when the previous required module is still open.
    """
    now = now or _utcnow()
    training = module.training
    modules = list(training.modules)
    progress = module_progress_map(db, user_id=user.id, training=training)
    completed = _completed_ids(progress)

    if module.id in completed:
        training_progress = get_training_progress(db, user_id=user.id, training_id=training.id)
        return schemas.ModuleCompletionResult(
            module_id=module.id,
            already_completed=True,
            progress_percent=training_progress.progress_percent if training_progress else 0,
            training_completed=bool(training_progress and training_progress.completed_at),
            certificate_available=bool(training.certificate_enabled and training_progress and training_progress.completed_at),
        )
    if is_module_locked(modules, module, completed):
        raise ModuleLocked(module.id)

    row = progress.get(module.id) or start_module(db, user=user, module=module, now=now)
    row.completed_at = now
    row.attempts = (row.attempts or 0) + 1
    if score is not None:
        row.score = score
    if time_spent_seconds is not None:
        row.time_spent_seconds = max(row.time_spent_seconds or 0, time_spent_seconds)
    db.add(row)
    completed.add(module.id)

    gamification_services.record_core_event(
        db,
        user=user,
        event_type=gamification_models.CoreEventType.MODULE_COMPLETED,
        skill_ids=module.skill_ids or training.skill_ids or [],
        xp_earned=module.xp_reward or 0,
        coins_earned=module.coins_reward or 0,
        score=score,
        metadata={"training_id": training.id, "module_id": module.id, "module_name": module.name},
        now=now,
    )
    pdi_services.propagate_progress(
        db,
        user_id=user.id,
        organization_id=user.organization_id,
        event_type="module_completed",
        source_type="module",
        source_id=module.id,
        source_name=module.name,
        score=score,
        skill_ids=module.skill_ids or [],
    )

    training_progress = _ensure_training_progress(db, user=user, training=training, now=now)
    total = len(modules)
    done = len(completed & {m.id for m in modules})
    training_progress.progress_percent = round(done / total * 100) if total else 100
    training_completed = done == total and training_progress.completed_at is None
    if training_completed:
        training_progress.completed_at = now
    db.add(training_progress)
    db.flush()

    if training_completed:
        gamification_services.record_training_completed(
            db,
            user=user,
            training_id=training.id,
            xp_earned=training.xp_reward or 0,
            coins_earned=training.coins_reward or 0,
            skill_ids=training.skill_ids or [],
            metadata={"training_name": training.name},
        )
        pdi_services.propagate_progress(
            db,
            user_id=user.id,
            organization_id=user.organization_id,
            event_type="training_completed",
            source_type="training",
            source_id=training.id,
            source_name=training.name,
            skill_ids=training.skill_ids or [],
        )
        _award_training_insignia(db, user=user, training=training)
        logger.info("Training completed", extra={"user_id": user.id, "training_id": training.id})

    publish_change(
        entity_type="training_progress",
        entity_id=training_progress.id,
        action="UPDATE",
        user_id=user.id,
        metadata={"trainingId": training.id, "progressPercent": training_progress.progress_percent},
    )
    return schemas.ModuleCompletionResult(
        module_id=module.id,
        xp_earned=module.xp_reward or 0,
        coins_earned=module.coins_reward or 0,
        progress_percent=training_progress.progress_percent,
        training_completed=training_progress.completed_at is not None,
        certificate_available=bool(training.certificate_enabled and training_progress.completed_at),
    )


def update_time_spent(
    db: Session,
    *,
    user: account_models.User,
    module: models.TrainingModule,
    time_spent_seconds: int,
) -> models.ModuleProgress:
    row = start_module(db, user=user, module=module)
    row.time_spent_seconds = time_spent_seconds
    db.add(row)
    db.flush()

    training_progress = get_training_progress(db, user_id=user.id, training_id=module.training_id)
    if training_progress is not None:
        rows = module_progress_map(db, user_id=user.id, training=module.training)
        training_progress.total_time_seconds = sum(r.time_spent_seconds or 0 for r in rows.values())
        db.add(training_progress)
        db.flush()
    return row


def list_user_progress(db: Session, *, user_id: str) -> List[models.UserTrainingProgress]:
    return (
        db.query(models.UserTrainingProgress)
        .filter(models.UserTrainingProgress.user_id == user_id)
        .order_by(models.UserTrainingProgress.started_at.desc())
        .all()
    )


# ---------------------------------------------------------------------------
# ASSIGNMENTS
# ---------------------------------------------------------------------------


def assign_training(
    db: Session,
    *,
    training: models.Training,
    organization_id: str,
    user_ids: Sequence[str],
    deadline_at: Optional[datetime],
    assigned_by: account_models.User,
    now: Optional[datetime] = None,
) -> List[models.UserTrainingProgress]:
    """Assign a training (optionally with a deadline) to members of the organization."""
    now = now or _utcnow()
    members = (
        db.query(account_models.OrganizationMember)
        .filter(
            account_models.OrganizationMember.organization_id == organization_id,
            account_models.OrganizationMember.user_id.in_(list(user_ids)),
            account_models.OrganizationMember.is_active.is_(True),
        )
        .all()
    )
    member_ids = {m.user_id for m in members}
    missing = [uid for uid in user_ids if uid not in member_ids]
    if missing:
        raise ValueError(f"Users are not members of the organization: {', '.join(missing)}")

    rows: List[models.UserTrainingProgress] = []
    for user_id in dict.fromkeys(user_ids):
        progress = get_training_progress(db, user_id=user_id, training_id=training.id)
        if progress is None:
            progress = models.UserTrainingProgress(user_id=user_id, training_id=training.id, progress_percent=0)
        progress.assigned_by_user_id = assigned_by.id
        progress.assigned_at = now
        progress.deadline_at = deadline_at
        db.add(progress)
        db.flush()
        rows.append(progress)

        if progress.completed_at is None:
            deadline_text = f" until {ensure_utc(deadline_at):%Y-%m-%d}" if deadline_at else ""
            notification_service.create_notification(
                db,
                user_id=user_id,
                organization_id=organization_id,
                title="New training assigned",
                message=f'You have been assigned "{training.name}"{deadline_text}',
                type=notification_models.NotificationType.INFO,
                link=f"/app/trainings/{training.id}",
                metadata={"training_id": training.id},
            )

    audit_services.log_event(
        db,
        organization_id=organization_id,
        actor_user_id=assigned_by.id,
        entity_type="training",
        entity_id=training.id,
        action="ASSIGNED",
        after={"user_ids": list(dict.fromkeys(user_ids)), "deadline_at": deadline_at.isoformat() if deadline_at else None},
    )
    return rows


# ---------------------------------------------------------------------------
# ROUTINE APPLICATIONS
# ---------------------------------------------------------------------------


def get_application(db: Session, *, application_id: str) -> models.RoutineApplication:
    application = db.get(models.RoutineApplication, application_id)
    if application is None:
        raise ApplicationNotFound(application_id)
    return application


def create_application(
    db: Session,
    *,
    user: account_models.User,
    module: models.TrainingModule,
    commitment: Optional[str] = None,
    deadline_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> models.RoutineApplication:
    """
    Start the practical application of a module. One per user and module;
    an existing application is returned unchanged. Deadline alerts are
    queued for new applications.
    """
    existing = (
        db.query(models.RoutineApplication)
        .filter(
            models.RoutineApplication.user_id == user.id,
            models.RoutineApplication.module_id == module.id,
        )
        .first()
    )
    if existing is not None:
        return existing

    now = now or _utcnow()
    if deadline_at is None and module.application_deadline_days:
        deadline_at = now + timedelta(days=module.application_deadline_days)

    application = models.RoutineApplication(
        user_id=user.id,
        organization_id=user.organization_id,
        training_id=module.training_id,
        module_id=module.id,
        status=models.ApplicationStatus.IN_PROGRESS,
        commitment=commitment,
        started_at=now,
        deadline_at=deadline_at,
    )
    db.add(application)
    db.flush()
    notification_alerts.schedule_application_alerts(db, application, now=now)
    return application


def submit_application(
    db: Session,
    *,
    application: models.RoutineApplication,
    data: schemas.ApplicationSubmit,
    now: Optional[datetime] = None,
) -> models.RoutineApplication:
    if application.status == models.ApplicationStatus.COMPLETED:
        raise ValueError("Application already completed")
    now = now or _utcnow()
    for field, value in data.model_dump().items():
        setattr(application, field, value)
    application.status = models.ApplicationStatus.COMPLETED
    application.completed_at = now
    deadline = ensure_utc(application.deadline_at)
    application.is_late = bool(deadline and now > deadline)
    db.add(application)
    db.flush()
    publish_change(
        entity_type="routine_application",
        entity_id=application.id,
        action="UPDATE",
        organization_id=application.organization_id,
        actor_user_id=application.user_id,
        metadata={"status": application.status.value},
    )
    return application


def provide_feedback(
    db: Session,
    *,
    application: models.RoutineApplication,
    feedback: str,
    manager: account_models.User,
    now: Optional[datetime] = None,
) -> models.RoutineApplication:
    application.manager_feedback = feedback
    application.manager_viewed_at = now or _utcnow()
    db.add(application)
    db.flush()
    subject = application.module.name if application.module else "your application"
    notification_service.create_notification(
        db,
        user_id=application.user_id,
        organization_id=application.organization_id,
        title="New feedback on your practical application",
        message=f'{manager.full_name} left feedback on "{subject}"',
        type=notification_models.NotificationType.INFO,
        link=f"/app/trainings/{application.training_id}",
        metadata={"application_id": application.id},
    )
    return application


def mark_viewed(db: Session, *, application: models.RoutineApplication, now: Optional[datetime] = None):
    application.manager_viewed_at = now or _utcnow()
    db.add(application)
    db.flush()
    return application


def list_user_applications(db: Session, *, user_id: str) -> List[models.RoutineApplication]:
    return (
        db.query(models.RoutineApplication)
        .filter(models.RoutineApplication.user_id == user_id)
        .order_by(models.RoutineApplication.started_at.desc())
        .all()
    )


def list_team_applications(
    db: Session,
    *,
    organization_id: str,
    training_id: Optional[str] = None,
    status: Optional[models.ApplicationStatus] = None,
) -> List[schemas.TeamApplication]:
    query = (
        db.query(models.RoutineApplication, account_models.User)
        .join(account_models.User, account_models.User.id == models.RoutineApplication.user_id)
        .filter(models.RoutineApplication.organization_id == organization_id)
    )
    if training_id:
        query = query.filter(models.RoutineApplication.training_id == training_id)
    if status:
        query = query.filter(models.RoutineApplication.status == status)

    items: List[schemas.TeamApplication] = []
    for application, user in query.order_by(models.RoutineApplication.started_at.desc()).all():
        item = schemas.TeamApplication.model_validate(application)
        item.user_name = user.nickname or user.full_name or "User"
        item.user_avatar = user.avatar_url
        item.module_name = application.module.name if application.module else None
        item.training_name = application.training.name if application.training else None
        items.append(item)
    return items


def team_application_stats(applications: Sequence) -> schemas.TeamApplicationStats:
    completed = [a for a in applications if a.status == models.ApplicationStatus.COMPLETED]
    on_time = [a for a in completed if not a.is_late]
    total = len(applications)
    return schemas.TeamApplicationStats(
        total_applications=total,
        completed=len(completed),
        in_progress=sum(1 for a in applications if a.status == models.ApplicationStatus.IN_PROGRESS),
        completed_on_time=len(on_time),
        completed_late=len(completed) - len(on_time),
        on_time_rate=(len(on_time) / len(completed) * 100) if completed else 0,
        participation_rate=(len(completed) / total * 100) if total else 0,
    )
