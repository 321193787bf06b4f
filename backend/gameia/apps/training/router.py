from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ...database import get_db, get_read_db
from ...security import get_current_active_user, require_org_roles
from ..accounts import models as accounts_models
from . import models as training_models
from . import schemas as training_schemas
from . import services

router = APIRouter(prefix="/training", tags=["training"])

EDITOR_ROLES = ("OWNER", "ADMIN")
MANAGER_ROLES = ("OWNER", "ADMIN", "MANAGER")


# ---------------------------------------------------------------------------
# HELPERS
# ---------------------------------------------------------------------------


def _training_or_404(db: Session, training_id: str, user: accounts_models.User) -> training_models.Training:
    try:
        return services.get_training(db, training_id=training_id, organization_id=user.organization_id)
    except services.TrainingNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Training not found")


def _editable_training_or_404(db: Session, training_id: str, user: accounts_models.User) -> training_models.Training:
    try:
        return services.get_editable_training(db, training_id=training_id, user=user)
    except services.TrainingNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Training not found")


def _module_or_404(db: Session, training: training_models.Training, module_id: str) -> training_models.TrainingModule:
    try:
        return services.get_module(db, module_id=module_id, training=training)
    except services.ModuleNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Module not found")


def _application_or_404(
    db: Session,
    application_id: str,
    user: accounts_models.User,
    *,
    as_manager: bool = False,
) -> training_models.RoutineApplication:
    try:
        application = services.get_application(db, application_id=application_id)
    except services.ApplicationNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")
    if as_manager:
        visible = user.is_superuser or application.organization_id == user.organization_id
    else:
        visible = application.user_id == user.id
    if not visible:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")
    return application


# ---------------------------------------------------------------------------
# CATALOG
# ---------------------------------------------------------------------------


@router.get("/trainings", response_model=List[training_schemas.TrainingRead])
def list_trainings(
    include_inactive: bool = Query(False),
    db: Session = Depends(get_read_db),
    current_user: accounts_models.User = Depends(get_current_active_user),
):
    return services.list_trainings(
        db,
        organization_id=current_user.organization_id,
        include_inactive=include_inactive,
    )


@router.post(
    "/trainings",
    response_model=training_schemas.TrainingDetail,
    status_code=status.HTTP_201_CREATED,
)
def create_training(
    payload: training_schemas.TrainingCreate,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(require_org_roles(*EDITOR_ROLES)),
):
    try:
        training = services.create_training(db, user=current_user, data=payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    db.commit()
    return training


@router.get("/trainings/{training_id}", response_model=training_schemas.TrainingDetail)
def get_training(
    training_id: str,
    db: Session = Depends(get_read_db),
    current_user: accounts_models.User = Depends(get_current_active_user),
):
    return _training_or_404(db, training_id, current_user)


@router.patch("/trainings/{training_id}", response_model=training_schemas.TrainingDetail)
def update_training(
    training_id: str,
    payload: training_schemas.TrainingUpdate,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(require_org_roles(*EDITOR_ROLES)),
):
    training = _editable_training_or_404(db, training_id, current_user)
    services.update_training(db, training=training, data=payload, actor_user_id=current_user.id)
    db.commit()
    return training


@router.delete("/trainings/{training_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_training(
    training_id: str,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(require_org_roles(*EDITOR_ROLES)),
):
    training = _editable_training_or_404(db, training_id, current_user)
    services.delete_training(db, training=training, actor_user_id=current_user.id)
    db.commit()


# ---------------------------------------------------------------------------
# MODULES
# ---------------------------------------------------------------------------


@router.post(
    "/trainings/{training_id}/modules",
    response_model=training_schemas.ModuleRead,
    status_code=status.HTTP_201_CREATED,
)
def create_module(
    training_id: str,
    payload: training_schemas.ModuleCreate,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(require_org_roles(*EDITOR_ROLES)),
):
    training = _editable_training_or_404(db, training_id, current_user)
    module = services.create_module(db, training=training, data=payload)
    db.commit()
    return module


@router.patch("/trainings/{training_id}/modules/{module_id}", response_model=training_schemas.ModuleRead)
def update_module(
    training_id: str,
    module_id: str,
    payload: training_schemas.ModuleUpdate,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(require_org_roles(*EDITOR_ROLES)),
):
    training = _editable_training_or_404(db, training_id, current_user)
    module = _module_or_404(db, training, module_id)
    services.update_module(db, module=module, data=payload)
    db.commit()
    return module


@router.delete("/trainings/{training_id}/modules/{module_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_module(
    training_id: str,
    module_id: str,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(require_org_roles(*EDITOR_ROLES)),
):
    training = _editable_training_or_404(db, training_id, current_user)
    services.delete_module(db, module=_module_or_404(db, training, module_id))
    db.commit()


@router.post("/trainings/{training_id}/modules/reorder", response_model=List[training_schemas.ModuleRead])
def reorder_modules(
    training_id: str,
    payload: training_schemas.ModuleReorder,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(require_org_roles(*EDITOR_ROLES)),
):
    training = _editable_training_or_404(db, training_id, current_user)
    try:
        modules = services.reorder_modules(db, training=training, module_ids=payload.module_ids)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    return modules


# ---------------------------------------------------------------------------
# PLAYER
# ---------------------------------------------------------------------------


@router.get("/progress/me", response_model=List[training_schemas.TrainingProgressRead])
def my_progress(
    db: Session = Depends(get_read_db),
    current_user: accounts_models.User = Depends(get_current_active_user),
):
    return services.list_user_progress(db, user_id=current_user.id)


@router.get("/trainings/{training_id}/player", response_model=training_schemas.PlayerState)
def player_state(
    training_id: str,
    db: Session = Depends(get_read_db),
    current_user: accounts_models.User = Depends(get_current_active_user),
):
    training = _training_or_404(db, training_id, current_user)
    return services.get_player_state(db, user=current_user, training=training)


@router.post(
    "/trainings/{training_id}/modules/{module_id}/start",
    response_model=training_schemas.ModuleProgressRead,
)
def start_module(
    training_id: str,
    module_id: str,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(get_current_active_user),
):
    training = _training_or_404(db, training_id, current_user)
    row = services.start_module(db, user=current_user, module=_module_or_404(db, training, module_id))
    db.commit()
    return row


@router.post(
    "/trainings/{training_id}/modules/{module_id}/complete",
    response_model=training_schemas.ModuleCompletionResult,
)
def complete_module(
    training_id: str,
    module_id: str,
    payload: Optional[training_schemas.ModuleCompletion] = None,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(get_current_active_user),
):
    training = _training_or_404(db, training_id, current_user)
    module = _module_or_404(db, training, module_id)
    payload = payload or training_schemas.ModuleCompletion()
    try:
        result = services.complete_module(
            db,
            user=current_user,
            module=module,
            score=payload.score,
            time_spent_seconds=payload.time_spent_seconds,
        )
    except services.ModuleLocked:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Complete the previous module first")
    db.commit()
    return result


@router.put(
    "/trainings/{training_id}/modules/{module_id}/time",
    response_model=training_schemas.ModuleProgressRead,
)
def update_time_spent(
    training_id: str,
    module_id: str,
    payload: training_schemas.TimeSpentUpdate,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(get_current_active_user),
):
    training = _training_or_404(db, training_id, current_user)
    row = services.update_time_spent(
        db,
        user=current_user,
        module=_module_or_404(db, training, module_id),
        time_spent_seconds=payload.time_spent_seconds,
    )
    db.commit()
    return row


# ---------------------------------------------------------------------------
# ASSIGNMENTS
# ---------------------------------------------------------------------------


@router.post("/trainings/{training_id}/assign", response_model=training_schemas.AssignmentResult)
def assign_training(
    training_id: str,
    payload: training_schemas.TrainingAssignment,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    training = _training_or_404(db, training_id, current_user)
    try:
        rows = services.assign_training(
            db,
            training=training,
            organization_id=current_user.organization_id,
            user_ids=payload.user_ids,
            deadline_at=payload.deadline_at,
            assigned_by=current_user,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    return training_schemas.AssignmentResult(assigned=len(rows), progress=rows)


# ---------------------------------------------------------------------------
# ROUTINE APPLICATIONS
# ---------------------------------------------------------------------------


@router.post(
    "/trainings/{training_id}/applications",
    response_model=training_schemas.ApplicationRead,
    status_code=status.HTTP_201_CREATED,
)
def create_application(
    training_id: str,
    payload: training_schemas.ApplicationCreate,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(get_current_active_user),
):
    training = _training_or_404(db, training_id, current_user)
    application = services.create_application(
        db,
        user=current_user,
        module=_module_or_404(db, training, payload.module_id),
        commitment=payload.commitment,
        deadline_at=payload.deadline_at,
    )
    db.commit()
    return application


@router.get("/applications/me", response_model=List[training_schemas.ApplicationRead])
def my_applications(
    db: Session = Depends(get_read_db),
    current_user: accounts_models.User = Depends(get_current_active_user),
):
    return services.list_user_applications(db, user_id=current_user.id)


@router.post("/applications/{application_id}/submit", response_model=training_schemas.ApplicationRead)
def submit_application(
    application_id: str,
    payload: training_schemas.ApplicationSubmit,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(get_current_active_user),
):
    application = _application_or_404(db, application_id, current_user)
    try:
        services.submit_application(db, application=application, data=payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    db.commit()
    return application


@router.get("/applications/team", response_model=List[training_schemas.TeamApplication])
def team_applications(
    training_id: Optional[str] = Query(None),
    status_filter: Optional[training_models.ApplicationStatus] = Query(None, alias="status"),
    db: Session = Depends(get_read_db),
    current_user: accounts_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    return services.list_team_applications(
        db,
        organization_id=current_user.organization_id,
        training_id=training_id,
        status=status_filter,
    )


@router.get("/applications/team/stats", response_model=training_schemas.TeamApplicationStats)
def team_application_stats(
    training_id: Optional[str] = Query(None),
    db: Session = Depends(get_read_db),
    current_user: accounts_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    applications = services.list_team_applications(
        db,
        organization_id=current_user.organization_id,
        training_id=training_id,
    )
    return services.team_application_stats(applications)


@router.post("/applications/{application_id}/feedback", response_model=training_schemas.ApplicationRead)
def provide_feedback(
    application_id: str,
    payload: training_schemas.ApplicationFeedback,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    application = _application_or_404(db, application_id, current_user, as_manager=True)
    services.provide_feedback(db, application=application, feedback=payload.feedback, manager=current_user)
    db.commit()
    return application


@router.post("/applications/{application_id}/viewed", response_model=training_schemas.ApplicationRead)
def mark_viewed(
    application_id: str,
    db: Session = Depends(get_db),
    current_user: accounts_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    application = _application_or_404(db, application_id, current_user, as_manager=True)
    services.mark_viewed(db, application=application)
    db.commit()
    return application
