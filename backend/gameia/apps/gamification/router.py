from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.apps.audit import services as audit_services
from gameia.apps.pdi import services as pdi_services
from gameia.database import get_db, get_read_db
from gameia.security import get_current_active_user, get_membership, require_org_roles

from . import insignias, levels, models, schemas, services

router = APIRouter(prefix="/gamification", tags=["gamification"])


def _insignia_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Insignia not found")


# ---------------------------------------------------------------------------
# WALLET / LEVELS
# ---------------------------------------------------------------------------


@router.get("/me", response_model=schemas.Wallet, summary="XP, coins, streak and level card of the current user")
def my_wallet(current_user: account_models.User = Depends(get_current_active_user)):
    return schemas.Wallet(
        xp=current_user.xp or 0,
        coins=current_user.coins or 0,
        level=current_user.level or 1,
        current_streak=current_user.current_streak or 0,
        longest_streak=current_user.longest_streak or 0,
        level_info=levels.get_level_info(current_user.level or 1, current_user.xp or 0),
    )


@router.get("/levels/{level}", response_model=schemas.LevelInfo)
def level_info(level: int, xp: int = 0):
    if level < 1 or level > levels.MAX_LEVEL:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Level must be between 1 and 100")
    return levels.get_level_info(level, xp)


# ---------------------------------------------------------------------------
# CORE EVENTS
# ---------------------------------------------------------------------------


@router.post(
    "/events/game-completed",
    response_model=schemas.CoreEventRead,
    status_code=status.HTTP_201_CREATED,
)
def record_game_completed(
    payload: schemas.GameCompletedCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    event = services.record_game_completed(
        db,
        user=current_user,
        game_type=payload.game_type,
        score=payload.score,
        skill_ids=payload.skill_ids,
        metadata=payload.metadata,
    )
    pdi_services.propagate_progress(
        db,
        user_id=current_user.id,
        organization_id=current_user.organization_id,
        event_type="game_completed",
        source_type="game",
        source_id=payload.game_type,
        source_name=payload.game_type,
        score=payload.score,
        skill_ids=payload.skill_ids or [],
    )
    db.commit()
    return event


@router.post(
    "/events/test-completed",
    response_model=schemas.CoreEventRead,
    status_code=status.HTTP_201_CREATED,
)
def record_test_completed(
    payload: schemas.ScoredTestCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    event = services.record_test_completed(
        db,
        user=current_user,
        test_id=payload.test_id,
        score=payload.score,
        target_score=payload.target_score,
        xp_earned=payload.xp_earned,
        skill_ids=payload.skill_ids,
    )
    db.commit()
    return event


@router.post(
    "/events",
    response_model=schemas.CoreEventRead,
    status_code=status.HTTP_201_CREATED,
    summary="Record a core event for a member (manual award)",
)
def record_event(
    payload: schemas.CoreEventCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_org_roles("OWNER", "ADMIN", "MANAGER")),
):
    member = get_membership(db, organization_id=current_user.organization_id, user_id=payload.user_id)
    if member is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
    event = services.record_core_event(
        db,
        user=member.user,
        event_type=payload.event_type,
        team_id=payload.team_id,
        organization_id=current_user.organization_id,
        skill_ids=payload.skill_ids,
        xp_earned=payload.xp_earned,
        coins_earned=payload.coins_earned,
        score=payload.score,
        metadata={**payload.metadata, "awarded_by": current_user.id},
    )
    audit_services.log_event(
        db,
        organization_id=current_user.organization_id,
        actor_user_id=current_user.id,
        entity_type="core_event",
        entity_id=event.id,
        action="AWARDED",
        after={"user_id": payload.user_id, "xp": payload.xp_earned, "coins": payload.coins_earned},
    )
    db.commit()
    return event


@router.get("/events/stats", response_model=List[schemas.UserEventStat])
def my_event_stats(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.get_user_event_stats(db, user_id=current_user.id, days=days)


@router.get("/teams/{team_id}/stats", response_model=List[schemas.TeamEventStat])
def team_event_stats(
    team_id: str,
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_org_roles("OWNER", "ADMIN", "MANAGER")),
):
    from gameia.apps.organizations import models as org_models

    team = (
        db.query(org_models.OrgTeam)
        .filter(
            org_models.OrgTeam.id == team_id,
            org_models.OrgTeam.organization_id == current_user.organization_id,
        )
        .first()
    )
    if team is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
    return services.get_team_event_stats(db, team_id=team_id, days=days)


# ---------------------------------------------------------------------------
# INSIGNIAS
# ---------------------------------------------------------------------------


@router.get("/insignias", response_model=List[schemas.InsigniaWithStatus])
def list_insignias(
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return insignias.get_user_insignias_progress(db, user=current_user)


@router.get("/insignias/stats", response_model=schemas.UserInsigniasStats)
def insignia_stats(
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    items = insignias.get_user_insignias_progress(db, user=current_user)
    return insignias.get_user_insignias_stats(items)


@router.post("/insignias/check-and-unlock", response_model=schemas.UnlockResult)
def check_and_unlock(
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    result = insignias.check_and_unlock_eligible_insignias(db, user=current_user)
    db.commit()
    return result


@router.get("/insignias/{insignia_id}/check", response_model=schemas.CriteriaCheckResult)
def check_insignia(
    insignia_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        insignia = insignias.get_visible_insignia(
            db, insignia_id=insignia_id, organization_id=current_user.organization_id
        )
    except insignias.InsigniaNotFound:
        raise _insignia_not_found()
    return insignias.check_insignia_criteria(db, user=current_user, insignia=insignia)


@router.post("/insignias/{insignia_id}/toggle-display", response_model=schemas.UserInsigniaRead)
def toggle_display(
    insignia_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        row = insignias.toggle_display(db, user=current_user, insignia_id=insignia_id)
    except insignias.InsigniaNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Insignia not unlocked")
    db.commit()
    return row


@router.post(
    "/insignias",
    response_model=schemas.InsigniaRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create an organization insignia with its criteria",
)
def create_insignia(
    payload: schemas.InsigniaCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_org_roles("OWNER", "ADMIN")),
):
    try:
        insignia = insignias.create_insignia(db, organization_id=current_user.organization_id, data=payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    audit_services.log_event(
        db,
        organization_id=current_user.organization_id,
        actor_user_id=current_user.id,
        entity_type="insignia",
        entity_id=insignia.id,
        action="CREATED",
        after={"insignia_key": insignia.insignia_key},
    )
    db.commit()
    return insignia


@router.patch("/insignias/{insignia_id}", response_model=schemas.InsigniaRead)
def update_insignia(
    insignia_id: str,
    payload: schemas.InsigniaUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_org_roles("OWNER", "ADMIN")),
):
    insignia = (
        db.query(models.Insignia)
        .filter(
            models.Insignia.id == insignia_id,
            models.Insignia.organization_id == current_user.organization_id,
        )
        .first()
    )
    if insignia is None:
        raise _insignia_not_found()
    insignias.update_insignia(db, insignia=insignia, data=payload)
    audit_services.log_event(
        db,
        organization_id=current_user.organization_id,
        actor_user_id=current_user.id,
        entity_type="insignia",
        entity_id=insignia.id,
        action="UPDATED",
        after=payload.model_dump(exclude_unset=True, exclude={"criteria"}),
    )
    db.commit()
    return insignia
