from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.database import get_db, get_read_db
from gameia.security import get_current_active_user, require_org_roles

from . import schemas, services

router = APIRouter(prefix="/organizations", tags=["organizations"])

ADMIN_ROLES = ("OWNER", "ADMIN")
MANAGER_ROLES = ("OWNER", "ADMIN", "MANAGER")


def _client_ip(request: Request) -> str | None:
    try:
        return request.client.host if request.client else None
    except Exception:
        return None


# ---------------------------------------------------------------------------
# TEAMS
# ---------------------------------------------------------------------------


@router.get("/teams", response_model=List[schemas.TeamRead])
def list_teams(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    return services.list_teams(db, organization_id=current_user.organization_id)


@router.post("/teams", response_model=schemas.TeamRead, status_code=status.HTTP_201_CREATED)
def create_team(
    payload: schemas.TeamCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_org_roles(*ADMIN_ROLES)),
):
    try:
        team = services.create_team(
            db,
            organization_id=current_user.organization_id,
            data=payload,
            actor_user_id=current_user.id,
        )
    except services.MemberNotFound:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Manager is not a member")
    except services.TeamNotFound:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Parent team not found")
    db.commit()
    return services.team_to_read(team)


@router.patch("/teams/{team_id}", response_model=schemas.TeamRead)
def update_team(
    team_id: str,
    payload: schemas.TeamUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_org_roles(*ADMIN_ROLES)),
):
    try:
        team = services.get_team(db, organization_id=current_user.organization_id, team_id=team_id)
    except services.TeamNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
    try:
        services.update_team(db, team=team, data=payload, actor_user_id=current_user.id)
    except services.MemberNotFound:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Manager is not a member")
    except services.TeamNotFound:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Parent team not found")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    counts = services.members_count_map(db, organization_id=current_user.organization_id)
    return services.team_to_read(team, counts.get(team.id, 0))


@router.delete("/teams/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_team(
    team_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_org_roles(*ADMIN_ROLES)),
):
    try:
        team = services.get_team(db, organization_id=current_user.organization_id, team_id=team_id)
    except services.TeamNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
    services.delete_team(db, team=team, actor_user_id=current_user.id)
    db.commit()


@router.post("/teams/assign", summary="Move a member to a team (team_id null to unassign)")
def assign_member(
    payload: schemas.TeamAssignment,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    try:
        member = services.assign_member_to_team(
            db,
            organization_id=current_user.organization_id,
            user_id=payload.user_id,
            team_id=payload.team_id,
            actor_user_id=current_user.id,
        )
    except services.MemberNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
    except services.TeamNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
    db.commit()
    return {"user_id": member.user_id, "team_id": member.team_id}


# ---------------------------------------------------------------------------
# INVITES
# ---------------------------------------------------------------------------


@router.get("/invites", response_model=List[schemas.InviteRead])
def list_invites(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_org_roles(*ADMIN_ROLES)),
):
    return services.list_invites(db, organization_id=current_user.organization_id)


@router.post("/invites", response_model=schemas.InviteCreated, status_code=status.HTTP_201_CREATED)
def create_invite(
    payload: schemas.InviteCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_org_roles(*ADMIN_ROLES)),
):
    try:
        invite = services.create_invite(
            db,
            organization_id=current_user.organization_id,
            data=payload,
            created_by=current_user.id,
        )
    except services.InviteError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    db.commit()
    return schemas.InviteCreated(
        id=invite.id,
        code=invite.invite_code,
        url=services.get_invite_url(invite.invite_code),
        expires_at=invite.expires_at,
    )


@router.delete("/invites/{invite_id}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_invite(
    invite_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_org_roles(*ADMIN_ROLES)),
):
    try:
        services.revoke_invite(
            db,
            organization_id=current_user.organization_id,
            invite_id=invite_id,
            actor_user_id=current_user.id,
        )
    except services.InviteNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invite not found")
    except services.InviteError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    db.commit()


@router.post("/invites/accept", response_model=schemas.InviteAcceptResult)
def accept_invite(
    payload: schemas.InviteAccept,
    request: Request,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        result = services.accept_invite(
            db,
            user=current_user,
            code=payload.code,
            client_ip=_client_ip(request),
        )
    except services.InviteError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    db.commit()
    if result.get("rate_limited"):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=result,
            headers={"Retry-After": str(result["retry_after_minutes"] * 60)},
        )
    return result


# ---------------------------------------------------------------------------
# METRICS
# ---------------------------------------------------------------------------


@router.get("/metrics/engagement", response_model=schemas.EngagementMetrics)
def engagement_metrics(
    period: schemas.MetricPeriod = Query("30d"),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    return services.get_engagement_metrics(db, organization_id=current_user.organization_id, period=period)


@router.get("/metrics/learning", response_model=schemas.LearningMetrics)
def learning_metrics(
    period: schemas.MetricPeriod = Query("30d"),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    return services.get_learning_metrics(db, organization_id=current_user.organization_id, period=period)


@router.get("/metrics/members", response_model=List[schemas.MemberWithMetrics])
def members_with_metrics(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    return services.get_members_with_metrics(db, organization_id=current_user.organization_id)
