"""
Teams, invites and organization metrics.
"""

from __future__ import annotations

import logging
import math
import os
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.apps.audit import services as audit_services
from gameia.apps.gamification import models as gamification_models
from gameia.utils.identifiers import ensure_utc, generate_code

from . import models, schemas

logger = logging.getLogger(__name__)

PORTAL_BASE_URL = os.getenv("PORTAL_BASE_URL", "http://localhost:5173").rstrip("/")
INVITE_MAX_FAILED_ATTEMPTS = int(os.getenv("INVITE_MAX_FAILED_ATTEMPTS", "5"))
INVITE_RATE_LIMIT_WINDOW_MIN = int(os.getenv("INVITE_RATE_LIMIT_WINDOW_MIN", "15"))
INVITE_CODE_LENGTH = 10

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}

INVITE_ROLES = {
    "member": account_models.OrgRole.MEMBER,
    "admin": account_models.OrgRole.ADMIN,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TeamNotFound(Exception):
    pass


class InviteNotFound(Exception):
    pass


class MemberNotFound(Exception):
    pass


class InviteError(ValueError):
    pass


# ---------------------------------------------------------------------------
# TEAMS
# ---------------------------------------------------------------------------


def get_team(db: Session, *, organization_id: str, team_id: str) -> models.OrgTeam:
    team = (
        db.query(models.OrgTeam)
        .filter(
            models.OrgTeam.id == team_id,
            models.OrgTeam.organization_id == organization_id,
        )
        .first()
    )
    if team is None:
        raise TeamNotFound(team_id)
    return team


def _member(db: Session, *, organization_id: str, user_id: str) -> account_models.OrganizationMember:
    member = (
        db.query(account_models.OrganizationMember)
        .filter(
            account_models.OrganizationMember.organization_id == organization_id,
            account_models.OrganizationMember.user_id == user_id,
            account_models.OrganizationMember.is_active.is_(True),
        )
        .first()
    )
    if member is None:
        raise MemberNotFound(user_id)
    return member


def _validate_team_links(
    db: Session,
    *,
    organization_id: str,
    manager_id: Optional[str],
    parent_team_id: Optional[str],
    team_id: Optional[str] = None,
) -> None:
    if manager_id:
        _member(db, organization_id=organization_id, user_id=manager_id)
    if parent_team_id:
        if parent_team_id == team_id:
            raise ValueError("A team cannot be its own parent")
        get_team(db, organization_id=organization_id, team_id=parent_team_id)


def members_count_map(db: Session, *, organization_id: str) -> Dict[str, int]:
    rows = (
        db.query(account_models.OrganizationMember.team_id, func.count(account_models.OrganizationMember.id))
        .filter(
            account_models.OrganizationMember.organization_id == organization_id,
            account_models.OrganizationMember.team_id.isnot(None),
            account_models.OrganizationMember.is_active.is_(True),
        )
        .group_by(account_models.OrganizationMember.team_id)
        .all()
    )
    return {team_id: int(count) for team_id, count in rows}


def team_to_read(team: models.OrgTeam, members_count: int = 0) -> schemas.TeamRead:
    data = schemas.TeamRead.model_validate(team)
    data.members_count = members_count
    return data


def list_teams(db: Session, *, organization_id: str) -> List[schemas.TeamRead]:
    teams = (
        db.query(models.OrgTeam)
        .filter(models.OrgTeam.organization_id == organization_id)
        .order_by(models.OrgTeam.name.asc())
        .all()
    )
    counts = members_count_map(db, organization_id=organization_id)
    return [team_to_read(team, counts.get(team.id, 0)) for team in teams]


def create_team(
    db: Session,
    *,
    organization_id: str,
    data: schemas.TeamCreate,
    actor_user_id: Optional[str] = None,
) -> models.OrgTeam:
    _validate_team_links(
        db,
        organization_id=organization_id,
        manager_id=data.manager_id,
        parent_team_id=data.parent_team_id,
    )
    team = models.OrgTeam(
        organization_id=organization_id,
        name=data.name.strip(),
        description=data.description,
        manager_id=data.manager_id,
        parent_team_id=data.parent_team_id,
        color=data.color or models.DEFAULT_TEAM_COLOR,
        icon=data.icon or models.DEFAULT_TEAM_ICON,
    )
    db.add(team)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=organization_id,
        actor_user_id=actor_user_id,
        entity_type="org_team",
        entity_id=team.id,
        action="CREATED",
        after={"name": team.name},
    )
    return team


def update_team(
    db: Session,
    *,
    team: models.OrgTeam,
    data: schemas.TeamUpdate,
    actor_user_id: Optional[str] = None,
) -> models.OrgTeam:
    changes = data.model_dump(exclude_unset=True)
    _validate_team_links(
        db,
        organization_id=team.organization_id,
        manager_id=changes.get("manager_id"),
        parent_team_id=changes.get("parent_team_id"),
        team_id=team.id,
    )
    before = {field: getattr(team, field) for field in changes}
    for field, value in changes.items():
        if field in ("color", "icon") and not value:
            continue
        setattr(team, field, value)
    db.add(team)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=team.organization_id,
        actor_user_id=actor_user_id,
        entity_type="org_team",
        entity_id=team.id,
        action="UPDATED",
        before=before,
        after=changes,
    )
    return team


def delete_team(db: Session, *, team: models.OrgTeam, actor_user_id: Optional[str] = None) -> int:
    """Delete a team; its members stay in the organization without a team."""
    detached = (
        db.query(account_models.OrganizationMember)
        .filter(account_models.OrganizationMember.team_id == team.id)
        .update({account_models.OrganizationMember.team_id: None}, synchronize_session=False)
    )
    db.query(models.OrgTeam).filter(models.OrgTeam.parent_team_id == team.id).update(
        {models.OrgTeam.parent_team_id: None}, synchronize_session=False
    )
    audit_services.log_event(
        db,
        organization_id=team.organization_id,
        actor_user_id=actor_user_id,
        entity_type="org_team",
        entity_id=team.id,
        action="DELETED",
        before={"name": team.name, "members": detached},
    )
    db.delete(team)
    db.flush()
    return detached


def assign_member_to_team(
    db: Session,
    *,
    organization_id: str,
    user_id: str,
    team_id: Optional[str],
    actor_user_id: Optional[str] = None,
) -> account_models.OrganizationMember:
    member = _member(db, organization_id=organization_id, user_id=user_id)
    if team_id:
        get_team(db, organization_id=organization_id, team_id=team_id)
    previous = member.team_id
    member.team_id = team_id
    db.add(member)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=organization_id,
        actor_user_id=actor_user_id,
        entity_type="org_member",
        entity_id=member.id,
        action="TEAM_ASSIGNED",
        before={"team_id": previous},
        after={"team_id": team_id},
    )
    return member


# ---------------------------------------------------------------------------
# INVITES
# ---------------------------------------------------------------------------


def get_invite_url(code: str) -> str:
    return f"{PORTAL_BASE_URL}/invite/{code}"


def _new_invite_code(db: Session) -> str:
    for _ in range(5):
        code = generate_code(INVITE_CODE_LENGTH)
        exists = db.query(models.OrgInvite.id).filter(models.OrgInvite.invite_code == code).first()
        if exists is None:
            return code
    raise InviteError("Could not allocate a unique invite code")


def create_invite(
    db: Session,
    *,
    organization_id: str,
    data: schemas.InviteCreate,
    created_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.OrgInvite:
    now = now or _utcnow()
    invite = models.OrgInvite(
        organization_id=organization_id,
        email=str(data.email).lower() if data.email else None,
        invite_code=_new_invite_code(db),
        role=INVITE_ROLES[data.role],
        expires_at=now + timedelta(days=data.expires_in_days),
        created_by=created_by,
        created_at=now,
    )
    db.add(invite)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=organization_id,
        actor_user_id=created_by,
        entity_type="org_invite",
        entity_id=invite.id,
        action="CREATED",
        after={"email": invite.email, "role": data.role, "expires_at": invite.expires_at.isoformat()},
    )
    return invite


def revoke_invite(
    db: Session,
    *,
    organization_id: str,
    invite_id: str,
    actor_user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.OrgInvite:
    invite = (
        db.query(models.OrgInvite)
        .filter(
            models.OrgInvite.id == invite_id,
            models.OrgInvite.organization_id == organization_id,
        )
        .first()
    )
    if invite is None or invite.revoked_at is not None:
        raise InviteNotFound(invite_id)
    if invite.used_at is not None:
        raise InviteError("Invite already used")
    invite.revoked_at = now or _utcnow()
    db.add(invite)
    audit_services.log_event(
        db,
        organization_id=organization_id,
        actor_user_id=actor_user_id,
        entity_type="org_invite",
        entity_id=invite.id,
        action="REVOKED",
    )
    return invite


def invite_to_read(invite: models.OrgInvite, now: datetime) -> schemas.InviteRead:
    return schemas.InviteRead(
        id=invite.id,
        email=invite.email,
        invite_code=invite.invite_code,
        role=account_models.OrgRole(invite.role).value.lower(),
        created_at=invite.created_at,
        expires_at=invite.expires_at,
        used_at=invite.used_at,
        used_by=invite.used_by,
        is_expired=ensure_utc(invite.expires_at) <= now,
        is_used=invite.used_at is not None,
    )


def list_invites(db: Session, *, organization_id: str, now: Optional[datetime] = None) -> List[schemas.InviteRead]:
    """Invites of the organization that were not revoked, newest first."""
    now = now or _utcnow()
    invites = (
        db.query(models.OrgInvite)
        .filter(
            models.OrgInvite.organization_id == organization_id,
            models.OrgInvite.revoked_at.is_(None),
        )
        .order_by(models.OrgInvite.created_at.desc())
        .all()
    )
    return [invite_to_read(invite, now) for invite in invites]


def _rate_limit_state(db: Session, *, user_id: str, now: datetime) -> Optional[int]:
    """Minutes until the user may try again, or None when not limited."""
    window_start = now - timedelta(minutes=INVITE_RATE_LIMIT_WINDOW_MIN)
    failures = (
        db.query(models.InviteAttempt.created_at)
        .filter(
            models.InviteAttempt.user_id == user_id,
            models.InviteAttempt.success.is_(False),
            models.InviteAttempt.created_at >= window_start,
        )
        .order_by(models.InviteAttempt.created_at.asc())
        .all()
    )
    if len(failures) < INVITE_MAX_FAILED_ATTEMPTS:
        return None
    oldest = ensure_utc(failures[0][0])
    remaining = (oldest + timedelta(minutes=INVITE_RATE_LIMIT_WINDOW_MIN) - now).total_seconds() / 60
    return max(1, math.ceil(remaining))


def _record_attempt(
    db: Session,
    *,
    user_id: str,
    code: str,
    client_ip: Optional[str],
    now: datetime,
    error: Optional[str] = None,
) -> None:
    db.add(
        models.InviteAttempt(
            user_id=user_id,
            invite_code=code[:32],
            client_ip=client_ip,
            success=error is None,
            error=error,
            created_at=now,
        )
    )
    db.flush()


def accept_invite(
    db: Session,
    *,
    user: account_models.User,
    code: str,
    client_ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Redeem an invite code for `user`.

    Returns the result payload instead of raising so failed attempts are
    persisted and counted by the rate limit.
    """
    now = now or _utcnow()
    code = (code or "").strip().upper()

    retry_after = _rate_limit_state(db, user_id=user.id, now=now)
    if retry_after is not None:
        logger.warning("Invite accept rate limited", extra={"user_id": user.id, "client_ip": client_ip})
        return {
            "success": False,
            "error": "Too many attempts",
            "rate_limited": True,
            "retry_after_minutes": retry_after,
        }

    def _fail(message: str) -> dict:
        _record_attempt(db, user_id=user.id, code=code, client_ip=client_ip, now=now, error=message)
        return {"success": False, "error": message, "rate_limited": False}

    invite = db.query(models.OrgInvite).filter(models.OrgInvite.invite_code == code).first()
    if invite is None:
        return _fail("Invalid invite code")
    if invite.revoked_at is not None:
        return _fail("Invite revoked")
    if invite.used_at is not None:
        return _fail("Invite already used")
    if ensure_utc(invite.expires_at) <= now:
        return _fail("Invite expired")
    if invite.email and invite.email.lower() != (user.email or "").lower():
        return _fail("Invite issued to another email")

    membership = (
        db.query(account_models.OrganizationMember)
        .filter(
            account_models.OrganizationMember.organization_id == invite.organization_id,
            account_models.OrganizationMember.user_id == user.id,
        )
        .first()
    )
    if membership is not None and membership.is_active:
        return _fail("Already a member of this organization")
    if membership is None:
        membership = account_models.OrganizationMember(
            organization_id=invite.organization_id,
            user_id=user.id,
            role=invite.role,
            joined_at=now,
        )
    else:
        membership.is_active = True
        membership.role = invite.role
        membership.joined_at = now
    db.add(membership)

    invite.used_at = now
    invite.used_by = user.id
    db.add(invite)
    user.organization_id = invite.organization_id
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise InviteError("Membership could not be created")

    _record_attempt(db, user_id=user.id, code=code, client_ip=client_ip, now=now)
    audit_services.log_event(
        db,
        organization_id=invite.organization_id,
        actor_user_id=user.id,
        entity_type="org_invite",
        entity_id=invite.id,
        action="ACCEPTED",
        after={"user_id": user.id, "role": account_models.OrgRole(invite.role).value},
    )
    return {"success": True, "organization_id": invite.organization_id, "rate_limited": False}


# ---------------------------------------------------------------------------
# METRICS
# ---------------------------------------------------------------------------


def _period_start(period: str, now: datetime) -> datetime:
    if period not in PERIOD_DAYS:
        raise ValueError(f"Unsupported period {period!r}")
    return now - timedelta(days=PERIOD_DAYS[period])


def _active_members_query(db: Session, organization_id: str):
    return db.query(account_models.OrganizationMember).filter(
        account_models.OrganizationMember.organization_id == organization_id,
        account_models.OrganizationMember.is_active.is_(True),
    )


def _active_users_since(db: Session, organization_id: str, since: datetime) -> int:
    return int(
        db.query(func.count(func.distinct(gamification_models.CoreEvent.user_id)))
        .filter(
            gamification_models.CoreEvent.organization_id == organization_id,
            gamification_models.CoreEvent.created_at >= since,
        )
        .scalar()
        or 0
    )


def get_engagement_metrics(
    db: Session,
    *,
    organization_id: str,
    period: str = "30d",
    now: Optional[datetime] = None,
) -> dict:
    now = now or _utcnow()
    since = _period_start(period, now)
    members = _active_members_query(db, organization_id).all()
    streaks = [member.user.current_streak or 0 for member in members if member.user is not None]
    total_activities = (
        db.query(func.count(gamification_models.CoreEvent.id))
        .filter(
            gamification_models.CoreEvent.organization_id == organization_id,
            gamification_models.CoreEvent.created_at >= since,
        )
        .scalar()
    )
    return {
        "total_members": len(members),
        "dau": _active_users_since(db, organization_id, now - timedelta(days=1)),
        "wau": _active_users_since(db, organization_id, now - timedelta(days=7)),
        "mau": _active_users_since(db, organization_id, now - timedelta(days=30)),
        "avg_streak": round(sum(streaks) / len(streaks), 1) if streaks else 0.0,
        "total_activities": int(total_activities or 0),
        "period": period,
    }


def get_learning_metrics(
    db: Session,
    *,
    organization_id: str,
    period: str = "30d",
    now: Optional[datetime] = None,
) -> dict:
    now = now or _utcnow()
    since = _period_start(period, now)
    event = gamification_models.CoreEvent
    total_xp, total_coins, learners = (
        db.query(
            func.coalesce(func.sum(event.xp_earned), 0),
            func.coalesce(func.sum(event.coins_earned), 0),
            func.count(func.distinct(event.user_id)),
        )
        .filter(event.organization_id == organization_id, event.created_at >= since)
        .one()
    )
    sources = (
        db.query(event.event_type, func.coalesce(func.sum(event.xp_earned), 0), func.count(event.id))
        .filter(event.organization_id == organization_id, event.created_at >= since)
        .group_by(event.event_type)
        .order_by(func.sum(event.xp_earned).desc())
        .limit(5)
        .all()
    )
    learners = int(learners or 0)
    return {
        "total_xp": int(total_xp),
        "avg_xp_per_user": round(int(total_xp) / learners, 1) if learners else 0.0,
        "total_coins": int(total_coins),
        "active_learners": learners,
        "top_sources": [
            {"source": source, "total_xp": int(xp), "count": int(count)} for source, xp, count in sources
        ],
        "period": period,
    }


def get_members_with_metrics(
    db: Session,
    *,
    organization_id: str,
    now: Optional[datetime] = None,
) -> List[dict]:
    now = now or _utcnow()
    week_ago = now - timedelta(days=7)
    members = _active_members_query(db, organization_id).all()
    teams = {
        team.id: team.name
        for team in db.query(models.OrgTeam).filter(models.OrgTeam.organization_id == organization_id).all()
    }
    activity = dict(
        db.query(gamification_models.CoreEvent.user_id, func.count(gamification_models.CoreEvent.id))
        .filter(
            gamification_models.CoreEvent.organization_id == organization_id,
            gamification_models.CoreEvent.created_at >= week_ago,
        )
        .group_by(gamification_models.CoreEvent.user_id)
        .all()
    )
    rows = []
    for member in members:
        user = member.user
        rows.append(
            {
                "user_id": member.user_id,
                "org_role": account_models.OrgRole(member.role).value,
                "joined_at": member.joined_at,
                "team_id": member.team_id,
                "nickname": user.nickname,
                "full_name": user.full_name,
                "avatar_url": user.avatar_url,
                "team_name": teams.get(member.team_id),
                "current_streak": user.current_streak or 0,
                "total_xp": user.xp or 0,
                "activities_week": int(activity.get(member.user_id, 0)),
            }
        )
    rows.sort(key=lambda row: row["total_xp"], reverse=True)
    return rows
