from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from gameia.apps.accounts import models as account_models
from gameia.apps.gamification import services as gamification_services
from gameia.apps.organizations import models as org_models
from gameia.apps.organizations import router as org_router
from gameia.apps.organizations import schemas as org_schemas
from gameia.apps.organizations import services as org_services


def _request(client_host: str = "10.0.0.9") -> Request:
    return Request(
        {
            "type": "http",
            "headers": [],
            "client": (client_host, 4242),
            "method": "POST",
            "path": "/organizations/invites/accept",
        }
    )


def test_teams_listed_by_name_with_member_counts(db_session, organization, make_user):
    admin = make_user(organization, role=account_models.OrgRole.ADMIN)
    sales = org_services.create_team(
        db_session, organization_id=organization.id, data=org_schemas.TeamCreate(name="Sales")
    )
    org_services.create_team(
        db_session, organization_id=organization.id, data=org_schemas.TeamCreate(name="Engineering", color="#000000")
    )
    db_session.commit()
    make_user(organization, team_id=sales.id)
    make_user(organization, team_id=sales.id)

    teams = org_services.list_teams(db_session, organization_id=organization.id)

    assert [team.name for team in teams] == ["Engineering", "Sales"]
    assert teams[0].color == "#000000"
    assert teams[1].color == "#6366f1"
    assert teams[1].icon == "👥"
    assert teams[1].members_count == 2
    assert admin.id


def test_delete_team_detaches_members(db_session, organization, make_user):
    team = org_services.create_team(
        db_session, organization_id=organization.id, data=org_schemas.TeamCreate(name="Ops")
    )
    db_session.commit()
    member = make_user(organization, team_id=team.id)

    detached = org_services.delete_team(db_session, team=team)
    db_session.commit()

    assert detached == 1
    membership = (
        db_session.query(account_models.OrganizationMember).filter_by(user_id=member.id).one()
    )
    db_session.refresh(membership)
    assert membership.team_id is None
    assert db_session.query(org_models.OrgTeam).count() == 0


def test_assign_member_rejects_foreign_team(db_session, organization, make_user):
    other = account_models.Organization(name="Other", slug="other-org")
    db_session.add(other)
    db_session.commit()
    foreign_team = org_models.OrgTeam(organization_id=other.id, name="Foreign")
    db_session.add(foreign_team)
    db_session.commit()
    manager = make_user(organization, role=account_models.OrgRole.MANAGER)
    member = make_user(organization)

    with pytest.raises(HTTPException) as exc:
        org_router.assign_member(
            org_schemas.TeamAssignment(user_id=member.id, team_id=foreign_team.id),
            db=db_session,
            current_user=manager,
        )
    assert exc.value.status_code == 404


def test_invite_lifecycle(db_session, organization, make_user):
    admin = make_user(organization, role=account_models.OrgRole.ADMIN)
    created = org_router.create_invite(
        org_schemas.InviteCreate(email="new.hire@example.com", role="admin"),
        db=db_session,
        current_user=admin,
    )
    assert created.url.endswith(f"/invite/{created.code}")

    newcomer = make_user(None, email="new.hire@example.com")
    result = org_router.accept_invite(
        org_schemas.InviteAccept(code=created.code.lower()),
        request=_request(),
        db=db_session,
        current_user=newcomer,
    )

    assert result["success"] is True
    assert newcomer.organization_id == organization.id
    membership = (
        db_session.query(account_models.OrganizationMember)
        .filter_by(organization_id=organization.id, user_id=newcomer.id)
        .one()
    )
    assert membership.role == account_models.OrgRole.ADMIN

    listed = org_services.list_invites(db_session, organization_id=organization.id)
    assert listed[0].is_used is True
    assert listed[0].role == "admin"

    again = org_services.accept_invite(db_session, user=newcomer, code=created.code)
    assert again == {"success": False, "error": "Invite already used", "rate_limited": False}


def test_expired_and_revoked_invites_are_refused(db_session, organization, make_user):
    now = datetime.now(timezone.utc)
    admin = make_user(organization, role=account_models.OrgRole.ADMIN)
    old = org_services.create_invite(
        db_session,
        organization_id=organization.id,
        data=org_schemas.InviteCreate(expires_in_days=1),
        created_by=admin.id,
        now=now - timedelta(days=3),
    )
    revoked = org_services.create_invite(
        db_session, organization_id=organization.id, data=org_schemas.InviteCreate()
    )
    org_services.revoke_invite(db_session, organization_id=organization.id, invite_id=revoked.id)
    db_session.commit()
    player = make_user(None)

    assert org_services.accept_invite(db_session, user=player, code=old.invite_code)["error"] == "Invite expired"
    assert org_services.accept_invite(db_session, user=player, code=revoked.invite_code)["error"] == "Invite revoked"
    assert [invite.id for invite in org_services.list_invites(db_session, organization_id=organization.id)] == [old.id]


def test_accept_is_rate_limited_after_repeated_failures(db_session, organization, make_user):
    player = make_user(None)
    now = datetime.now(timezone.utc)
    for minute in range(org_services.INVITE_MAX_FAILED_ATTEMPTS):
        result = org_services.accept_invite(
            db_session, user=player, code="NOPE", now=now - timedelta(minutes=10 - minute)
        )
        assert result["rate_limited"] is False
    db_session.commit()

    limited = org_services.accept_invite(db_session, user=player, code="NOPE", now=now)
    assert limited["rate_limited"] is True
    assert limited["retry_after_minutes"] == 5

    with pytest.raises(HTTPException) as exc:
        org_router.accept_invite(
            org_schemas.InviteAccept(code="NOPE"),
            request=_request(),
            db=db_session,
            current_user=player,
        )
    assert exc.value.status_code == 429

    later = org_services.accept_invite(db_session, user=player, code="NOPE", now=now + timedelta(minutes=30))
    assert later["rate_limited"] is False


def test_engagement_and_learning_metrics(db_session, organization, make_user):
    active = make_user(organization)
    idle = make_user(organization)
    gamification_services.record_game_completed(db_session, user=active, game_type="quiz", score=50)
    gamification_services.record_training_completed(
        db_session, user=active, training_id="tr", xp_earned=100, coins_earned=10
    )
    db_session.commit()

    engagement = org_services.get_engagement_metrics(db_session, organization_id=organization.id, period="7d")
    assert engagement["total_members"] == 2
    assert engagement["dau"] == 1
    assert engagement["mau"] == 1
    assert engagement["total_activities"] == 2
    assert engagement["avg_streak"] == 0.5

    learning = org_services.get_learning_metrics(db_session, organization_id=organization.id)
    assert learning["total_xp"] == 115
    assert learning["active_learners"] == 1
    assert learning["avg_xp_per_user"] == 115.0
    assert learning["top_sources"][0] == {"source": "TRAINING_COMPLETED", "total_xp": 100, "count": 1}

    members = org_services.get_members_with_metrics(db_session, organization_id=organization.id)
    assert [row["user_id"] for row in members] == [active.id, idle.id]
    assert members[0]["activities_week"] == 2

    with pytest.raises(ValueError):
        org_services.get_engagement_metrics(db_session, organization_id=organization.id, period="1y")
