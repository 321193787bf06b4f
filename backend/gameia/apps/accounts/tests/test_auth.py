from __future__ import annotations

import pytest
from fastapi import HTTPException

from gameia.apps.accounts import models as account_models
from gameia.apps.accounts import router_public
from gameia.apps.accounts import schemas as account_schemas
from gameia.apps.accounts import services as account_services
from gameia.security import decode_user_id, get_current_user, require_org_roles


def _create_player(db, organization=None, **overrides):
    data = {
        "email": "Player.One@Example.com",
        "full_name": "Player One",
        "password": "s3cret-pass",
        "organization_id": organization.id if organization else None,
    }
    data.update(overrides)
    return account_services.create_user(db, account_schemas.UserCreate(**data))


def test_create_user_normalises_email_and_creates_membership(db_session, organization):
    user = _create_player(db_session, organization, role=account_models.OrgRole.MANAGER)

    assert user.email == "player.one@example.com"
    assert user.hashed_password != "s3cret-pass"
    membership = account_services.get_membership(
        db_session, organization_id=organization.id, user_id=user.id
    )
    assert membership.role == account_models.OrgRole.MANAGER

    with pytest.raises(ValueError):
        _create_player(db_session, organization, email="player.one@example.com")


def test_weak_password_rejected(db_session):
    with pytest.raises(ValueError):
        _create_player(db_session, password="short")
    with pytest.raises(ValueError):
        _create_player(db_session, password="onlyletters")


def test_login_issues_token_for_current_user(db_session, organization):
    user = _create_player(db_session, organization)

    token = router_public.login(
        account_schemas.LoginRequest(email="PLAYER.ONE@example.com", password="s3cret-pass"),
        db=db_session,
    )

    assert token.token_type == "bearer"
    assert token.user.id == user.id
    assert decode_user_id(token.access_token) == user.id
    assert get_current_user(token=token.access_token, db=db_session).id == user.id


def test_login_errors(db_session):
    user = _create_player(db_session)

    with pytest.raises(HTTPException) as exc:
        router_public.login(
            account_schemas.LoginRequest(email=user.email, password="wrong-pass1"), db=db_session
        )
    assert exc.value.status_code == 401

    user.is_active = False
    db_session.commit()
    with pytest.raises(HTTPException) as exc:
        router_public.login(
            account_schemas.LoginRequest(email=user.email, password="s3cret-pass"), db=db_session
        )
    assert exc.value.status_code == 400


def test_invalid_token_is_rejected(db_session):
    with pytest.raises(HTTPException) as exc:
        get_current_user(token="not-a-jwt", db=db_session)
    assert exc.value.status_code == 401


def test_role_dependency(db_session, organization, make_user):
    member = make_user(organization)
    owner = make_user(organization, role=account_models.OrgRole.OWNER)
    superuser = make_user(None, is_superuser=True)
    only_admins = require_org_roles("OWNER", "ADMIN")

    assert only_admins(current_user=owner, db=db_session) is owner
    assert only_admins(current_user=superuser, db=db_session) is superuser
    with pytest.raises(HTTPException) as exc:
        only_admins(current_user=member, db=db_session)
    assert exc.value.status_code == 403


def test_create_organization_with_owner(db_session):
    founder = _create_player(db_session)

    org = account_services.create_organization(
        db_session,
        account_schemas.OrganizationCreate(name="Globex", slug="globex", owner_user_id=founder.id),
    )

    assert founder.organization_id == org.id
    membership = account_services.get_membership(db_session, organization_id=org.id, user_id=founder.id)
    assert membership.role == account_models.OrgRole.OWNER
    with pytest.raises(ValueError):
        account_services.create_organization(
            db_session, account_schemas.OrganizationCreate(name="Globex 2", slug="globex")
        )


def test_me_includes_level_card(db_session, organization, make_user):
    user = make_user(organization, xp=250, level=3)

    profile = router_public.read_me(db=db_session, current_user=user)

    assert profile.level_info.xp_for_next == 400
    assert profile.level_info.progress == 50
    assert [m.organization_id for m in profile.memberships] == [organization.id]
