# backend/gameia/apps/accounts/router_public.py

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ...database import get_db
from ...security import get_current_active_user
from ..gamification import levels
from ..gamification.schemas import LevelInfo
from . import models, schemas, services

router = APIRouter(prefix="/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# LOGIN
# ---------------------------------------------------------------------------


@router.post(
    "/login",
    response_model=schemas.Token,
    summary="Login with email and password",
)
def login(
    payload: schemas.LoginRequest,
    db: Session = Depends(get_db),
):
    try:
        user = services.authenticate_user(db, email=payload.email, password=payload.password)
    except services.InactiveUserError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive user")
    except services.AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc) or "Incorrect email or password.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token, expires_in = services.issue_access_token_for_user(user)
    return schemas.Token(access_token=token, expires_in=expires_in, user=user)


# ---------------------------------------------------------------------------
# CURRENT USER
# ---------------------------------------------------------------------------


@router.get("/me", response_model=schemas.UserProfile, summary="Current user with level card and memberships")
def read_me(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user),
):
    profile = schemas.UserRead.model_validate(current_user).model_dump()
    return schemas.UserProfile(
        **profile,
        level_info=levels.get_level_info(current_user.level or 1, current_user.xp or 0),
        memberships=services.list_memberships(db, user_id=current_user.id),
    )


@router.patch("/me", response_model=schemas.UserRead)
def update_me(
    payload: schemas.UserUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user),
):
    return services.update_profile(db, user=current_user, data=payload)


@router.get("/me/level", response_model=LevelInfo)
def read_my_level(current_user: models.User = Depends(get_current_active_user)):
    return levels.get_level_info(current_user.level or 1, current_user.xp or 0)


@router.get("/me/organizations", response_model=List[schemas.MembershipRead])
def my_organizations(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user),
):
    return services.list_memberships(db, user_id=current_user.id)


@router.post("/me/organization", response_model=schemas.UserRead, summary="Switch the active organization")
def switch_organization(
    payload: schemas.SwitchOrganization,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user),
):
    try:
        return services.switch_organization(db, user=current_user, organization_id=payload.organization_id)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
