# backend/gameia/apps/accounts/router_admin.py

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ...database import get_db
from ...security import require_org_roles, require_superuser
from . import models, schemas, services

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# ORGANIZATIONS (platform superuser)
# ---------------------------------------------------------------------------


@router.post(
    "/organizations",
    response_model=schemas.OrganizationRead,
    status_code=status.HTTP_201_CREATED,
)
def create_organization(
    payload: schemas.OrganizationCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_superuser),
):
    try:
        return services.create_organization(db, payload, actor_user_id=current_user.id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("/organizations", response_model=List[schemas.OrganizationRead])
def list_organizations(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_superuser),
):
    return db.query(models.Organization).order_by(models.Organization.name.asc()).all()


# ---------------------------------------------------------------------------
# USERS (organization admins)
# ---------------------------------------------------------------------------


@router.post(
    "/users",
    response_model=schemas.UserRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user inside the admin's organization",
)
def create_user(
    payload: schemas.UserCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_org_roles("OWNER", "ADMIN")),
):
    if not current_user.is_superuser:
        payload.organization_id = current_user.organization_id
        payload.is_superuser = False
        if payload.role == models.OrgRole.OWNER:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only superusers can create owners")
    try:
        return services.create_user(db, payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("/users", response_model=List[schemas.UserRead])
def list_users(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_org_roles("OWNER", "ADMIN", "MANAGER")),
):
    return (
        db.query(models.User)
        .join(models.OrganizationMember, models.OrganizationMember.user_id == models.User.id)
        .filter(
            models.OrganizationMember.organization_id == current_user.organization_id,
            models.OrganizationMember.is_active.is_(True),
        )
        .order_by(models.User.full_name.asc())
        .all()
    )
