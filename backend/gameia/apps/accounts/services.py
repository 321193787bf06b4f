# backend/gameia/apps/accounts/services.py

from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ...security import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    create_access_token,
    get_membership,
    get_password_hash,
    verify_password,
)
from ..audit import services as audit_services
from . import models, schemas

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = int(os.getenv("MIN_PASSWORD_LENGTH", "8"))

__all__ = [
    "AuthenticationError",
    "InactiveUserError",
    "authenticate_user",
    "issue_access_token_for_user",
    "create_user",
    "create_organization",
    "get_membership",
]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AuthenticationError(Exception):
    """Raised when login credentials are invalid."""


class InactiveUserError(AuthenticationError):
    """Raised when the credentials are right but the account is disabled."""


# ---------------------------------------------------------------------------
# Normalisation helpers
# ---------------------------------------------------------------------------


def _normalise_email(value: str) -> str:
    return value.strip().lower()


def _validate_password_strength(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
        )
    if not any(ch.isdigit() for ch in password) or not any(ch.isalpha() for ch in password):
        raise ValueError("Password must include letters and numbers.")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_user_by_email(db: Session, *, email: str) -> Optional[models.User]:
    return (
        db.query(models.User)
        .filter(models.User.email == _normalise_email(email))
        .first()
    )


def list_memberships(db: Session, *, user_id: str) -> List[models.OrganizationMember]:
    return (
        db.query(models.OrganizationMember)
        .filter(
            models.OrganizationMember.user_id == user_id,
            models.OrganizationMember.is_active.is_(True),
        )
        .order_by(models.OrganizationMember.joined_at.asc())
        .all()
    )


# ---------------------------------------------------------------------------
# Organization / user lifecycle
# ---------------------------------------------------------------------------


def create_organization(
    db: Session,
    data: schemas.OrganizationCreate,
    *,
    actor_user_id: Optional[str] = None,
) -> models.Organization:
    """Create a tenant; with `owner_user_id` the user becomes its OWNER."""
    slug = data.slug.strip().lower()
    if db.query(models.Organization.id).filter(models.Organization.slug == slug).first():
        raise ValueError("An organization with this slug already exists.")

    owner = None
    if data.owner_user_id:
        owner = db.query(models.User).filter(models.User.id == data.owner_user_id).first()
        if owner is None:
            raise ValueError("Owner user not found.")

    org = models.Organization(
        name=data.name.strip(),
        slug=slug,
        plan=data.plan,
        logo_url=data.logo_url,
    )
    db.add(org)
    db.flush()

    if owner is not None:
        db.add(
            models.OrganizationMember(
                organization_id=org.id,
                user_id=owner.id,
                role=models.OrgRole.OWNER,
            )
        )
        if not owner.organization_id:
            owner.organization_id = org.id
            db.add(owner)

    audit_services.log_event(
        db,
        organization_id=org.id,
        actor_user_id=actor_user_id,
        entity_type="organization",
        entity_id=org.id,
        action="CREATED",
        after={"slug": slug, "owner_user_id": data.owner_user_id},
    )
    db.commit()
    db.refresh(org)
    return org


def create_user(db: Session, data: schemas.UserCreate) -> models.User:
    email = _normalise_email(data.email)
    if get_user_by_email(db, email=email):
        raise ValueError("A user with this email already exists.")

    if data.organization_id:
        org = db.query(models.Organization).filter(models.Organization.id == data.organization_id).first()
        if not org:
            raise ValueError("Invalid organization id.")

    _validate_password_strength(data.password)

    user = models.User(
        email=email,
        full_name=data.full_name.strip(),
        nickname=(data.nickname or "").strip() or None,
        avatar_url=data.avatar_url,
        hashed_password=get_password_hash(data.password),
        organization_id=data.organization_id,
        is_active=True,
        is_superuser=data.is_superuser,
    )
    db.add(user)
    db.flush()

    if data.organization_id:
        db.add(
            models.OrganizationMember(
                organization_id=data.organization_id,
                user_id=user.id,
                role=data.role,
            )
        )

    db.commit()
    db.refresh(user)
    return user


def update_profile(db: Session, *, user: models.User, data: schemas.UserUpdate) -> models.User:
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(user, field, value)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def switch_organization(db: Session, *, user: models.User, organization_id: str) -> models.User:
    """Make `organization_id` the user's active tenant."""
    if not user.is_superuser and get_membership(db, organization_id=organization_id, user_id=user.id) is None:
        raise PermissionError("Not a member of this organization.")
    user.organization_id = organization_id
    db.add(user)
    db.commit()
    return user


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def authenticate_user(db: Session, *, email: str, password: str) -> models.User:
    """
    Password login by email.

    Raises AuthenticationError for unknown users and wrong passwords (the
    caller cannot tell which) and InactiveUserError for disabled accounts.
    """
    user = get_user_by_email(db, email=email)
    if user is None or not verify_password(password, user.hashed_password):
        logger.info("Login failed", extra={"email": _normalise_email(email)})
        raise AuthenticationError("Incorrect email or password.")
    if not user.is_active:
        raise InactiveUserError("Inactive user.")
    return user


def issue_access_token_for_user(user: models.User) -> Tuple[str, int]:
    """
    Create a JWT access token for the user.

    Returns (token_string, expires_in_seconds).
    """
    expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(user.id),
        "organization_id": user.organization_id,
        "is_superuser": bool(user.is_superuser),
    }
    access_token = create_access_token(data=payload, expires_delta=expires_delta)
    return access_token, int(ACCESS_TOKEN_EXPIRE_MINUTES * 60)
