"""
Create (or repair) the platform organization and its superuser.

    SEED_SUPERUSER_EMAIL=admin@example.com SEED_SUPERUSER_PASSWORD=... \
        python -m gameia.scripts.seed_superuser
"""

import os
import sys

from sqlalchemy.orm import Session

from gameia.database import SessionLocal
from gameia.security import get_password_hash
from gameia.apps.accounts.models import Organization, OrganizationMember, OrgRole, User

PLATFORM_ORG_NAME = "Gameia Platform"
PLATFORM_ORG_SLUG = "platform"


def ensure_platform_organization(db: Session) -> Organization:
    org = db.query(Organization).filter(Organization.slug == PLATFORM_ORG_SLUG).first()
    if org:
        return org

    org = Organization(name=PLATFORM_ORG_NAME, slug=PLATFORM_ORG_SLUG, plan="enterprise", is_active=True)
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


def ensure_superuser(db: Session, org: Organization, *, email: str, password: str, full_name: str) -> User:
    email = email.lower().strip()
    user = db.query(User).filter(User.email == email).first()
    if user is None:
        user = User(
            organization_id=org.id,
            email=email,
            full_name=full_name,
            hashed_password=get_password_hash(password),
        )
    user.is_superuser = True
    user.is_active = True
    db.add(user)
    db.flush()

    membership = (
        db.query(OrganizationMember)
        .filter(OrganizationMember.organization_id == org.id, OrganizationMember.user_id == user.id)
        .first()
    )
    if membership is None:
        db.add(OrganizationMember(organization_id=org.id, user_id=user.id, role=OrgRole.OWNER))
    db.commit()
    db.refresh(user)
    return user


def main() -> None:
    email = os.getenv("SEED_SUPERUSER_EMAIL")
    password = os.getenv("SEED_SUPERUSER_PASSWORD")
    if not email or not password:
        sys.exit("SEED_SUPERUSER_EMAIL and SEED_SUPERUSER_PASSWORD are required")

    db = SessionLocal()
    try:
        org = ensure_platform_organization(db)
        user = ensure_superuser(
            db,
            org,
            email=email,
            password=password,
            full_name=os.getenv("SEED_SUPERUSER_NAME", "Platform Admin"),
        )
        print("OK:", user.email, "superuser =", user.is_superuser, "organization =", org.slug)
    finally:
        db.close()


if __name__ == "__main__":
    main()
