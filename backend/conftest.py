from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["NOTIFICATIONS_EMAIL_PROVIDER"] = "noop"
os.environ["ARGON2_TIME_COST"] = "1"
os.environ["ARGON2_MEMORY_COST"] = "1024"

import gameia  # noqa: E402,F401  (registers every model on Base.metadata)
from gameia.database import Base, enable_sqlite_savepoints  # noqa: E402
from gameia.apps.accounts import models as account_models  # noqa: E402


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def organization(db_session):
    org = account_models.Organization(name="Acme Corp", slug="acme")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture()
def make_user(db_session):
    """Factory creating a user and an active membership in `organization`."""

    counter = {"n": 0}

    def _make(organization=None, *, role=account_models.OrgRole.MEMBER, team_id=None, **fields):
        counter["n"] += 1
        user = account_models.User(
            email=fields.pop("email", f"player{counter['n']}@example.com"),
            full_name=fields.pop("full_name", f"Player {counter['n']}"),
            hashed_password=fields.pop("hashed_password", "x"),
            organization_id=organization.id if organization else None,
            **fields,
        )
        db_session.add(user)
        db_session.flush()
        if organization is not None:
            db_session.add(
                account_models.OrganizationMember(
                    organization_id=organization.id,
                    user_id=user.id,
                    role=role,
                    team_id=team_id,
                )
            )
        db_session.commit()
        return user

    return _make
