from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from gameia.apps.accounts import models as account_models
from gameia.apps.notifications import models as notification_models
from gameia.apps.training import models as training_models
from gameia.apps.training import router as training_router
from gameia.apps.training import schemas as training_schemas
from gameia.apps.training import services as training_services

NOW = datetime(2030, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def module(db_session, organization):
    training = training_models.Training(
        organization_id=organization.id, training_key="feedback-book", name="The feedback book"
    )
    db_session.add(training)
    db_session.flush()
    module = training_services.create_module(
        db_session,
        training=training,
        data=training_schemas.ModuleCreate(
            module_key="apply",
            name="Apply the SBI model",
            step_type=training_models.StepType.ROUTINE_APPLICATION,
            application_deadline_days=5,
        ),
    )
    db_session.commit()
    return module


def _evidence():
    return training_schemas.ApplicationSubmit(evidence_type="text", evidence_content="Gave feedback to Ana")


def test_application_schedules_deadline_alerts(db_session, organization, make_user, module):
    learner = make_user(organization)

    application = training_services.create_application(
        db_session, user=learner, module=module, commitment="Use SBI on Monday", now=NOW
    )

    assert application.status == training_models.ApplicationStatus.IN_PROGRESS
    assert application.deadline_at == NOW + timedelta(days=5)
    alerts = db_session.query(notification_models.ApplicationAlert).filter_by(application_id=application.id).all()
    assert sorted(a.alert_type for a in alerts) == ["overdue", "reminder_1d", "reminder_3d"]

    again = training_services.create_application(db_session, user=learner, module=module, now=NOW)
    assert again.id == application.id


def test_late_submission_is_flagged(db_session, organization, make_user, module):
    learner = make_user(organization)
    application = training_services.create_application(db_session, user=learner, module=module, now=NOW)

    training_services.submit_application(
        db_session, application=application, data=_evidence(), now=NOW + timedelta(days=6)
    )

    assert application.status == training_models.ApplicationStatus.COMPLETED
    assert application.is_late is True
    assert application.evidence_content == "Gave feedback to Ana"
    with pytest.raises(ValueError):
        training_services.submit_application(db_session, application=application, data=_evidence())


def test_team_listing_stats_and_feedback(db_session, organization, make_user, module):
    manager = make_user(organization, role=account_models.OrgRole.MANAGER)
    late = make_user(organization, full_name="Late Larry")
    pending = make_user(organization, full_name="Pending Pam")
    late_app = training_services.create_application(db_session, user=late, module=module, now=NOW)
    training_services.submit_application(
        db_session, application=late_app, data=_evidence(), now=NOW + timedelta(days=7)
    )
    training_services.create_application(
        db_session, user=pending, module=module, now=NOW + timedelta(hours=1)
    )
    db_session.commit()

    rows = training_router.team_applications(
        training_id=None, status_filter=None, db=db_session, current_user=manager
    )
    assert [r.user_name for r in rows] == ["Pending Pam", "Late Larry"]
    assert rows[1].module_name == "Apply the SBI model"
    assert rows[1].training_name == "The feedback book"

    completed_only = training_services.list_team_applications(
        db_session, organization_id=organization.id, status=training_models.ApplicationStatus.COMPLETED
    )
    assert [r.id for r in completed_only] == [late_app.id]

    stats = training_router.team_application_stats(training_id=None, db=db_session, current_user=manager)
    assert stats.total_applications == 2
    assert stats.completed == 1
    assert stats.in_progress == 1
    assert stats.completed_late == 1
    assert stats.on_time_rate == 0
    assert stats.participation_rate == 50

    training_router.provide_feedback(
        late_app.id,
        training_schemas.ApplicationFeedback(feedback="Great example"),
        db=db_session,
        current_user=manager,
    )
    assert late_app.manager_feedback == "Great example"
    assert late_app.manager_viewed_at is not None
    note = db_session.query(notification_models.Notification).filter_by(user_id=late.id).one()
    assert "Apply the SBI model" in note.message


def test_learners_cannot_submit_for_others(db_session, organization, make_user, module):
    owner = make_user(organization)
    intruder = make_user(organization)
    application = training_services.create_application(db_session, user=owner, module=module, now=NOW)
    db_session.commit()

    with pytest.raises(HTTPException) as exc:
        training_router.submit_application(
            application.id, _evidence(), db=db_session, current_user=intruder
        )
    assert exc.value.status_code == 404
