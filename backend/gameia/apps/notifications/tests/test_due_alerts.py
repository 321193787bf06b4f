from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from gameia.apps.notifications import alerts as notification_alerts
from gameia.apps.notifications import models as notification_models
from gameia.apps.training import models as training_models
from gameia.apps.training import schemas as training_schemas
from gameia.apps.training import services as training_services

NOW = datetime(2030, 4, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture()
def application(db_session, organization, make_user):
    learner = make_user(organization, email="lia@example.com")
    training = training_models.Training(organization_id=organization.id, training_key="habits", name="Atomic Habits")
    db_session.add(training)
    db_session.flush()
    module = training_services.create_module(
        db_session,
        training=training,
        data=training_schemas.ModuleCreate(
            module_key="stack",
            name="Habit stacking",
            step_type=training_models.StepType.ROUTINE_APPLICATION,
            application_deadline_days=5,
        ),
    )
    application = training_services.create_application(db_session, user=learner, module=module, now=NOW)
    db_session.commit()
    return application


def _notifications(db, user_id):
    return (
        db.query(notification_models.Notification)
        .filter(notification_models.Notification.user_id == user_id)
        .order_by(notification_models.Notification.created_at.asc())
        .all()
    )


def test_alerts_fire_as_the_deadline_approaches(db_session, application):
    first = notification_alerts.process_due_alerts(db_session, now=NOW + timedelta(days=2, hours=1))

    assert first["processed"] == 1
    [reminder] = _notifications(db_session, application.user_id)
    assert reminder.type == notification_models.NotificationType.REMINDER
    assert reminder.title == "Practical application pending"
    assert '"Habit stacking"' in reminder.message
    assert reminder.metadata_json["alert_type"] == "reminder_3d"

    after_deadline = notification_alerts.process_due_alerts(db_session, now=NOW + timedelta(days=5, hours=1))

    assert after_deadline["processed"] == 2
    types = {n.type for n in _notifications(db_session, application.user_id)}
    assert types == {
        notification_models.NotificationType.REMINDER,
        notification_models.NotificationType.URGENT,
        notification_models.NotificationType.ALERT,
    }
    assert application.is_late is True
    emails = db_session.query(notification_models.EmailLog).all()
    assert sorted(e.template_key for e in emails) == ["application_alert", "application_alert"]
    assert {e.recipient for e in emails} == {"lia@example.com"}

    assert notification_alerts.process_due_alerts(db_session, now=NOW + timedelta(days=6)) == {
        "processed": 0,
        "message": "No pending alerts",
    }


def test_completed_application_silences_alerts(db_session, application):
    application.status = training_models.ApplicationStatus.COMPLETED
    db_session.commit()

    result = notification_alerts.process_due_alerts(db_session, now=NOW + timedelta(days=10))

    assert result == {"processed": 0, "alerts": []}
    assert _notifications(db_session, application.user_id) == []
    pending = db_session.query(notification_models.ApplicationAlert).filter(
        notification_models.ApplicationAlert.sent_at.is_(None)
    )
    assert pending.count() == 0


def test_one_failing_alert_does_not_stop_the_batch(db_session, application, monkeypatch):
    original = notification_alerts._process_alert
    calls = {"n": 0}

    def _flaky(db, alert, now):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("provider exploded")
        return original(db, alert, now)

    monkeypatch.setattr(notification_alerts, "_process_alert", _flaky)

    result = notification_alerts.process_due_alerts(db_session, now=NOW + timedelta(days=10))

    assert result["processed"] == 2
    assert len(_notifications(db_session, application.user_id)) == 2


def test_alerts_for_deleted_applications_do_not_hold_the_batch(db_session, application):
    orphans = [
        notification_models.ApplicationAlert(
            user_id=application.user_id,
            application_id=f"deleted-{index}",
            alert_type=notification_models.AlertType.REMINDER_3D.value,
            scheduled_for=NOW + timedelta(hours=1),
        )
        for index in range(3)
    ]
    db_session.add_all(orphans)
    db_session.commit()
    later = NOW + timedelta(days=10)

    first = notification_alerts.process_due_alerts(db_session, now=later, limit=3)

    assert first == {"processed": 0, "alerts": []}
    assert all(orphan.sent_at is not None for orphan in orphans)
    assert all(orphan.notification_id is None for orphan in orphans)

    second = notification_alerts.process_due_alerts(db_session, now=later, limit=3)

    assert second["processed"] == 3
    assert len(_notifications(db_session, application.user_id)) == 3


def test_alert_that_keeps_failing_is_abandoned(db_session, application, monkeypatch):
    original = notification_alerts._process_alert
    broken = (
        db_session.query(notification_models.ApplicationAlert)
        .filter(notification_models.ApplicationAlert.alert_type == "reminder_3d")
        .one()
    )
    broken_id = broken.id

    def _broken(db, alert, now):
        if alert.id == broken_id:
            raise RuntimeError("template missing")
        return original(db, alert, now)

    monkeypatch.setattr(notification_alerts, "_process_alert", _broken)
    monkeypatch.setattr(notification_alerts, "MAX_ATTEMPTS", 2)
    later = NOW + timedelta(days=10)

    first = notification_alerts.process_due_alerts(db_session, now=later, limit=1)

    assert first == {"processed": 0, "alerts": []}
    alert = db_session.get(notification_models.ApplicationAlert, broken_id)
    assert alert.attempts == 1
    assert alert.sent_at is None
    assert alert.last_error == "template missing"

    notification_alerts.process_due_alerts(db_session, now=later, limit=1)

    alert = db_session.get(notification_models.ApplicationAlert, broken_id)
    assert alert.attempts == 2
    assert alert.sent_at is not None
    assert alert.notification_id is None

    third = notification_alerts.process_due_alerts(db_session, now=later, limit=1)

    assert third["processed"] == 1
    assert len(_notifications(db_session, application.user_id)) == 1
