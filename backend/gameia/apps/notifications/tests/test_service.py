from __future__ import annotations

import pytest

from gameia.apps.notifications import models as notification_models
from gameia.apps.notifications import providers as notification_providers
from gameia.apps.notifications import service as notification_service


def _welcome(db, organization, **kwargs):
    return notification_service.send_email(
        "welcome",
        "ana@example.com",
        {"nickname": "Ana"},
        correlation_id="welcome:ana",
        organization_id=organization.id,
        db=db,
        **kwargs,
    )


def test_send_email_no_provider_marks_skipped(db_session, organization, monkeypatch):
    monkeypatch.setattr(
        notification_providers,
        "get_email_provider",
        lambda: (notification_providers.NoopProvider(), False),
    )

    log = _welcome(db_session, organization)
    db_session.commit()

    assert log.status == notification_models.EmailStatus.SKIPPED_NO_PROVIDER
    assert log.error
    assert log.sent_at is None


def test_send_email_provider_success(db_session, organization, monkeypatch):
    sent = []

    class FakeProvider(notification_providers.EmailProvider):
        def send(self, **kwargs):
            sent.append(kwargs)

    monkeypatch.setattr(notification_providers, "get_email_provider", lambda: (FakeProvider(), True))

    log = _welcome(db_session, organization)
    db_session.commit()

    assert log.status == notification_models.EmailStatus.SENT
    assert log.sent_at is not None
    assert log.error is None
    assert sent[0]["recipient"] == "ana@example.com"
    assert sent[0]["correlation_id"] == "welcome:ana"


def test_send_email_provider_failure_is_best_effort(db_session, organization, monkeypatch):
    class FailingProvider(notification_providers.EmailProvider):
        def send(self, **kwargs):
            raise RuntimeError("boom")

    monkeypatch.setattr(notification_providers, "get_email_provider", lambda: (FailingProvider(), True))

    log = _welcome(db_session, organization)
    assert log.status == notification_models.EmailStatus.FAILED
    assert log.error == "boom"

    with pytest.raises(RuntimeError):
        _welcome(db_session, organization, critical=True)


def test_unknown_template_is_rejected(db_session, organization):
    with pytest.raises(ValueError):
        notification_service.send_email("nope", "ana@example.com", {}, db=db_session)


def test_inbox_lifecycle(db_session, organization, make_user):
    user = make_user(organization)
    other = make_user(organization)
    first = notification_service.create_notification(
        db_session, user_id=user.id, title="Welcome", type="achievement"
    )
    notification_service.create_notification(db_session, user_id=user.id, title="Reminder")
    notification_service.create_notification(db_session, user_id=other.id, title="Not yours")
    db_session.commit()

    assert first.type == notification_models.NotificationType.ACHIEVEMENT
    assert notification_service.unread_count(db_session, user_id=user.id) == 2

    notification_service.mark_read(db_session, user_id=user.id, notification_id=first.id)
    db_session.commit()
    assert notification_service.unread_count(db_session, user_id=user.id) == 1

    with pytest.raises(notification_service.NotificationNotFound):
        notification_service.mark_read(db_session, user_id=other.id, notification_id=first.id)

    assert notification_service.mark_all_read(db_session, user_id=user.id) == 1
    assert notification_service.clear_all(db_session, user_id=user.id) == 2
    db_session.commit()
    assert notification_service.list_notifications(db_session, user_id=user.id) == []
    assert len(notification_service.list_notifications(db_session, user_id=other.id)) == 1
