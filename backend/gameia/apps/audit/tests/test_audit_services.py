from __future__ import annotations

import pytest

from gameia.apps.accounts import models as account_models
from gameia.apps.audit import services as audit_services
from gameia.apps.events.broker import broker


def test_log_event_writes_record_and_publishes(db_session, organization):
    broker.clear()

    event = audit_services.log_event(
        db_session,
        organization_id=organization.id,
        actor_user_id=None,
        entity_type="training",
        entity_id="tr-1",
        action="CREATED",
        after={"name": "Leadership 101"},
        metadata={"module": "training"},
    )
    db_session.commit()

    assert event is not None
    assert event.entity_type == "training"
    replay, reset = broker.replay_since(last_event_id="missing", organization_id=organization.id, user_id=None)
    assert reset is True
    published = broker._history[-1]
    assert published.id == str(event.id)
    assert published.type == "training.created"
    assert published.metadata["organizationId"] == organization.id


def test_list_is_scoped_to_organization(db_session, organization):
    other = account_models.Organization(name="Globex", slug="globex")
    db_session.add(other)
    db_session.flush()
    for org_id, entity_id in ((organization.id, "a"), (organization.id, "b"), (other.id, "c")):
        audit_services.log_event(
            db_session,
            organization_id=org_id,
            actor_user_id=None,
            entity_type="org_team",
            entity_id=entity_id,
            action="UPDATED",
        )
    db_session.commit()

    events = audit_services.list_audit_events(db_session, organization_id=organization.id)

    assert sorted(e.entity_id for e in events) == ["a", "b"]
    assert audit_services.list_audit_events(db_session, organization_id=organization.id, entity_id="b")[0].entity_id == "b"


def test_failures_are_swallowed_unless_critical(db_session, organization, monkeypatch):
    def _boom(*args, **kwargs):
        raise RuntimeError("audit store down")

    monkeypatch.setattr(audit_services, "create_audit_event", _boom)
    kwargs = dict(
        organization_id=organization.id,
        actor_user_id=None,
        entity_type="certificate",
        entity_id="c-1",
        action="REVOKED",
    )

    assert audit_services.log_event(db_session, **kwargs) is None
    with pytest.raises(RuntimeError):
        audit_services.log_event(db_session, critical=True, **kwargs)


def test_entity_history_reads_oldest_first(db_session, organization, make_user):
    admin = make_user(organization, role=account_models.OrgRole.ADMIN)
    for action in ("created", "UPDATED"):
        audit_services.log_event(
            db_session,
            organization_id=organization.id,
            actor_user_id=admin.id,
            entity_type="org_team",
            entity_id="team-1",
            action=action,
        )
    db_session.commit()

    history = audit_services.entity_history(
        db_session, organization_id=organization.id, entity_type="org_team", entity_id="team-1"
    )

    assert [e.action for e in history["events"]] == ["CREATED", "UPDATED"]
    assert history["created_by"] == admin.id
    assert history["events"][0].event_type == "org_team.created"
    with pytest.raises(audit_services.UnknownAuditEntity):
        audit_services.entity_history(
            db_session, organization_id=organization.id, entity_type="spaceship", entity_id="x"
        )
