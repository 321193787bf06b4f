from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from gameia.apps.accounts import models as account_models
from gameia.apps.gamification import models as gamification_models
from gameia.apps.notifications import models as notification_models
from gameia.apps.pdi import models as pdi_models
from gameia.apps.training import models as training_models
from gameia.apps.training import router as training_router
from gameia.apps.training import schemas as training_schemas
from gameia.apps.training import services as training_services


@pytest.fixture()
def admin(organization, make_user):
    return make_user(organization, role=account_models.OrgRole.ADMIN)


@pytest.fixture()
def training(db_session, admin):
    training = training_services.create_training(
        db_session,
        user=admin,
        data=training_schemas.TrainingCreate(
            training_key="negotiation",
            name="Negotiation basics",
            xp_reward=100,
            coins_reward=20,
            certificate_enabled=True,
        ),
    )
    for index in range(3):
        training_services.create_module(
            db_session,
            training=training,
            data=training_schemas.ModuleCreate(
                module_key=f"step-{index}", name=f"Step {index}", xp_reward=10, application_deadline_days=5
            ),
        )
    db_session.commit()
    return training


def test_modules_are_appended_and_reordered(db_session, training):
    first, second, third = training.modules
    assert [m.order_index for m in training.modules] == [0, 1, 2]

    reordered = training_services.reorder_modules(
        db_session, training=training, module_ids=[third.id, first.id, second.id]
    )

    assert [m.id for m in reordered] == [third.id, first.id, second.id]
    assert [m.order_index for m in reordered] == [0, 1, 2]
    with pytest.raises(ValueError):
        training_services.reorder_modules(db_session, training=training, module_ids=[first.id])


def test_listing_includes_global_catalog(db_session, organization, admin, training):
    other_org = account_models.Organization(name="Other", slug="other")
    db_session.add(other_org)
    db_session.flush()
    db_session.add_all(
        [
            training_models.Training(training_key="global", name="Global", display_order=-1),
            training_models.Training(training_key="foreign", name="Foreign", organization_id=other_org.id),
            training_models.Training(
                training_key="draft", name="Draft", organization_id=organization.id, is_active=False
            ),
        ]
    )
    db_session.commit()

    visible = training_services.list_trainings(db_session, organization_id=organization.id)

    assert [t.training_key for t in visible] == ["global", "negotiation"]
    foreign = db_session.query(training_models.Training).filter_by(training_key="foreign").one()
    with pytest.raises(training_services.TrainingNotFound):
        training_services.get_training(db_session, training_id=foreign.id, organization_id=organization.id)


def test_duplicate_training_key_rejected(db_session, admin, training):
    with pytest.raises(HTTPException) as exc:
        training_router.create_training(
            training_schemas.TrainingCreate(training_key="negotiation", name="Again"),
            db=db_session,
            current_user=admin,
        )
    assert exc.value.status_code == 409


def test_locking_rules():
    intro = SimpleNamespace(id="a", is_preview=False, requires_completion=True)
    middle = SimpleNamespace(id="b", is_preview=False, requires_completion=False)
    last = SimpleNamespace(id="c", is_preview=False, requires_completion=True)
    preview = SimpleNamespace(id="d", is_preview=True, requires_completion=True)
    modules = [intro, middle, last, preview]

    assert training_services.is_module_locked(modules, intro, []) is False
    assert training_services.is_module_locked(modules, middle, []) is True
    assert training_services.is_module_locked(modules, middle, ["a"]) is False
    # the previous module does not require completion
    assert training_services.is_module_locked(modules, last, ["a"]) is False
    assert training_services.is_module_locked(modules, preview, []) is False

    assert training_services.get_next_incomplete_module(modules, ["a"]) is middle
    assert training_services.get_next_incomplete_module(modules, ["a", "b", "c", "d"]) is None


def test_start_module_is_idempotent(db_session, organization, make_user, training):
    learner = make_user(organization)
    module = training.modules[0]

    first = training_services.start_module(db_session, user=learner, module=module)
    again = training_services.start_module(db_session, user=learner, module=module)

    assert first.id == again.id
    progress = training_services.get_training_progress(db_session, user_id=learner.id, training_id=training.id)
    assert progress.progress_percent == 0
    assert progress.started_at is not None


def test_completing_every_module_completes_the_training(db_session, organization, make_user, training):
    learner = make_user(organization)
    insignia = gamification_models.Insignia(insignia_key="finisher", name="Finisher", xp_reward=0)
    db_session.add(insignia)
    db_session.flush()
    training.insignia_reward_id = insignia.id
    plan = pdi_models.DevelopmentPlan(organization_id=organization.id, user_id=learner.id, title="Plan")
    db_session.add(plan)
    db_session.flush()
    goal = pdi_models.DevelopmentGoal(
        plan_id=plan.id,
        title="Close better deals",
        status=pdi_models.GoalStatus.IN_PROGRESS,
        linked_training_ids=[training.id],
    )
    db_session.add(goal)
    db_session.commit()
    first, second, third = training.modules

    with pytest.raises(training_services.ModuleLocked):
        training_services.complete_module(db_session, user=learner, module=third)

    result = training_services.complete_module(db_session, user=learner, module=first, score=90)
    assert result.progress_percent == 33
    assert result.training_completed is False
    assert result.certificate_available is False

    training_services.complete_module(db_session, user=learner, module=second)
    result = training_services.complete_module(db_session, user=learner, module=third)
    db_session.commit()

    assert result.progress_percent == 100
    assert result.training_completed is True
    assert result.certificate_available is True
    assert goal.progress == 25
    assert learner.xp == 30 + 100 + 25
    assert learner.coins == 20

    event_types = sorted(e.event_type for e in db_session.query(gamification_models.CoreEvent).all())
    assert event_types == [
        "INSIGNIA_UNLOCKED",
        "MODULE_COMPLETED",
        "MODULE_COMPLETED",
        "MODULE_COMPLETED",
        "PDI_PROGRESS_AUTO",
        "TRAINING_COMPLETED",
    ]
    assert (
        db_session.query(gamification_models.UserInsignia)
        .filter_by(user_id=learner.id, insignia_id=insignia.id)
        .count()
        == 1
    )

    repeat = training_services.complete_module(db_session, user=learner, module=third)
    assert repeat.already_completed is True
    assert repeat.training_completed is True
    assert db_session.query(gamification_models.CoreEvent).filter_by(event_type="TRAINING_COMPLETED").count() == 1


def test_time_spent_rolls_up_to_training(db_session, organization, make_user, training):
    learner = make_user(organization)
    first, second, _ = training.modules

    training_services.update_time_spent(db_session, user=learner, module=first, time_spent_seconds=120)
    training_services.update_time_spent(db_session, user=learner, module=second, time_spent_seconds=30)
    training_services.update_time_spent(db_session, user=learner, module=first, time_spent_seconds=150)

    progress = training_services.get_training_progress(db_session, user_id=learner.id, training_id=training.id)
    assert progress.total_time_seconds == 180


def test_assignment_sets_deadline_and_notifies(db_session, organization, make_user, admin, training):
    learner = make_user(organization)
    outsider = make_user(None)
    deadline = datetime(2030, 1, 15, tzinfo=timezone.utc)

    rows = training_services.assign_training(
        db_session,
        training=training,
        organization_id=organization.id,
        user_ids=[learner.id],
        deadline_at=deadline,
        assigned_by=admin,
    )

    assert rows[0].deadline_at == deadline
    assert rows[0].assigned_by_user_id == admin.id
    notification = db_session.query(notification_models.Notification).filter_by(user_id=learner.id).one()
    assert "2030-01-15" in notification.message
    with pytest.raises(ValueError):
        training_services.assign_training(
            db_session,
            training=training,
            organization_id=organization.id,
            user_ids=[outsider.id],
            deadline_at=None,
            assigned_by=admin,
        )
