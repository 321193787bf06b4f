from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from gameia.apps.next_steps import models as step_models
from gameia.apps.next_steps import router as step_router
from gameia.apps.next_steps import services as step_services
from gameia.apps.pdi import models as pdi_models
from gameia.apps.training import models as training_models

NOW = datetime(2030, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def learner(organization, make_user):
    return make_user(organization)


@pytest.fixture()
def open_work(db_session, learner):
    training = training_models.Training(
        organization_id=learner.organization_id, training_key="sales", name="Consultative Sales"
    )
    module = training_models.TrainingModule(module_key="m1", name="Discovery questions")
    training.modules.append(module)
    db_session.add(training)
    db_session.flush()

    application = training_models.RoutineApplication(
        user_id=learner.id,
        organization_id=learner.organization_id,
        training_id=training.id,
        module_id=module.id,
        status=training_models.ApplicationStatus.IN_PROGRESS,
        commitment="Ask three open questions per call",
        deadline_at=NOW + timedelta(hours=12),
    )
    progress = training_models.UserTrainingProgress(
        user_id=learner.id,
        training_id=training.id,
        progress_percent=40,
        deadline_at=NOW + timedelta(days=5),
    )
    plan = pdi_models.DevelopmentPlan(
        organization_id=learner.organization_id, user_id=learner.id, title="Growth"
    )
    db_session.add_all([application, progress, plan])
    db_session.flush()
    goal = pdi_models.DevelopmentGoal(plan_id=plan.id, title="Negotiation")
    db_session.add(goal)
    db_session.flush()
    action = pdi_models.PdiLinkedAction(
        goal_id=goal.id,
        user_id=learner.id,
        action_type="game",
        action_id="negotiation-arena",
        action_name="Play the negotiation arena",
        deadline_at=NOW - timedelta(days=2),
    )
    db_session.add(action)
    db_session.commit()
    return {"application": application, "progress": progress, "action": action}


@pytest.mark.parametrize(
    "offset,expected",
    [
        (timedelta(days=-3), step_models.NextStepPriority.URGENT),
        (timedelta(hours=20), step_models.NextStepPriority.URGENT),
        (timedelta(days=2), step_models.NextStepPriority.HIGH),
        (timedelta(days=10), step_models.NextStepPriority.NORMAL),
        (None, step_models.NextStepPriority.NORMAL),
    ],
)
def test_priority_follows_deadline(offset, expected):
    deadline = NOW + offset if offset is not None else None
    assert step_services.priority_for_deadline(deadline, NOW) == expected


def test_sort_puts_steps_without_deadline_last():
    steps = [
        {"priority": "normal", "deadline_at": None, "title": "someday"},
        {"priority": "low", "deadline_at": NOW, "title": "low"},
        {"priority": "normal", "deadline_at": NOW + timedelta(days=1), "title": "tomorrow"},
        {"priority": "urgent", "deadline_at": None, "title": "urgent"},
        {"priority": "normal", "deadline_at": NOW - timedelta(days=1), "title": "late"},
    ]

    titles = [s["title"] for s in step_services.sort_steps(steps)]

    assert titles == ["urgent", "late", "tomorrow", "someday", "low"]


def test_list_aggregates_sources(db_session, learner, open_work):
    step_services.create_step(
        db_session,
        user=learner,
        step_type=step_models.NextStepType.COMMITMENT,
        title="Share a lesson with the team",
        now=NOW,
    )

    steps = step_services.list_next_steps(db_session, user=learner, now=NOW)

    assert [s["step_type"] for s in steps] == [
        step_models.NextStepType.PDI_GOAL,
        step_models.NextStepType.BOOK_APPLICATION,
        step_models.NextStepType.TRAINING_MODULE,
        step_models.NextStepType.COMMITMENT,
    ]
    action_step, application_step, training_step, commitment = steps
    assert action_step["is_overdue"] is True
    assert action_step["days_remaining"] == -2
    assert application_step["days_remaining"] == 1
    assert application_step["title"] == 'Apply "Discovery questions" in your routine'
    assert application_step["source_context"]["training_name"] == "Consultative Sales"
    assert training_step["days_remaining"] == 5
    assert training_step["description"] == "40% completed"
    assert commitment["days_remaining"] is None
    assert step_services.urgent_count(steps) == 2
    assert step_services.overdue_count(steps) == 1
    assert len(step_services.get_steps_by_type(steps, step_models.NextStepType.PDI_GOAL)) == 1


def test_refresh_closes_finished_sources(db_session, learner, open_work):
    assert step_services.refresh_next_steps(db_session, user=learner, now=NOW) == {"created": 3, "closed": 0}
    assert step_services.refresh_next_steps(db_session, user=learner, now=NOW) == {"created": 0, "closed": 0}

    open_work["application"].status = training_models.ApplicationStatus.COMPLETED
    open_work["progress"].completed_at = NOW
    db_session.flush()

    assert step_services.refresh_next_steps(db_session, user=learner, now=NOW) == {"created": 0, "closed": 2}
    remaining = step_services.list_next_steps(db_session, user=learner, now=NOW)
    assert [s["source_table"] for s in remaining] == ["pdi_linked_actions"]


def test_completed_step_is_not_reopened(db_session, learner, open_work):
    steps = step_services.list_next_steps(db_session, user=learner, now=NOW)
    step_services.complete_step(db_session, user=learner, step_id=steps[0]["id"], now=NOW)

    again = step_services.list_next_steps(db_session, user=learner, now=NOW)

    assert len(again) == 2
    assert steps[0]["id"] not in {s["id"] for s in again}


def test_list_falls_back_to_stored_rows(db_session, learner, open_work, monkeypatch):
    step_services.refresh_next_steps(db_session, user=learner, now=NOW)
    db_session.commit()

    def _boom(*args, **kwargs):
        raise RuntimeError("aggregation down")

    monkeypatch.setattr(step_services, "refresh_next_steps", _boom)

    steps = step_services.list_next_steps(db_session, user=learner, now=NOW)

    assert len(steps) == 3


def test_router_filters_by_type_and_guards_completion(db_session, learner, open_work, make_user, organization):
    result = step_router.list_next_steps(
        step_type=step_models.NextStepType.TRAINING_MODULE, db=db_session, current_user=learner
    )

    assert [s.step_type for s in result.steps] == [step_models.NextStepType.TRAINING_MODULE]

    stranger = make_user(organization)
    with pytest.raises(HTTPException) as excinfo:
        step_router.complete_step(step_id=result.steps[0].id, db=db_session, current_user=stranger)
    assert excinfo.value.status_code == 404

    done = step_router.complete_step(step_id=result.steps[0].id, db=db_session, current_user=learner)
    assert done.is_completed is True
