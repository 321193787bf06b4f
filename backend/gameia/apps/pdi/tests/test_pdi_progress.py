from __future__ import annotations

import pytest
from fastapi import HTTPException

from gameia.apps.gamification import models as gamification_models
from gameia.apps.pdi import models as pdi_models
from gameia.apps.pdi import router as pdi_router
from gameia.apps.pdi import schemas as pdi_schemas
from gameia.apps.pdi import services as pdi_services


@pytest.fixture()
def player(organization, make_user):
    return make_user(organization)


def _plan(db, user, status=pdi_models.PlanStatus.ACTIVE):
    plan = pdi_models.DevelopmentPlan(
        organization_id=user.organization_id, user_id=user.id, title="Growth plan", status=status
    )
    db.add(plan)
    db.flush()
    return plan


def _goal(db, plan, **fields):
    fields.setdefault("status", pdi_models.GoalStatus.IN_PROGRESS)
    goal = pdi_models.DevelopmentGoal(plan_id=plan.id, title=fields.pop("title", "Negotiation"), **fields)
    db.add(goal)
    db.flush()
    return goal


def _event(user, **fields):
    return pdi_schemas.ProgressEventIn(user_id=user.id, organization_id=user.organization_id, **fields)


@pytest.mark.parametrize(
    "source_type,score,expected",
    [
        ("training", None, 25),
        ("training", 150, 38),
        ("game", 200, 8),
        ("challenge", 40, 6),
        ("module", 100, 8),
        ("cognitive_test", 500, 15),
    ],
)
def test_progress_delta_table(source_type, score, expected):
    assert pdi_services.calculate_progress_delta(source_type, score) == expected


def test_linked_training_advances_goal_and_credits_xp(db_session, player):
    plan = _plan(db_session, player)
    goal = _goal(db_session, plan, linked_training_ids=["tr-1"], xp_reward=200)
    action = pdi_models.PdiLinkedAction(
        goal_id=goal.id, user_id=player.id, action_type="training", action_id="tr-1", action_name="Sales 101"
    )
    db_session.add(action)
    db_session.commit()

    result = pdi_services.update_pdi_progress(
        db_session, event=_event(player, source_type="training", source_id="tr-1", source_name="Sales 101")
    )
    db_session.commit()

    assert result.success is True
    assert result.goals_updated == 1
    assert result.total_xp_earned == 50
    assert result.updates[0].new_progress == 25
    assert goal.progress == 25
    assert goal.last_auto_update is not None
    assert action.completed_at is not None

    history = pdi_services.get_progress_history(db_session, goal_id=goal.id)
    assert len(history) == 1
    assert history[0].progress_before == 0
    assert history[0].metadata_json["match_reason"] == "linked_training"

    ledger = db_session.query(gamification_models.CoreEvent).one()
    assert ledger.event_type == "PDI_PROGRESS_AUTO"
    assert ledger.xp_earned == 50
    assert ledger.metadata_json == {"goals_updated": 1, "source_type": "training", "source_id": "tr-1"}
    assert player.xp == 50


def test_goal_reaching_100_is_completed(db_session, player):
    plan = _plan(db_session, player)
    goal = _goal(db_session, plan, progress=90, related_games=["memory"], xp_reward=None)

    result = pdi_services.update_pdi_progress(
        db_session, event=_event(player, source_type="game", source_id="memory", score=150)
    )

    assert result.updates[0].progress_delta == 8
    assert goal.progress == 98

    result = pdi_services.update_pdi_progress(
        db_session, event=_event(player, source_type="game", source_id="memory", score=150)
    )

    assert result.updates[0].progress_delta == 2
    assert result.total_xp_earned == 2
    assert goal.progress == 100
    assert goal.status == pdi_models.GoalStatus.COMPLETED

    result = pdi_services.update_pdi_progress(
        db_session, event=_event(player, source_type="game", source_id="memory")
    )
    assert result.goals_updated == 0


def test_skill_match_applies_to_modules(db_session, player):
    plan = _plan(db_session, player)
    goal = _goal(db_session, plan, skill_id="skill-listening")

    result = pdi_services.update_pdi_progress(
        db_session,
        event=_event(player, source_type="module", source_id="mod-9", skill_ids=["skill-listening"]),
    )

    assert result.goals_updated == 1
    assert goal.progress == 8


def test_ineligible_goals_are_left_alone(db_session, player):
    draft_plan = _plan(db_session, player, status=pdi_models.PlanStatus.DRAFT)
    in_draft = _goal(db_session, draft_plan, linked_training_ids=["tr-1"])
    plan = _plan(db_session, player)
    not_started = _goal(db_session, plan, linked_training_ids=["tr-1"], status=pdi_models.GoalStatus.NOT_STARTED)
    manual = _goal(db_session, plan, linked_training_ids=["tr-1"], auto_progress_enabled=False)
    unrelated = _goal(db_session, plan, linked_training_ids=["tr-2"])

    result = pdi_services.update_pdi_progress(
        db_session, event=_event(player, source_type="training", source_id="tr-1")
    )

    assert result.goals_updated == 0
    assert result.total_xp_earned == 0
    assert [g.progress for g in (in_draft, not_started, manual, unrelated)] == [0, 0, 0, 0]
    assert db_session.query(gamification_models.CoreEvent).count() == 0


def test_missing_fields_rejected(db_session, player):
    with pytest.raises(ValueError):
        pdi_services.update_pdi_progress(db_session, event=_event(player, source_type="training"))

    player.is_superuser = True
    with pytest.raises(HTTPException) as exc:
        pdi_router.update_progress(
            pdi_schemas.ProgressEventIn(user_id=player.id, source_id="tr-1"),
            db=db_session,
            current_user=player,
        )
    assert exc.value.status_code == 400


def test_propagation_swallows_failures(db_session, player):
    assert pdi_services.propagate_progress(db_session, user_id="missing", source_type="game", source_id="x") is None


def test_pending_actions_ordering(db_session, player):
    plan = _plan(db_session, player)
    goal = _goal(db_session, plan)
    low = pdi_services.add_linked_action(
        db_session,
        user=player,
        data=pdi_schemas.LinkedActionCreate(goal_id=goal.id, action_type="game", action_name="Play memory", priority=7),
    )
    high = pdi_services.add_linked_action(
        db_session,
        user=player,
        data=pdi_schemas.LinkedActionCreate(goal_id=goal.id, action_type="training", action_name="Finish", priority=1),
    )
    dismissed = pdi_services.add_linked_action(
        db_session,
        user=player,
        data=pdi_schemas.LinkedActionCreate(goal_id=goal.id, action_type="challenge", action_name="Skip me"),
    )
    pdi_services.dismiss_action(db_session, action=dismissed)
    db_session.commit()

    assert [a.id for a in pdi_services.get_pending_actions(db_session, goal_id=goal.id)] == [high.id, low.id]

    pdi_services.complete_action(db_session, action=high)
    pending = pdi_router.all_pending_actions(db=db_session, current_user=player)
    assert [a.id for a in pending] == [low.id]
    assert pending[0].goal.title == "Negotiation"


def test_manager_only_plan_for_others(db_session, organization, make_user, player):
    other = make_user(organization)

    with pytest.raises(HTTPException) as exc:
        pdi_router.create_plan(
            pdi_schemas.PlanCreate(title="For you", user_id=other.id), db=db_session, current_user=player
        )
    assert exc.value.status_code == 403

    plan = pdi_router.create_plan(pdi_schemas.PlanCreate(title="Mine"), db=db_session, current_user=player)
    assert plan.user_id == player.id
    with pytest.raises(HTTPException) as exc:
        pdi_router.list_goals(plan.id, db=db_session, current_user=other)
    assert exc.value.status_code == 404


def test_failed_propagation_leaves_no_partial_progress(db_session, player, monkeypatch):
    plan = _plan(db_session, player)
    goal = _goal(db_session, plan, linked_training_ids=["tr-1"], xp_reward=200)
    db_session.commit()

    def _ledger_down(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(pdi_services.gamification_services, "record_core_event", _ledger_down)

    result = pdi_services.propagate_progress(
        db_session,
        user_id=player.id,
        organization_id=player.organization_id,
        source_type="training",
        source_id="tr-1",
    )
    db_session.commit()

    assert result is None
    db_session.refresh(goal)
    assert goal.progress == 0
    assert goal.last_auto_update is None
    assert db_session.query(pdi_models.GoalProgressEvent).count() == 0
    db_session.refresh(player)
    assert player.xp == 0
