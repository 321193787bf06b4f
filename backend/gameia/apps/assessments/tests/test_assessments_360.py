from __future__ import annotations

from datetime import date

import pytest
from fastapi import HTTPException

from gameia.apps.accounts import models as account_models
from gameia.apps.assessments import models as assessment_models
from gameia.apps.assessments import router as assessment_router
from gameia.apps.assessments import schemas as assessment_schemas
from gameia.apps.assessments import services as assessment_services
from gameia.apps.gamification import models as gamification_models


@pytest.fixture()
def people(organization, make_user):
    return {
        "manager": make_user(organization, role=account_models.OrgRole.MANAGER, full_name="Maria Manager"),
        "learner": make_user(organization, full_name="Lucas Learner"),
        "peer": make_user(organization, full_name="Paula Peer"),
    }


@pytest.fixture()
def cycle(db_session, people):
    cycle = assessment_services.create_cycle(
        db_session,
        user=people["manager"],
        data=assessment_schemas.CycleCreate(
            name="H1 360",
            start_date=date(2030, 1, 1),
            end_date=date(2030, 6, 30),
            status=assessment_models.CycleStatus.ACTIVE,
            evaluated_skills=["communication"],
        ),
    )
    db_session.commit()
    return cycle


def _assessment(db, cycle, evaluator, evaluatee, relationship):
    return assessment_services.create_assessment(
        db,
        cycle=cycle,
        evaluatee_id=evaluatee.id,
        evaluator_id=evaluator.id,
        relationship=relationship,
    )


def test_cycle_dates_are_validated(db_session, people):
    with pytest.raises(assessment_services.AssessmentError):
        assessment_services.create_cycle(
            db_session,
            user=people["manager"],
            data=assessment_schemas.CycleCreate(
                name="Backwards", start_date=date(2030, 6, 1), end_date=date(2030, 1, 1)
            ),
        )


def test_submissions_are_consolidated(db_session, people, cycle):
    manager, learner, peer = people["manager"], people["learner"], people["peer"]
    by_manager = _assessment(db_session, cycle, manager, learner, assessment_models.AssessmentRelationship.MANAGER)
    by_peer = _assessment(db_session, cycle, peer, learner, assessment_models.AssessmentRelationship.PEER)

    assessment_services.submit_assessment(
        db_session,
        user=manager,
        assessment=by_manager,
        responses={"scores": {"communication": 5, "planning": 2}, "comments": "Great listener"},
    )
    assessment_services.submit_assessment(
        db_session,
        user=peer,
        assessment=by_peer,
        responses={"communication": 4, "planning": 3, "note": "ok", "anonymous": True},
    )

    [result] = assessment_services.list_results(db_session, user_id=learner.id)
    assert result.consolidated_scores == {"communication": 4.5, "planning": 2.5}
    assert result.strengths == ["communication"]
    assert result.development_areas == ["planning"]
    assert result.responses_count == 2
    assert by_peer.status == assessment_models.AssessmentStatus.COMPLETED
    assert by_peer.submitted_at is not None

    events = db_session.query(gamification_models.CoreEvent).all()
    given = [e for e in events if e.event_type == "FEEDBACK_GIVEN"]
    received = [e for e in events if e.event_type == "FEEDBACK_RECEIVED"]
    assert {e.user_id for e in given} == {manager.id, peer.id}
    assert all(e.xp_earned == assessment_services.FEEDBACK_GIVEN_XP for e in given)
    assert [e.user_id for e in received] == [learner.id, learner.id]


def test_self_assessment_gives_no_feedback_xp(db_session, people, cycle):
    learner = people["learner"]
    own = _assessment(db_session, cycle, learner, learner, assessment_models.AssessmentRelationship.SELF)

    assessment_services.submit_assessment(db_session, user=learner, assessment=own, responses={"communication": 3})

    event_types = [e.event_type for e in db_session.query(gamification_models.CoreEvent).all()]
    assert event_types == ["FEEDBACK_RECEIVED"]


def test_consolidation_failure_does_not_block_submission(db_session, people, cycle, monkeypatch):
    assessment = _assessment(
        db_session, cycle, people["peer"], people["learner"], assessment_models.AssessmentRelationship.PEER
    )

    def _boom(*args, **kwargs):
        raise RuntimeError("consolidation down")

    monkeypatch.setattr(assessment_services, "process_assessment_completion", _boom)

    assessment_services.submit_assessment(
        db_session, user=people["peer"], assessment=assessment, responses={"communication": 4}
    )

    assert assessment.status == assessment_models.AssessmentStatus.COMPLETED
    assert assessment_services.list_results(db_session, user_id=people["learner"].id) == []


def test_consolidation_failing_midway_rolls_back_its_writes(db_session, people, cycle, monkeypatch):
    peer, learner = people["peer"], people["learner"]
    assessment = _assessment(db_session, cycle, peer, learner, assessment_models.AssessmentRelationship.PEER)
    db_session.commit()

    def _ledger_down(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(assessment_services.gamification_services, "record_feedback_received", _ledger_down)

    assessment_services.submit_assessment(
        db_session, user=peer, assessment=assessment, responses={"communication": 4}
    )
    db_session.commit()

    db_session.refresh(assessment)
    assert assessment.status == assessment_models.AssessmentStatus.COMPLETED
    assert assessment_services.list_results(db_session, user_id=learner.id) == []
    assert db_session.query(gamification_models.CoreEvent).count() == 0
    db_session.refresh(peer)
    assert peer.xp == 0


def test_router_guards(db_session, people, cycle):
    learner, peer = people["learner"], people["peer"]

    with pytest.raises(HTTPException) as excinfo:
        assessment_router.create_assessment(
            payload=assessment_schemas.AssessmentCreate(
                cycle_id=cycle.id,
                evaluatee_id=learner.id,
                evaluator_id=people["manager"].id,
                relationship=assessment_models.AssessmentRelationship.PEER,
            ),
            db=db_session,
            current_user=peer,
        )
    assert excinfo.value.status_code == 403

    assessment = assessment_router.create_assessment(
        payload=assessment_schemas.AssessmentCreate(
            cycle_id=cycle.id,
            evaluatee_id=learner.id,
            relationship=assessment_models.AssessmentRelationship.PEER,
        ),
        db=db_session,
        current_user=peer,
    )
    assert assessment.evaluator_id == peer.id
    assert [a.id for a in assessment_router.my_assessments(db=db_session, current_user=peer)] == [assessment.id]

    payload = assessment_schemas.AssessmentSubmit(responses={"communication": 4})
    with pytest.raises(HTTPException) as excinfo:
        assessment_router.submit_assessment(
            assessment_id=assessment.id, payload=payload, db=db_session, current_user=learner
        )
    assert excinfo.value.status_code == 404

    assessment_router.submit_assessment(assessment_id=assessment.id, payload=payload, db=db_session, current_user=peer)
    with pytest.raises(HTTPException) as excinfo:
        assessment_router.submit_assessment(
            assessment_id=assessment.id, payload=payload, db=db_session, current_user=peer
        )
    assert excinfo.value.status_code == 409
