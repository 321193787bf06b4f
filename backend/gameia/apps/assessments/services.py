"""
360 assessment cycles, submission and consolidation.
"""

from __future__ import annotations

import enum
import logging
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.apps.audit import services as audit_services
from gameia.apps.events.broker import publish_change
from gameia.apps.gamification import services as gamification_services

from . import models, schemas

logger = logging.getLogger(__name__)

FEEDBACK_GIVEN_XP = 30
STRENGTH_THRESHOLD = 4.0
DEVELOPMENT_THRESHOLD = 3.0
MAX_HIGHLIGHTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CycleNotFound(Exception):
    pass


class AssessmentNotFound(Exception):
    pass


class AssessmentError(ValueError):
    pass


# ---------------------------------------------------------------------------
# CYCLES
# ---------------------------------------------------------------------------


def _jsonable(value):
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def list_cycles(db: Session, *, organization_id: str) -> List[models.AssessmentCycle]:
    return (
        db.query(models.AssessmentCycle)
        .filter(models.AssessmentCycle.organization_id == organization_id)
        .order_by(models.AssessmentCycle.created_at.desc())
        .all()
    )


def get_cycle(db: Session, *, cycle_id: str, organization_id: str) -> models.AssessmentCycle:
    cycle = db.get(models.AssessmentCycle, cycle_id)
    if cycle is None or cycle.organization_id != organization_id:
        raise CycleNotFound(cycle_id)
    return cycle


def create_cycle(
    db: Session,
    *,
    user: account_models.User,
    data: schemas.CycleCreate,
) -> models.AssessmentCycle:
    if data.end_date < data.start_date:
        raise AssessmentError("end_date must not be before start_date")
    cycle = models.AssessmentCycle(
        organization_id=user.organization_id,
        created_by=user.id,
        **data.model_dump(),
    )
    db.add(cycle)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=user.organization_id,
        actor_user_id=user.id,
        entity_type="assessment_cycle",
        entity_id=cycle.id,
        action="CREATED",
        after={"name": cycle.name, "status": cycle.status.value},
    )
    return cycle


def update_cycle(
    db: Session,
    *,
    cycle: models.AssessmentCycle,
    data: schemas.CycleUpdate,
    actor_user_id: Optional[str] = None,
) -> models.AssessmentCycle:
    changes = data.model_dump(exclude_unset=True)
    before = {key: _jsonable(getattr(cycle, key)) for key in changes}
    for key, value in changes.items():
        setattr(cycle, key, value)
    if cycle.end_date < cycle.start_date:
        raise AssessmentError("end_date must not be before start_date")
    db.add(cycle)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=cycle.organization_id,
        actor_user_id=actor_user_id,
        entity_type="assessment_cycle",
        entity_id=cycle.id,
        action="UPDATED",
        before=before,
        after=data.model_dump(mode="json", exclude_unset=True),
    )
    return cycle


# ---------------------------------------------------------------------------
# ASSESSMENTS
# ---------------------------------------------------------------------------


def _is_member(db: Session, *, organization_id: str, user_id: str) -> bool:
    return (
        db.query(account_models.OrganizationMember.id)
        .filter(
            account_models.OrganizationMember.organization_id == organization_id,
            account_models.OrganizationMember.user_id == user_id,
            account_models.OrganizationMember.is_active.is_(True),
        )
        .first()
        is not None
    )


def create_assessment(
    db: Session,
    *,
    cycle: models.AssessmentCycle,
    evaluatee_id: str,
    evaluator_id: str,
    relationship: models.AssessmentRelationship,
) -> models.Assessment360:
    for user_id in (evaluatee_id, evaluator_id):
        if not _is_member(db, organization_id=cycle.organization_id, user_id=user_id):
            raise AssessmentError(f"User {user_id} is not a member of the organization")
    if relationship == models.AssessmentRelationship.SELF and evaluatee_id != evaluator_id:
        raise AssessmentError("Self assessments must have the same evaluator and evaluatee")
    duplicate = (
        db.query(models.Assessment360.id)
        .filter(
            models.Assessment360.cycle_id == cycle.id,
            models.Assessment360.evaluatee_id == evaluatee_id,
            models.Assessment360.evaluator_id == evaluator_id,
        )
        .first()
    )
    if duplicate:
        raise AssessmentError("Assessment already exists for this evaluator")

    assessment = models.Assessment360(
        cycle_id=cycle.id,
        evaluatee_id=evaluatee_id,
        evaluator_id=evaluator_id,
        relationship=relationship,
        status=models.AssessmentStatus.PENDING,
        responses={},
    )
    db.add(assessment)
    db.flush()
    return assessment


def list_my_assessments(db: Session, *, evaluator_id: str) -> List[models.Assessment360]:
    return (
        db.query(models.Assessment360)
        .filter(models.Assessment360.evaluator_id == evaluator_id)
        .order_by(models.Assessment360.created_at.desc())
        .all()
    )


def get_assessment(db: Session, *, assessment_id: str) -> models.Assessment360:
    assessment = db.get(models.Assessment360, assessment_id)
    if assessment is None:
        raise AssessmentNotFound(assessment_id)
    return assessment


def submit_assessment(
    db: Session,
    *,
    user: account_models.User,
    assessment: models.Assessment360,
    responses: Dict,
    now: Optional[datetime] = None,
) -> models.Assessment360:
    """
    Store the evaluator's responses and mark the assessment completed.

    Consolidation runs afterwards in a savepoint on a best-effort basis: a
    failure there is logged, its partial writes are dropped and the
    submission still succeeds.
    """
    if assessment.evaluator_id != user.id:
        raise AssessmentNotFound(assessment.id)
    if assessment.status == models.AssessmentStatus.COMPLETED:
        raise AssessmentError("Assessment already submitted")
    if assessment.cycle and assessment.cycle.status == models.CycleStatus.CLOSED:
        raise AssessmentError("Assessment cycle is closed")

    assessment.responses = dict(responses or {})
    assessment.status = models.AssessmentStatus.COMPLETED
    assessment.submitted_at = now or _utcnow()
    db.add(assessment)
    db.flush()

    try:
        with db.begin_nested():
            process_assessment_completion(db, assessment=assessment)
    except Exception:
        logger.exception(
            "Assessment completion processing failed",
            extra={"assessment_id": assessment.id, "cycle_id": assessment.cycle_id},
        )

    publish_change(
        entity_type="assessment_360",
        entity_id=assessment.id,
        action="COMPLETED",
        organization_id=user.organization_id,
        user_id=assessment.evaluatee_id,
        actor_user_id=user.id,
    )
    return assessment


# ---------------------------------------------------------------------------
# CONSOLIDATION
# ---------------------------------------------------------------------------


def _numeric_scores(responses: Dict) -> Dict[str, float]:
    """Scores live under `scores`; top-level numbers are accepted too."""
    source = responses.get("scores") if isinstance(responses.get("scores"), dict) else responses
    scores: Dict[str, float] = {}
    for key, value in (source or {}).items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        scores[key] = float(value)
    return scores


def consolidate_scores(responses_list: List[Dict]) -> Dict[str, float]:
    totals: Dict[str, List[float]] = {}
    for responses in responses_list:
        for key, value in _numeric_scores(responses).items():
            totals.setdefault(key, []).append(value)
    return {key: round(sum(values) / len(values), 2) for key, values in totals.items()}


def process_assessment_completion(db: Session, *, assessment: models.Assessment360) -> models.Assessment360Result:
    completed = (
        db.query(models.Assessment360)
        .filter(
            models.Assessment360.cycle_id == assessment.cycle_id,
            models.Assessment360.evaluatee_id == assessment.evaluatee_id,
            models.Assessment360.status == models.AssessmentStatus.COMPLETED,
        )
        .all()
    )
    scores = consolidate_scores([a.responses or {} for a in completed])
    ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))

    result = (
        db.query(models.Assessment360Result)
        .filter(
            models.Assessment360Result.cycle_id == assessment.cycle_id,
            models.Assessment360Result.user_id == assessment.evaluatee_id,
        )
        .first()
    )
    if result is None:
        result = models.Assessment360Result(cycle_id=assessment.cycle_id, user_id=assessment.evaluatee_id)
    result.consolidated_scores = scores
    result.strengths = [k for k, v in ranked if v >= STRENGTH_THRESHOLD][:MAX_HIGHLIGHTS]
    result.development_areas = [k for k, v in reversed(ranked) if v < DEVELOPMENT_THRESHOLD][:MAX_HIGHLIGHTS]
    result.responses_count = len(completed)
    db.add(result)
    db.flush()

    evaluator = db.get(account_models.User, assessment.evaluator_id)
    evaluatee = db.get(account_models.User, assessment.evaluatee_id)
    feedback_type = f"360_{assessment.relationship.value}"
    skill_ids = list(assessment.cycle.evaluated_skills or []) if assessment.cycle else []
    if evaluator is not None and assessment.relationship != models.AssessmentRelationship.SELF:
        gamification_services.record_feedback_given(
            db,
            user=evaluator,
            recipient_id=assessment.evaluatee_id,
            feedback_type=feedback_type,
            xp_earned=FEEDBACK_GIVEN_XP,
            skill_ids=skill_ids,
        )
    if evaluatee is not None:
        gamification_services.record_feedback_received(
            db,
            user=evaluatee,
            evaluator_id=assessment.evaluator_id,
            feedback_type=feedback_type,
            assessment_cycle_id=assessment.cycle_id,
        )
    logger.info(
        "Assessment consolidated",
        extra={"cycle_id": assessment.cycle_id, "user_id": assessment.evaluatee_id, "responses": len(completed)},
    )
    return result


def list_results(
    db: Session,
    *,
    user_id: Optional[str] = None,
    cycle_id: Optional[str] = None,
) -> List[models.Assessment360Result]:
    query = db.query(models.Assessment360Result)
    if user_id:
        query = query.filter(models.Assessment360Result.user_id == user_id)
    if cycle_id:
        query = query.filter(models.Assessment360Result.cycle_id == cycle_id)
    return query.order_by(models.Assessment360Result.created_at.desc()).all()
