"""
Insignia (badge) criteria engine.

Criteria are evaluated against the core event ledger. A badge is eligible
when its prerequisites are unlocked and its criteria are met: when any
criterion is flagged `is_required`, only the required ones gate the unlock;
otherwise all of them must be met. Overall progress is the weighted mean of
the per-criterion progress.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.apps.audit import services as audit_services
from gameia.apps.notifications import models as notification_models
from gameia.apps.notifications import service as notification_service

from . import levels, models, services

logger = logging.getLogger(__name__)

CriterionType = models.CriterionType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InsigniaNotFound(Exception):
    pass


# ---------------------------------------------------------------------------
# LOOKUPS
# ---------------------------------------------------------------------------


def visible_insignias_query(db: Session, organization_id: Optional[str]):
    query = db.query(models.Insignia).filter(models.Insignia.is_active.is_(True))
    if organization_id:
        return query.filter(
            or_(
                models.Insignia.organization_id.is_(None),
                models.Insignia.organization_id == organization_id,
            )
        )
    return query.filter(models.Insignia.organization_id.is_(None))


def get_visible_insignia(db: Session, *, insignia_id: str, organization_id: Optional[str]) -> models.Insignia:
    insignia = visible_insignias_query(db, organization_id).filter(models.Insignia.id == insignia_id).first()
    if insignia is None:
        raise InsigniaNotFound(insignia_id)
    return insignia


def _unlocked_map(db: Session, user_id: str) -> Dict[str, models.UserInsignia]:
    rows = db.query(models.UserInsignia).filter(models.UserInsignia.user_id == user_id).all()
    return {row.insignia_id: row for row in rows}


def _events(
    db: Session,
    *,
    user_id: str,
    event_type: Optional[str],
    window_days: Optional[int],
    now: datetime,
) -> List[models.CoreEvent]:
    query = db.query(models.CoreEvent).filter(models.CoreEvent.user_id == user_id)
    if event_type:
        query = query.filter(models.CoreEvent.event_type == event_type)
    else:
        # Unlock rewards are not activity; counting them would chain unlocks.
        query = query.filter(models.CoreEvent.event_type != models.CoreEventType.INSIGNIA_UNLOCKED.value)
    if window_days:
        query = query.filter(models.CoreEvent.created_at >= now - timedelta(days=window_days))
    return query.order_by(models.CoreEvent.created_at.asc()).all()


# ---------------------------------------------------------------------------
# CRITERIA
# ---------------------------------------------------------------------------


def _required_count(criterion: models.InsigniaCriterion) -> int:
    return max(1, int(criterion.min_count or 0))


def _measure(
    db: Session,
    user: account_models.User,
    criterion: models.InsigniaCriterion,
    now: datetime,
) -> Tuple[float, float, bool, List[str]]:
    """Returns (current, required, met, source event ids) for one criterion."""
    ctype = CriterionType(criterion.criterion_type)
    config = criterion.context_config or {}

    if ctype == CriterionType.STREAK_DAYS:
        current = float(max(user.current_streak or 0, 0))
        required = float(_required_count(criterion))
        return current, required, current >= required, []

    events = _events(
        db,
        user_id=user.id,
        event_type=criterion.event_type,
        window_days=criterion.time_window_days,
        now=now,
    )
    ids = [event.id for event in events]

    if ctype == CriterionType.EVENT_COUNT:
        required = float(_required_count(criterion))
        return float(len(events)), required, len(events) >= required, ids

    if ctype == CriterionType.EVENT_AVG_SCORE:
        scored = [event.score for event in events if event.score is not None]
        minimum = max(1, int(criterion.min_count or 0))
        average = sum(scored) / len(scored) if scored else 0.0
        required = float(criterion.avg_value or 0)
        met = len(scored) >= minimum and average >= required
        return round(average, 2), required, met, ids

    if ctype == CriterionType.EVENT_MIN_SCORE:
        threshold = float(criterion.min_value or 0)
        hits = [event for event in events if event.score is not None and event.score >= threshold]
        required = float(_required_count(criterion))
        return float(len(hits)), required, len(hits) >= required, [event.id for event in hits]

    if ctype == CriterionType.DIVERSITY:
        # Distinct values of a metadata field (e.g. game_type), or distinct event types
        field = config.get("field")
        if field:
            values = {str((event.metadata_json or {}).get(field)) for event in events if (event.metadata_json or {}).get(field)}
        else:
            values = {event.event_type for event in events}
        required = float(_required_count(criterion))
        return float(len(values)), required, len(values) >= required, ids

    if ctype == CriterionType.SKILL_LEVEL:
        skill_id = config.get("skill_id")
        skill_xp = sum(
            event.xp_earned or 0
            for event in events
            if skill_id is None or skill_id in (event.skill_ids or [])
        )
        current = float(levels.calculate_level(skill_xp)) if skill_xp else 0.0
        required = float(criterion.min_value or 1)
        return current, required, current >= required, ids

    if ctype == CriterionType.CONSECUTIVE:
        threshold = float(criterion.min_value or 0)
        best = run = 0
        for event in events:
            if event.score is None or event.score >= threshold:
                run += 1
                best = max(best, run)
            else:
                run = 0
        required = float(_required_count(criterion))
        return float(best), required, best >= required, ids

    if ctype == CriterionType.NO_FAILURES:
        # The latest `min_count` events must all reach `min_value`
        threshold = float(criterion.min_value or 0)
        trailing = 0
        for event in reversed(events):
            if event.score is not None and event.score < threshold:
                break
            trailing += 1
        required = float(_required_count(criterion))
        return float(trailing), required, trailing >= required, ids

    raise ValueError(f"Unsupported criterion type: {criterion.criterion_type}")


def _criterion_progress(current: float, required: float, met: bool) -> int:
    if met:
        return 100
    if required <= 0:
        return 0
    return max(0, min(100, int(round(current / required * 100))))


def check_insignia_criteria(
    db: Session,
    *,
    user: account_models.User,
    insignia: models.Insignia,
    now: Optional[datetime] = None,
    unlocked: Optional[Dict[str, models.UserInsignia]] = None,
) -> dict:
    now = now or _utcnow()
    unlocked = unlocked if unlocked is not None else _unlocked_map(db, user.id)

    if insignia.id in unlocked:
        return {
            "eligible": False,
            "progress": 100,
            "already_unlocked": True,
            "criteria": [],
        }

    prerequisite_ids = list(insignia.prerequisites or [])
    missing_ids = [pid for pid in prerequisite_ids if pid not in unlocked]
    missing: List[dict] = []
    if missing_ids:
        rows = db.query(models.Insignia).filter(models.Insignia.id.in_(missing_ids)).all()
        names = {row.id: row.name for row in rows}
        missing = [{"id": pid, "name": names.get(pid, pid)} for pid in missing_ids]

    criteria = list(insignia.criteria or [])
    if not criteria:
        return {
            "eligible": False,
            "progress": 0,
            "no_criteria": True,
            "prerequisites_missing": bool(missing),
            "missing_prerequisites": missing,
            "criteria": [],
        }

    results: List[dict] = []
    source_events: List[str] = []
    weighted_total = 0.0
    weight_sum = 0.0
    for criterion in criteria:
        current, required, met, ids = _measure(db, user, criterion, now)
        progress = _criterion_progress(current, required, met)
        weight = float(criterion.weight or 1)
        weighted_total += progress * weight
        weight_sum += weight
        if met:
            source_events.extend(ids)
        results.append(
            {
                "criterion_id": criterion.id,
                "criterion_type": CriterionType(criterion.criterion_type).value,
                "description": criterion.description or "",
                "current": current,
                "required": required,
                "progress": progress,
                "met": met,
                "weight": weight,
                "is_required": bool(criterion.is_required),
            }
        )

    required_results = [item for item in results if item["is_required"]]
    gating = required_results or results
    all_required_met = all(item["met"] for item in gating)
    overall = int(round(weighted_total / weight_sum)) if weight_sum else 0

    return {
        "eligible": all_required_met and not missing,
        "progress": overall,
        "already_unlocked": False,
        "prerequisites_missing": bool(missing),
        "missing_prerequisites": missing,
        "no_criteria": False,
        "all_required_met": all_required_met,
        "criteria": results,
        "source_events": sorted(set(source_events))[:50],
    }


# ---------------------------------------------------------------------------
# UNLOCKS
# ---------------------------------------------------------------------------


def unlock_insignia(
    db: Session,
    *,
    user: account_models.User,
    insignia: models.Insignia,
    snapshot: Optional[dict] = None,
    awarded_by: str = "system",
) -> models.UserInsignia:
    snapshot = dict(snapshot or {})
    source_events = snapshot.pop("source_events", [])
    row = models.UserInsignia(
        user_id=user.id,
        insignia_id=insignia.id,
        progress_snapshot=snapshot,
        source_events=source_events,
        awarded_by=awarded_by,
        xp_awarded=insignia.xp_reward or 0,
        coins_awarded=insignia.coins_reward or 0,
    )
    db.add(row)
    db.flush()

    services.record_core_event(
        db,
        user=user,
        event_type=models.CoreEventType.INSIGNIA_UNLOCKED,
        skill_ids=insignia.related_skill_ids or [],
        xp_earned=insignia.xp_reward or 0,
        coins_earned=insignia.coins_reward or 0,
        metadata={"insignia_id": insignia.id, "insignia_key": insignia.insignia_key},
    )
    notification_service.create_notification(
        db,
        user_id=user.id,
        organization_id=user.organization_id,
        title=f"{insignia.icon} {insignia.name}",
        message=insignia.unlock_message or f"You unlocked the insignia {insignia.name}!",
        type=notification_models.NotificationType.ACHIEVEMENT,
        link="/app/insignias",
        metadata={"insignia_id": insignia.id, "star_level": insignia.star_level},
    )
    audit_services.log_event(
        db,
        organization_id=user.organization_id,
        actor_user_id=None if awarded_by == "system" else awarded_by,
        entity_type="insignia",
        entity_id=insignia.id,
        action="UNLOCKED",
        after={"user_id": user.id, "xp": row.xp_awarded, "coins": row.coins_awarded},
    )
    return row


def check_and_unlock_eligible_insignias(
    db: Session,
    *,
    user: account_models.User,
    now: Optional[datetime] = None,
) -> dict:
    """
    Evaluate every visible, locked insignia and unlock the eligible ones.
    Runs until no new unlock happens so prerequisite chains resolve in one call.
    """
    now = now or _utcnow()
    unlocked = _unlocked_map(db, user.id)
    insignias = visible_insignias_query(db, user.organization_id).order_by(models.Insignia.level.asc()).all()
    newly_unlocked: List[str] = []

    progressed = True
    while progressed:
        progressed = False
        for insignia in insignias:
            if insignia.id in unlocked:
                continue
            result = check_insignia_criteria(db, user=user, insignia=insignia, now=now, unlocked=unlocked)
            if not result["eligible"]:
                continue
            row = unlock_insignia(db, user=user, insignia=insignia, snapshot=result)
            unlocked[insignia.id] = row
            newly_unlocked.append(insignia.id)
            progressed = True

    if newly_unlocked:
        logger.info(
            "Insignias unlocked",
            extra={"user_id": user.id, "count": len(newly_unlocked)},
        )
    return {
        "checked_user": user.id,
        "unlocked_count": len(newly_unlocked),
        "unlocked_insignia_ids": newly_unlocked,
    }


def get_user_insignias_progress(db: Session, *, user: account_models.User) -> List[dict]:
    unlocked = _unlocked_map(db, user.id)
    items: List[dict] = []
    insignias = (
        visible_insignias_query(db, user.organization_id)
        .order_by(models.Insignia.insignia_type.asc(), models.Insignia.star_level.asc(), models.Insignia.name.asc())
        .all()
    )
    for insignia in insignias:
        row = unlocked.get(insignia.id)
        if row is not None:
            status = {"eligible": False, "progress": 100, "already_unlocked": True, "criteria": []}
        else:
            status = check_insignia_criteria(db, user=user, insignia=insignia, unlocked=unlocked)
        items.append(
            {
                "insignia": insignia,
                "unlocked": row is not None,
                "unlocked_at": row.unlocked_at if row else None,
                "is_displayed": bool(row.is_displayed) if row else False,
                "progress": status["progress"],
                "criteria_status": status,
            }
        )
    return items


def get_user_insignias_stats(items: Sequence[dict]) -> dict:
    """Aggregate a progress listing into totals by type and star level."""
    by_type: Dict[str, Dict[str, int]] = {
        insignia_type.value: {"total": 0, "unlocked": 0} for insignia_type in models.InsigniaType
    }
    by_star: Dict[int, Dict[str, int]] = defaultdict(lambda: {"total": 0, "unlocked": 0})
    for item in items:
        insignia = item["insignia"]
        type_key = models.InsigniaType(insignia.insignia_type).value
        by_type[type_key]["total"] += 1
        by_star[insignia.star_level]["total"] += 1
        if item["unlocked"]:
            by_type[type_key]["unlocked"] += 1
            by_star[insignia.star_level]["unlocked"] += 1

    unlocked_items = [item for item in items if item["unlocked"]]
    recent = sorted(unlocked_items, key=lambda item: item["unlocked_at"], reverse=True)[:5]
    return {
        "total": len(items),
        "unlocked": len(unlocked_items),
        "by_type": by_type,
        "by_star_level": dict(by_star),
        "recent_unlocks": recent,
    }


def toggle_display(db: Session, *, user: account_models.User, insignia_id: str) -> models.UserInsignia:
    row = (
        db.query(models.UserInsignia)
        .filter(
            models.UserInsignia.user_id == user.id,
            models.UserInsignia.insignia_id == insignia_id,
        )
        .first()
    )
    if row is None:
        raise InsigniaNotFound(insignia_id)
    row.is_displayed = not row.is_displayed
    db.add(row)
    return row


# ---------------------------------------------------------------------------
# ADMIN
# ---------------------------------------------------------------------------


def _criteria_rows(criteria: Sequence) -> List[models.InsigniaCriterion]:
    return [
        models.InsigniaCriterion(
            criterion_type=item.criterion_type,
            event_type=item.event_type,
            min_count=item.min_count,
            min_value=item.min_value,
            avg_value=item.avg_value,
            time_window_days=item.time_window_days,
            context_config=dict(item.context_config or {}),
            weight=item.weight,
            is_required=item.is_required,
            description=item.description,
            sort_order=item.sort_order if item.sort_order else index,
        )
        for index, item in enumerate(criteria)
    ]


def create_insignia(db: Session, *, organization_id: Optional[str], data) -> models.Insignia:
    duplicate = (
        db.query(models.Insignia)
        .filter(
            models.Insignia.organization_id == organization_id,
            models.Insignia.insignia_key == data.insignia_key,
        )
        .first()
    )
    if duplicate is not None:
        raise ValueError(f"Insignia key {data.insignia_key!r} already exists")
    payload = data.model_dump(exclude={"criteria"})
    insignia = models.Insignia(organization_id=organization_id, **payload)
    insignia.criteria = _criteria_rows(data.criteria)
    db.add(insignia)
    db.flush()
    return insignia


def update_insignia(db: Session, *, insignia: models.Insignia, data) -> models.Insignia:
    changes = data.model_dump(exclude_unset=True, exclude={"criteria"})
    for field, value in changes.items():
        setattr(insignia, field, value)
    if data.criteria is not None:
        insignia.criteria = _criteria_rows(data.criteria)
    db.add(insignia)
    db.flush()
    return insignia
