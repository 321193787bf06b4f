"""
Core event engine.

Every XP/coin award goes through `record_core_event`, which writes the
ledger row, credits the player's wallet, recomputes the level and keeps the
daily streak current.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.apps.notifications import models as notification_models
from gameia.apps.notifications import service as notification_service

from . import levels, models

logger = logging.getLogger(__name__)

EventType = models.CoreEventType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _event_type_value(event_type: models.CoreEventType | str) -> str:
    return event_type.value if isinstance(event_type, models.CoreEventType) else str(event_type)


def _resolve_team_id(db: Session, user: account_models.User, organization_id: Optional[str]) -> Optional[str]:
    if not organization_id:
        return None
    membership = (
        db.query(account_models.OrganizationMember)
        .filter(
            account_models.OrganizationMember.organization_id == organization_id,
            account_models.OrganizationMember.user_id == user.id,
        )
        .first()
    )
    return membership.team_id if membership else None


def touch_streak(user: account_models.User, today: date) -> None:
    """Advance the daily streak: same day is a no-op, a gap resets to 1."""
    last = user.last_activity_date
    if last == today:
        return
    if last is not None and last == today - timedelta(days=1):
        user.current_streak = (user.current_streak or 0) + 1
    else:
        user.current_streak = 1
    user.longest_streak = max(user.longest_streak or 0, user.current_streak)
    user.last_activity_date = today


def credit_user(
    db: Session,
    user: account_models.User,
    *,
    xp: int = 0,
    coins: int = 0,
) -> bool:
    """Add XP/coins and recompute the level. Returns True on level up."""
    previous_level = user.level or 1
    user.xp = max(0, (user.xp or 0) + int(xp))
    user.coins = max(0, (user.coins or 0) + int(coins))
    user.level = levels.calculate_level(user.xp)
    db.add(user)
    return user.level > previous_level


def record_core_event(
    db: Session,
    *,
    user: account_models.User,
    event_type: models.CoreEventType | str,
    team_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    skill_ids: Optional[Iterable[str]] = None,
    xp_earned: int = 0,
    coins_earned: int = 0,
    score: Optional[float] = None,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> models.CoreEvent:
    now = now or _utcnow()
    organization_id = organization_id or user.organization_id
    if team_id is None:
        team_id = _resolve_team_id(db, user, organization_id)

    event = models.CoreEvent(
        user_id=user.id,
        organization_id=organization_id,
        team_id=team_id,
        event_type=_event_type_value(event_type),
        skill_ids=list(skill_ids or []),
        xp_earned=int(xp_earned or 0),
        coins_earned=int(coins_earned or 0),
        score=score,
        metadata_json=metadata or {},
        created_at=now,
    )
    db.add(event)

    touch_streak(user, now.date())
    leveled_up = credit_user(db, user, xp=event.xp_earned, coins=event.coins_earned)
    db.flush()

    if leveled_up:
        title, icon = levels.get_level_title(user.level)
        notification_service.create_notification(
            db,
            user_id=user.id,
            organization_id=organization_id,
            title=f"{icon} Level {user.level}!",
            message=f"You reached level {user.level}: {title}",
            type=notification_models.NotificationType.LEVEL_UP,
            metadata={"level": user.level, "tier": levels.get_level_tier(user.level)},
        )

    logger.debug(
        "Core event recorded",
        extra={"user_id": user.id, "event_type": event.event_type, "xp": event.xp_earned},
    )
    return event


# ---------------------------------------------------------------------------
# CONVENIENCE RECORDERS
# ---------------------------------------------------------------------------


def record_game_completed(
    db: Session,
    *,
    user: account_models.User,
    game_type: str,
    score: float,
    xp_earned: Optional[int] = None,
    coins_earned: int = 0,
    skill_ids: Optional[List[str]] = None,
    metadata: Optional[dict] = None,
) -> models.CoreEvent:
    if xp_earned is None:
        # Base completion XP plus 10% of the score
        xp_earned = int(levels.XP_REWARDS["GAME_COMPLETED"] + round(score * levels.XP_REWARDS["SCORE_BONUS"]))
    return record_core_event(
        db,
        user=user,
        event_type=EventType.GAME_COMPLETED,
        skill_ids=skill_ids,
        xp_earned=xp_earned,
        coins_earned=coins_earned,
        score=score,
        metadata={"game_type": game_type, **(metadata or {})},
    )


def record_training_completed(
    db: Session,
    *,
    user: account_models.User,
    training_id: str,
    xp_earned: int,
    coins_earned: int,
    skill_ids: Optional[List[str]] = None,
    metadata: Optional[dict] = None,
) -> models.CoreEvent:
    return record_core_event(
        db,
        user=user,
        event_type=EventType.TRAINING_COMPLETED,
        skill_ids=skill_ids,
        xp_earned=xp_earned,
        coins_earned=coins_earned,
        metadata={"training_id": training_id, **(metadata or {})},
    )


def record_test_completed(
    db: Session,
    *,
    user: account_models.User,
    test_id: str,
    score: float,
    target_score: float,
    xp_earned: int,
    skill_ids: Optional[List[str]] = None,
    metadata: Optional[dict] = None,
) -> models.CoreEvent:
    passed = score >= target_score
    return record_core_event(
        db,
        user=user,
        event_type=EventType.TEST_COMPLETED if passed else EventType.TEST_FAILED_TARGET,
        skill_ids=skill_ids,
        xp_earned=xp_earned if passed else 0,
        score=score,
        metadata={
            "test_id": test_id,
            "target_score": target_score,
            "passed": passed,
            **(metadata or {}),
        },
    )


def record_streak_maintained(
    db: Session,
    *,
    user: account_models.User,
    streak_days: int,
    xp_earned: int,
    coins_earned: int,
) -> models.CoreEvent:
    return record_core_event(
        db,
        user=user,
        event_type=EventType.STREAK_MAINTAINED,
        xp_earned=xp_earned,
        coins_earned=coins_earned,
        score=streak_days,
        metadata={"streak_days": streak_days},
    )


def record_streak_broken(
    db: Session,
    *,
    user: account_models.User,
    previous_streak: int,
) -> models.CoreEvent:
    return record_core_event(
        db,
        user=user,
        event_type=EventType.STREAK_BROKEN,
        score=previous_streak,
        metadata={"previous_streak": previous_streak},
    )


def record_goal_achieved(
    db: Session,
    *,
    user: account_models.User,
    goal_id: str,
    goal_type: str,
    xp_earned: int,
    coins_earned: int,
    skill_ids: Optional[List[str]] = None,
) -> models.CoreEvent:
    return record_core_event(
        db,
        user=user,
        event_type=EventType.GOAL_ACHIEVED,
        skill_ids=skill_ids,
        xp_earned=xp_earned,
        coins_earned=coins_earned,
        metadata={"goal_id": goal_id, "goal_type": goal_type},
    )


def record_goal_failed(
    db: Session,
    *,
    user: account_models.User,
    goal_id: str,
    goal_type: str,
    target_value: float,
    achieved_value: float,
) -> models.CoreEvent:
    score = round(achieved_value / target_value * 100, 2) if target_value else 0
    return record_core_event(
        db,
        user=user,
        event_type=EventType.GOAL_FAILED,
        score=score,
        metadata={
            "goal_id": goal_id,
            "goal_type": goal_type,
            "target_value": target_value,
            "achieved_value": achieved_value,
        },
    )


def record_feedback_given(
    db: Session,
    *,
    user: account_models.User,
    recipient_id: str,
    feedback_type: str,
    xp_earned: int,
    skill_ids: Optional[List[str]] = None,
) -> models.CoreEvent:
    return record_core_event(
        db,
        user=user,
        event_type=EventType.FEEDBACK_GIVEN,
        skill_ids=skill_ids,
        xp_earned=xp_earned,
        metadata={"recipient_id": recipient_id, "feedback_type": feedback_type},
    )


def record_feedback_received(
    db: Session,
    *,
    user: account_models.User,
    evaluator_id: str,
    feedback_type: str,
    assessment_cycle_id: Optional[str] = None,
) -> models.CoreEvent:
    return record_core_event(
        db,
        user=user,
        event_type=EventType.FEEDBACK_RECEIVED,
        metadata={
            "evaluator_id": evaluator_id,
            "feedback_type": feedback_type,
            "assessment_cycle_id": assessment_cycle_id,
        },
    )


# ---------------------------------------------------------------------------
# STATS
# ---------------------------------------------------------------------------


def get_user_event_stats(db: Session, *, user_id: str, days: int = 30) -> List[dict]:
    since = _utcnow() - timedelta(days=days)
    rows = (
        db.query(
            models.CoreEvent.event_type,
            func.count(models.CoreEvent.id),
            func.coalesce(func.sum(models.CoreEvent.xp_earned), 0),
            func.coalesce(func.sum(models.CoreEvent.coins_earned), 0),
            func.avg(models.CoreEvent.score),
            func.max(models.CoreEvent.created_at),
        )
        .filter(
            models.CoreEvent.user_id == user_id,
            models.CoreEvent.created_at >= since,
        )
        .group_by(models.CoreEvent.event_type)
        .order_by(func.count(models.CoreEvent.id).desc())
        .all()
    )
    return [
        {
            "event_type": event_type,
            "event_count": int(count),
            "total_xp": int(total_xp),
            "total_coins": int(total_coins),
            "avg_score": round(float(avg_score), 2) if avg_score is not None else None,
            "last_event_at": last_at,
        }
        for event_type, count, total_xp, total_coins, avg_score, last_at in rows
    ]


def get_team_event_stats(db: Session, *, team_id: str, days: int = 30) -> List[dict]:
    since = _utcnow() - timedelta(days=days)
    rows = (
        db.query(
            models.CoreEvent.event_type,
            func.count(models.CoreEvent.id),
            func.count(func.distinct(models.CoreEvent.user_id)),
            func.coalesce(func.sum(models.CoreEvent.xp_earned), 0),
            func.avg(models.CoreEvent.score),
        )
        .filter(
            models.CoreEvent.team_id == team_id,
            models.CoreEvent.created_at >= since,
        )
        .group_by(models.CoreEvent.event_type)
        .order_by(func.count(models.CoreEvent.id).desc())
        .all()
    )
    return [
        {
            "event_type": event_type,
            "event_count": int(count),
            "unique_users": int(unique_users),
            "total_xp": int(total_xp),
            "avg_score": round(float(avg_score), 2) if avg_score is not None else None,
        }
        for event_type, count, unique_users, total_xp, avg_score in rows
    ]
