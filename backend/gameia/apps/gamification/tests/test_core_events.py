from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

from gameia.apps.gamification import router as gamification_router
from gameia.apps.gamification import schemas as gamification_schemas
from gameia.apps.gamification import services as gamification_services
from gameia.apps.notifications import models as notification_models
from gameia.apps.organizations import models as org_models


def test_game_completed_awards_score_bonus_and_updates_streak(db_session, organization, make_user):
    user = make_user(organization)
    today = datetime.now(timezone.utc).date()
    user.last_activity_date = today - timedelta(days=1)
    user.current_streak = 3
    user.longest_streak = 3

    event = gamification_services.record_game_completed(
        db_session, user=user, game_type="quiz", score=80
    )
    db_session.commit()

    assert event.event_type == "GAME_COMPLETED"
    assert event.xp_earned == 18
    assert event.metadata_json["game_type"] == "quiz"
    assert event.organization_id == organization.id
    assert user.xp == 18
    assert user.current_streak == 4
    assert user.longest_streak == 4
    assert user.last_activity_date == today


def test_streak_resets_after_a_gap():
    user = SimpleNamespace(last_activity_date=date(2024, 1, 1), current_streak=9, longest_streak=9)

    gamification_services.touch_streak(user, date(2024, 1, 5))

    assert user.current_streak == 1
    assert user.longest_streak == 9


def test_level_up_creates_notification(db_session, organization, make_user):
    user = make_user(organization, xp=95)

    gamification_services.record_core_event(
        db_session, user=user, event_type="GOAL_ACHIEVED", xp_earned=20
    )
    db_session.commit()

    assert user.level == 2
    notification = db_session.query(notification_models.Notification).one()
    assert notification.type == notification_models.NotificationType.LEVEL_UP
    assert notification.metadata_json["level"] == 2


def test_failed_test_earns_no_xp(db_session, organization, make_user):
    user = make_user(organization)
    payload = gamification_schemas.ScoredTestCreate(test_id="t-1", score=55, target_score=70, xp_earned=40)

    event = gamification_router.record_test_completed(payload, db=db_session, current_user=user)

    assert event.event_type == "TEST_FAILED_TARGET"
    assert event.xp_earned == 0
    assert event.metadata_json["passed"] is False
    assert user.xp == 0


def test_event_carries_member_team(db_session, organization, make_user):
    team = org_models.OrgTeam(organization_id=organization.id, name="Sales")
    db_session.add(team)
    db_session.commit()
    user = make_user(organization, team_id=team.id)

    gamification_services.record_training_completed(
        db_session, user=user, training_id="tr-1", xp_earned=100, coins_earned=20
    )
    gamification_services.record_game_completed(db_session, user=user, game_type="memory", score=40)
    db_session.commit()

    stats = gamification_services.get_team_event_stats(db_session, team_id=team.id)
    by_type = {row["event_type"]: row for row in stats}
    assert by_type["TRAINING_COMPLETED"]["total_xp"] == 100
    assert by_type["GAME_COMPLETED"]["unique_users"] == 1
    assert by_type["GAME_COMPLETED"]["avg_score"] == 40


def test_user_event_stats_group_by_type(db_session, organization, make_user):
    user = make_user(organization)
    for score in (60, 80):
        gamification_services.record_game_completed(db_session, user=user, game_type="quiz", score=score)
    gamification_services.record_feedback_given(
        db_session, user=user, recipient_id="someone", feedback_type="360", xp_earned=15
    )
    db_session.commit()

    stats = gamification_services.get_user_event_stats(db_session, user_id=user.id)

    assert stats[0]["event_type"] == "GAME_COMPLETED"
    assert stats[0]["event_count"] == 2
    assert stats[0]["avg_score"] == 70
    assert {row["event_type"] for row in stats} == {"GAME_COMPLETED", "FEEDBACK_GIVEN"}
    assert user.coins == 0
