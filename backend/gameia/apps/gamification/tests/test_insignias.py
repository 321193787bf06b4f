from __future__ import annotations

import pytest
from fastapi import HTTPException

from gameia.apps.audit import models as audit_models
from gameia.apps.gamification import insignias
from gameia.apps.gamification import models as gamification_models
from gameia.apps.gamification import router as gamification_router
from gameia.apps.gamification import schemas as gamification_schemas
from gameia.apps.gamification import services as gamification_services


def _insignia(db, *, key, criteria, organization_id=None, prerequisites=None, level=1, xp_reward=0, star_level=1):
    insignia = gamification_models.Insignia(
        organization_id=organization_id,
        insignia_key=key,
        name=key.replace("_", " ").title(),
        icon="🏅",
        star_level=star_level,
        level=level,
        prerequisites=prerequisites or [],
        xp_reward=xp_reward,
    )
    insignia.criteria = [
        gamification_models.InsigniaCriterion(
            **{**criterion, "criterion_type": gamification_models.CriterionType(criterion["criterion_type"])},
            sort_order=index,
        )
        for index, criterion in enumerate(criteria)
    ]
    db.add(insignia)
    db.commit()
    return insignia


def _play(db, user, *scores):
    for score in scores:
        gamification_services.record_game_completed(db, user=user, game_type="quiz", score=score)
    db.commit()


def test_event_count_progress_and_unlock(db_session, organization, make_user):
    user = make_user(organization)
    badge = _insignia(
        db_session,
        key="first_steps",
        xp_reward=50,
        criteria=[{"criterion_type": "event_count", "event_type": "GAME_COMPLETED", "min_count": 4}],
    )
    _play(db_session, user, 10)

    check = insignias.check_insignia_criteria(db_session, user=user, insignia=badge)
    assert check["eligible"] is False
    assert check["progress"] == 25
    assert check["criteria"][0]["current"] == 1

    _play(db_session, user, 10, 10, 10)
    xp_before = user.xp
    result = insignias.check_and_unlock_eligible_insignias(db_session, user=user)
    db_session.commit()

    assert result["unlocked_count"] == 1
    assert result["unlocked_insignia_ids"] == [badge.id]
    assert user.xp == xp_before + 50
    audit = db_session.query(audit_models.AuditEvent).filter_by(entity_type="insignia").one()
    assert audit.action == "UNLOCKED"

    again = insignias.check_and_unlock_eligible_insignias(db_session, user=user)
    assert again["unlocked_count"] == 0
    assert insignias.check_insignia_criteria(db_session, user=user, insignia=badge)["already_unlocked"] is True


def test_average_score_requires_minimum_sample(db_session, organization, make_user):
    user = make_user(organization)
    badge = _insignia(
        db_session,
        key="sharp_mind",
        criteria=[
            {
                "criterion_type": "event_avg_score",
                "event_type": "GAME_COMPLETED",
                "min_count": 3,
                "avg_value": 70,
            }
        ],
    )
    _play(db_session, user, 90, 95)
    assert insignias.check_insignia_criteria(db_session, user=user, insignia=badge)["eligible"] is False

    _play(db_session, user, 60)
    check = insignias.check_insignia_criteria(db_session, user=user, insignia=badge)
    assert check["eligible"] is True
    assert check["criteria"][0]["current"] == pytest.approx(81.67)


def test_optional_criteria_do_not_gate_when_required_ones_exist(db_session, organization, make_user):
    user = make_user(organization)
    badge = _insignia(
        db_session,
        key="consistent",
        criteria=[
            {"criterion_type": "consecutive", "event_type": "GAME_COMPLETED", "min_count": 2, "min_value": 50},
            {
                "criterion_type": "diversity",
                "event_type": "GAME_COMPLETED",
                "min_count": 5,
                "context_config": {"field": "game_type"},
                "is_required": False,
            },
        ],
    )
    _play(db_session, user, 70, 20, 55, 65)

    check = insignias.check_insignia_criteria(db_session, user=user, insignia=badge)

    assert check["eligible"] is True
    assert check["criteria"][0]["met"] is True
    assert check["criteria"][1]["met"] is False
    # (100 + 20) / 2
    assert check["progress"] == 60


def test_prerequisite_chain_unlocks_in_one_pass(db_session, organization, make_user):
    user = make_user(organization)
    base = _insignia(
        db_session,
        key="rookie",
        criteria=[{"criterion_type": "event_count", "event_type": "GAME_COMPLETED", "min_count": 1}],
    )
    advanced = _insignia(
        db_session,
        key="no_mistakes",
        level=2,
        prerequisites=[base.id],
        criteria=[{"criterion_type": "no_failures", "event_type": "GAME_COMPLETED", "min_count": 2, "min_value": 50}],
    )
    _play(db_session, user, 80, 90)

    check = insignias.check_insignia_criteria(db_session, user=user, insignia=advanced)
    assert check["prerequisites_missing"] is True
    assert check["missing_prerequisites"] == [{"id": base.id, "name": "Rookie"}]

    result = insignias.check_and_unlock_eligible_insignias(db_session, user=user)
    assert result["unlocked_insignia_ids"] == [base.id, advanced.id]


def test_unlock_rewards_do_not_count_as_activity(db_session, organization, make_user):
    user = make_user(organization)
    first = _insignia(
        db_session,
        key="any_activity",
        criteria=[{"criterion_type": "event_count", "event_type": None, "min_count": 1}],
    )
    second = _insignia(
        db_session,
        key="busy_bee",
        level=2,
        criteria=[{"criterion_type": "event_count", "event_type": None, "min_count": 2}],
    )
    _play(db_session, user, 70)

    result = insignias.check_and_unlock_eligible_insignias(db_session, user=user)
    db_session.commit()

    assert result["unlocked_insignia_ids"] == [first.id]
    check = insignias.check_insignia_criteria(db_session, user=user, insignia=second)
    assert check["eligible"] is False
    assert check["criteria"][0]["current"] == 1


def test_other_organizations_insignias_are_invisible(db_session, organization, make_user):
    from gameia.apps.accounts import models as account_models

    other = account_models.Organization(name="Other", slug="other")
    db_session.add(other)
    db_session.commit()
    foreign = _insignia(db_session, key="foreign", organization_id=other.id, criteria=[])
    user = make_user(organization)

    with pytest.raises(HTTPException) as exc:
        gamification_router.check_insignia(foreign.id, db=db_session, current_user=user)
    assert exc.value.status_code == 404


def test_stats_and_display_toggle(db_session, organization, make_user):
    user = make_user(organization)
    badge = _insignia(
        db_session,
        key="streaker",
        star_level=2,
        criteria=[{"criterion_type": "streak_days", "min_count": 1}],
    )
    _insignia(
        db_session,
        key="legend",
        star_level=5,
        criteria=[{"criterion_type": "streak_days", "min_count": 30}],
    )
    _play(db_session, user, 10)
    gamification_router.check_and_unlock(db=db_session, current_user=user)

    stats = gamification_router.insignia_stats(db=db_session, current_user=user)
    assert stats["total"] == 2
    assert stats["unlocked"] == 1
    assert stats["by_star_level"][2] == {"total": 1, "unlocked": 1}
    assert stats["by_type"]["skill"]["total"] == 2
    assert [item["insignia"].id for item in stats["recent_unlocks"]] == [badge.id]

    row = gamification_router.toggle_display(badge.id, db=db_session, current_user=user)
    assert row.is_displayed is True


def test_admin_creates_insignia_with_criteria(db_session, organization, make_user):
    from gameia.apps.accounts import models as account_models

    admin = make_user(organization, role=account_models.OrgRole.ADMIN)
    payload = gamification_schemas.InsigniaCreate(
        insignia_key="team_player",
        name="Team Player",
        criteria=[
            gamification_schemas.CriterionCreate(
                criterion_type="event_count", event_type="FEEDBACK_GIVEN", min_count=5
            )
        ],
    )

    insignia = gamification_router.create_insignia(payload, db=db_session, current_user=admin)
    assert insignia.organization_id == organization.id
    assert len(insignia.criteria) == 1

    with pytest.raises(HTTPException) as exc:
        gamification_router.create_insignia(payload, db=db_session, current_user=admin)
    assert exc.value.status_code == 409
