from gameia.apps.gamification import levels


def test_calculate_level_is_linear_and_capped():
    assert levels.calculate_level(0) == 1
    assert levels.calculate_level(99) == 1
    assert levels.calculate_level(100) == 2
    assert levels.calculate_level(1050) == 11
    assert levels.calculate_level(10_000_000) == levels.MAX_LEVEL
    assert levels.calculate_level(-50) == 1


def test_level_progress_is_clamped():
    assert levels.get_level_progress(150, 2) == 50
    assert levels.get_level_progress(90, 2) == 0
    assert levels.get_level_progress(999, 2) == 100


def test_title_uses_highest_reached_threshold():
    assert levels.get_level_title(1) == ("Novice", "🌱")
    assert levels.get_level_title(4)[0] == "Novice"
    assert levels.get_level_title(12)[0] == "Player"
    assert levels.get_level_title(100)[0] == "Infinite"


def test_tiers_by_level_range():
    assert levels.get_level_tier(1) == "bronze"
    assert levels.get_level_tier(10) == "silver"
    assert levels.get_level_tier(29) == "gold"
    assert levels.get_level_tier(74) == "master"
    assert levels.get_level_tier(95) == "legendary"


def test_level_info_card():
    info = levels.get_level_info(3, 250)
    assert info == {
        "level": 3,
        "xp": 250,
        "xp_required": 300,
        "xp_for_next": 400,
        "progress": 50,
        "title": "Novice",
        "icon": "🌱",
        "tier": "bronze",
    }
