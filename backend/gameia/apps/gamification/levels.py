"""
Level and XP tables.

Progression is linear: every level costs 100 XP and the ladder caps at 100.
Titles unlock at fixed thresholds; tiers group level ranges for badges and
card frames.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

MAX_LEVEL = 100
XP_PER_LEVEL = 100

XP_REWARDS: Dict[str, float] = {
    "GAME_COMPLETED": 10,
    "SCORE_BONUS": 0.1,  # multiplied by the game score
    "ACHIEVEMENT_UNLOCK": 50,
    "TITLE_UNLOCK": 25,
    "DAILY_LOGIN": 5,
    "TOP_10": 100,
    "TOP_3": 250,
    "TOP_1": 500,
}

# (threshold level, title, icon), ascending
LEVEL_TITLES: List[Tuple[int, str, str]] = [
    (1, "Novice", "🌱"),
    (5, "Apprentice", "📘"),
    (10, "Player", "🎮"),
    (15, "Adventurer", "🧭"),
    (20, "Warrior", "⚔️"),
    (25, "Veteran", "🛡️"),
    (30, "Master", "🎓"),
    (35, "Champion", "🏅"),
    (40, "Legend", "🌟"),
    (45, "Hero", "🦸"),
    (50, "Titan", "🗿"),
    (60, "Demigod", "⚡"),
    (70, "God", "🔱"),
    (80, "Supreme", "👑"),
    (90, "Transcendent", "💫"),
    (100, "Infinite", "♾️"),
]

# (minimum level, tier), descending
LEVEL_TIERS: List[Tuple[int, str]] = [
    (90, "legendary"),
    (75, "grandmaster"),
    (60, "master"),
    (45, "diamond"),
    (30, "platinum"),
    (20, "gold"),
    (10, "silver"),
]


def get_xp_for_level(level: int) -> int:
    return level * XP_PER_LEVEL


def calculate_level(xp: int) -> int:
    """Level for a total XP amount: floor(xp / 100) + 1, kept within 1..100."""
    return min(MAX_LEVEL, max(1, int(xp) // XP_PER_LEVEL + 1))


def get_level_tier(level: int) -> str:
    for minimum, tier in LEVEL_TIERS:
        if level >= minimum:
            return tier
    return "bronze"


def get_level_title(level: int) -> Tuple[str, str]:
    """Title and icon of the highest threshold the level has reached."""
    title, icon = LEVEL_TITLES[0][1], LEVEL_TITLES[0][2]
    for threshold, candidate, candidate_icon in LEVEL_TITLES:
        if threshold <= level:
            title, icon = candidate, candidate_icon
        else:
            break
    return title, icon


def get_level_progress(xp: int, level: int) -> int:
    """XP earned inside the current level, clamped to [0, 100]."""
    within = int(xp) - (level - 1) * XP_PER_LEVEL
    return max(0, min(XP_PER_LEVEL, within))


def get_level_info(level: int, xp: int) -> dict:
    title, icon = get_level_title(level)
    return {
        "level": level,
        "xp": xp,
        "xp_required": get_xp_for_level(level),
        "xp_for_next": get_xp_for_level(level + 1),
        "progress": get_level_progress(xp, level),
        "title": title,
        "icon": icon,
        "tier": get_level_tier(level),
    }
