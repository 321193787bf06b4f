"""
Gamification app

Responsible for:
- Level / XP tables and level cards
- The core event ledger (every XP and coin award)
- Daily streaks
- Insignias (badges) and their unlock criteria
"""
