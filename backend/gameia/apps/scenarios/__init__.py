"""
Scenarios app: AI-generated business decision scenarios for the
decision-making game.
"""
