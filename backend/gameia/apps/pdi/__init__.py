"""
PDI app (individual development plans)

Responsible for:
- Plans, goals and suggested linked actions
- Automatic goal progress driven by trainings, games, challenges and tests
- Goal progress history
"""
