# backend/gameia/apps/accounts/__init__.py
"""
Accounts app

Responsible for:
- Organizations (tenants) and memberships with their roles
- User accounts carrying the gamification wallet and streak
- Public auth endpoints (login, current user, level card)
- Admin endpoints (create organizations and users)

Other apps should depend on these models for anything related to
"who belongs where and with which role".
"""
