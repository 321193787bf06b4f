"""
Organizations app

Responsible for:
- Teams inside an organization and member assignment
- Invite codes and rate-limited redemption
- Engagement / learning metrics for the admin console
"""
