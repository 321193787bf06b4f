"""
Assessments app (360-degree feedback)

Responsible for:
- Assessment cycles of an organization
- Individual 360 assessments (self, manager, peer, direct report)
- Consolidated results per evaluatee and feedback core events
"""
