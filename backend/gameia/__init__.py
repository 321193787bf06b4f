# backend/gameia/__init__.py
"""
Import ORM models from each app so that:

- Alembic and Base.metadata.create_all() see all tables.
- The package exposes a clear surface.

The actual model classes are kept in gameia/apps/*/models.py.
"""

from .apps.accounts import models as accounts_models              # organizations / users / memberships
from .apps.organizations import models as organizations_models    # teams + invites
from .apps.gamification import models as gamification_models      # core events + insignias
from .apps.training import models as training_models              # trainings, modules, progress
from .apps.certificates import models as certificates_models      # issued certificates
from .apps.notifications import models as notifications_models    # notifications, alerts, email log
from .apps.next_steps import models as next_steps_models          # aggregated to-do list
from .apps.assessments import models as assessments_models        # 360 cycles
from .apps.pdi import models as pdi_models                        # development plans
from .apps.audit import models as audit_models                    # audit trail

__all__ = [
    "accounts_models",
    "organizations_models",
    "gamification_models",
    "training_models",
    "certificates_models",
    "notifications_models",
    "next_steps_models",
    "assessments_models",
    "pdi_models",
    "audit_models",
]
