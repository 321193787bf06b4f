from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class AuditEventRead(BaseModel):
    id: str
    event_type: str
    entity_type: str
    entity_id: str
    action: str
    actor_user_id: Optional[str] = None
    occurred_at: datetime
    before: Optional[dict] = None
    after: Optional[dict] = None
    metadata: Optional[dict] = Field(default=None, validation_alias="metadata_json")

    class Config:
        from_attributes = True
        populate_by_name = True


class EntityHistory(BaseModel):
    """Timeline of one admin entity, oldest change first."""

    entity_type: str
    entity_id: str
    created_by: Optional[str] = None
    last_changed_at: Optional[datetime] = None
    events: List[AuditEventRead]
