from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field

from .models import EmailStatus, NotificationType


class NotificationRead(BaseModel):
    id: str
    user_id: str
    organization_id: Optional[str] = None
    type: NotificationType
    title: str
    message: str
    link: Optional[str] = None
    priority: str
    metadata: Optional[dict] = Field(default=None, validation_alias="metadata_json")
    is_read: bool
    read_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
        populate_by_name = True


class NotificationList(BaseModel):
    items: List[NotificationRead]
    unread_count: int


class UnreadCount(BaseModel):
    unread_count: int


class BulkResult(BaseModel):
    updated: int


class AlertRunResult(BaseModel):
    processed: int
    alerts: Optional[List[str]] = None
    message: Optional[str] = None


class EmailSendRequest(BaseModel):
    to: EmailStr
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


class EmailLogRead(BaseModel):
    id: str
    organization_id: Optional[str] = None
    created_at: datetime
    sent_at: Optional[datetime] = None
    recipient: str
    subject: str
    template_key: str
    status: EmailStatus
    error: Optional[str] = None
    correlation_id: Optional[str] = None

    class Config:
        from_attributes = True
