"""Request bodies for /notifications and /admin routes."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.models.enums import NotificationCategory, NotificationPriority


class NotificationCreate(BaseModel):
    type: str = Field(..., min_length=1, max_length=48)
    recipient_id: str = Field(..., min_length=1, max_length=64)
    sender_id: str | None = Field(None, max_length=64)
    data: dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    expires_at: datetime | None = None


class BulkNotificationCreate(BaseModel):
    recipient_ids: list[str] = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=500)
    sender_id: str | None = None
    priority: NotificationPriority = NotificationPriority.MEDIUM
    expires_in_days: int | None = Field(None, ge=1, le=365)


class NotificationTemplateUpdate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=500)
    category: NotificationCategory | None = None
    email_subject: str | None = Field(None, max_length=255)
    email_template: str | None = Field(None, max_length=64)
    is_active: bool = True


class JobCancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class TemplatePreviewRequest(BaseModel):
    """Omit data to render with built-in sample data."""

    data: dict[str, Any] | None = None
    subject: str | None = Field(None, max_length=255)
