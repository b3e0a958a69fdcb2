"""
User notifications API: in-app notifications, read/archive state and delivery preferences.

Recipient identified by X-Recipient-Id header or ?recipient_id= (default 'default').
POST /notifications is the producer entry point for services that cannot import notify() directly.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from app.core.constants import NOTIFICATIONS_PAGE_LIMIT
from app.core.errors import NotificationError, notify_error_to_http
from app.db.session import get_db
from app.models.enums import NotificationCategory, NotificationPriority
from app.schemas.notifications import BulkNotificationCreate, NotificationCreate
from app.schemas.preferences import PreferenceProfileOut, PreferenceProfileUpdate
from app.services import notification_service
from app.services.preference_service import get_or_create_profile, profile_to_out, upsert_profile

router = APIRouter()
logger = logging.getLogger(__name__)

DEFAULT_RECIPIENT_ID = "default"


def _recipient_id(
    x_recipient_id: str | None = Header(None, alias="X-Recipient-Id"),
    recipient_id: str | None = Query(None),
) -> str:
    return (x_recipient_id or recipient_id or DEFAULT_RECIPIENT_ID).strip() or DEFAULT_RECIPIENT_ID


# --- List / stats ---


@router.get("/notifications")
def list_notifications(
    db: Session = Depends(get_db),
    recipient_id: str = Depends(_recipient_id),
    category: NotificationCategory | None = Query(None),
    priority: NotificationPriority | None = Query(None),
    unread_only: bool = Query(False),
    limit: int = Query(20, ge=1, le=NOTIFICATIONS_PAGE_LIMIT),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    """
    List notifications for the recipient, newest first. Archived and expired ones are never returned.
    unread_count is over all visible notifications regardless of filters (badge count).
    """
    rows, total, unread = notification_service.list_notifications(
        db,
        recipient_id,
        category=category.value if category else None,
        priority=priority.value if priority else None,
        unread_only=unread_only,
        limit=limit,
        offset=offset,
    )
    return {
        "notifications": [notification_service.notification_to_dict(r) for r in rows],
        "total": total,
        "unread_count": unread,
        "limit": limit,
        "offset": offset,
    }


@router.get("/notifications/stats")
def get_notification_stats(
    db: Session = Depends(get_db),
    recipient_id: str = Depends(_recipient_id),
) -> dict[str, Any]:
    return notification_service.notification_stats(db, recipient_id)


# --- Create ---


@router.post("/notifications", status_code=201)
def create_notification(body: NotificationCreate, db: Session = Depends(get_db)) -> dict[str, Any]:
    """Create a notification from a domain event; the email copy is queued when the recipient wants one."""
    try:
        row = notification_service.notify(
            db,
            body.type,
            body.recipient_id,
            body.data,
            sender_id=body.sender_id,
            priority=body.priority,
            expires_at=body.expires_at,
        )
    except NotificationError as exc:
        raise notify_error_to_http(exc) from exc
    return notification_service.notification_to_dict(row)


@router.post("/notifications/bulk", status_code=201)
def create_bulk_notification(body: BulkNotificationCreate, db: Session = Depends(get_db)) -> dict[str, Any]:
    """System announcement to many recipients."""
    rows = notification_service.notify_bulk(
        db,
        body.recipient_ids,
        body.title,
        body.message,
        sender_id=body.sender_id,
        priority=body.priority,
        expires_in_days=body.expires_in_days,
    )
    return {"count": len(rows), "ids": [r.id for r in rows]}


# --- Read / archive / delete ---


@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    recipient_id: str = Depends(_recipient_id),
) -> dict[str, Any]:
    try:
        row = notification_service.mark_read(db, notification_id, recipient_id)
    except NotificationError as exc:
        raise notify_error_to_http(exc) from exc
    return {"ok": True, "id": row.id, "read_at": row.read_at.isoformat() if row.read_at else None}


@router.post("/notifications/mark-all-read")
def mark_all_notifications_read(
    db: Session = Depends(get_db),
    recipient_id: str = Depends(_recipient_id),
) -> dict[str, Any]:
    count = notification_service.mark_all_read(db, recipient_id)
    return {"ok": True, "marked_count": count}


@router.patch("/notifications/{notification_id}/archive")
def archive_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    recipient_id: str = Depends(_recipient_id),
) -> dict[str, Any]:
    try:
        row = notification_service.archive(db, notification_id, recipient_id)
    except NotificationError as exc:
        raise notify_error_to_http(exc) from exc
    return {"ok": True, "id": row.id}


@router.delete("/notifications/{notification_id}")
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    recipient_id: str = Depends(_recipient_id),
) -> dict[str, Any]:
    try:
        notification_service.delete_notification(db, notification_id, recipient_id)
    except NotificationError as exc:
        raise notify_error_to_http(exc) from exc
    return {"ok": True}


# --- Preferences ---


@router.get("/notifications/preferences", response_model=PreferenceProfileOut)
def get_preferences(
    db: Session = Depends(get_db),
    recipient_id: str = Depends(_recipient_id),
) -> PreferenceProfileOut:
    """Current preferences; a default (everything on, immediate) profile is created on first read."""
    return profile_to_out(get_or_create_profile(db, recipient_id))


@router.put("/notifications/preferences", response_model=PreferenceProfileOut)
def update_preferences(
    body: PreferenceProfileUpdate,
    db: Session = Depends(get_db),
    recipient_id: str = Depends(_recipient_id),
) -> PreferenceProfileOut:
    """Partial update; omitted sections keep their stored values."""
    try:
        row = upsert_profile(db, recipient_id, body)
    except NotificationError as exc:
        raise notify_error_to_http(exc) from exc
    return profile_to_out(row)
