"""
Operational surface for the delivery queue: analytics, job listing, manual retry/cancel,
email template previews and the notification template overrides.
"""
import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.config import settings
from app.core.constants import ADMIN_JOBS_PAGE_LIMIT
from app.core.errors import STATUS_BAD_REQUEST, NotificationError, notify_error_to_http
from app.db.session import get_db
from app.db.types import as_utc
from app.models.enums import JobCategory, JobStatus
from app.schemas.notifications import JobCancelRequest, NotificationTemplateUpdate, TemplatePreviewRequest
from app.services import delivery_queue
from app.services.notification_catalog import list_templates, upsert_template
from app.services.template_preview import preview_template
from app.services.templates import TemplateRenderer

router = APIRouter(prefix="/admin")
logger = logging.getLogger(__name__)

_renderer: TemplateRenderer | None = None


def get_template_renderer() -> TemplateRenderer:
    global _renderer
    if _renderer is None:
        _renderer = TemplateRenderer()
    return _renderer


@router.get("/delivery/stats")
def get_delivery_stats(
    db: Session = Depends(get_db),
    start: datetime | None = Query(None, description="Only jobs created at or after this instant (naive = UTC)"),
    end: datetime | None = Query(None, description="Only jobs created before this instant (naive = UTC)"),
) -> dict[str, Any]:
    """Jobs per status and per category, plus total send attempts. Every status present."""
    start, end = as_utc(start), as_utc(end)
    if start and end and start >= end:
        raise HTTPException(status_code=STATUS_BAD_REQUEST, detail="start must be before end")
    return delivery_queue.delivery_analytics(db, start=start, end=end)


@router.get("/delivery/jobs")
def list_delivery_jobs(
    db: Session = Depends(get_db),
    status: JobStatus | None = Query(None),
    category: JobCategory | None = Query(None),
    recipient_id: str | None = Query(None),
    limit: int = Query(20, ge=1, le=ADMIN_JOBS_PAGE_LIMIT),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    rows, total = delivery_queue.list_jobs(
        db,
        status=status.value if status else None,
        category=category.value if category else None,
        recipient_id=recipient_id,
        limit=limit,
        offset=offset,
    )
    return {"jobs": [delivery_queue.job_to_dict(j) for j in rows], "total": total, "limit": limit, "offset": offset}


@router.post("/delivery/jobs/{job_id}/retry")
def retry_delivery_job(job_id: int, db: Session = Depends(get_db)) -> dict[str, Any]:
    """failed -> pending with attempts reset; picked up on the next tick."""
    try:
        job = delivery_queue.retry_job(db, job_id)
    except NotificationError as exc:
        raise notify_error_to_http(exc) from exc
    return delivery_queue.job_to_dict(job)


@router.post("/delivery/jobs/{job_id}/cancel")
def cancel_delivery_job(
    job_id: int,
    body: JobCancelRequest | None = Body(None),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """pending/processing -> cancelled. Sent and failed jobs cannot be cancelled."""
    reason = (body.reason if body else None) or delivery_queue.ADMIN_CANCEL_REASON
    try:
        job = delivery_queue.cancel_job(db, job_id, reason)
    except NotificationError as exc:
        raise notify_error_to_http(exc) from exc
    return delivery_queue.job_to_dict(job)


# --- Templates ---


@router.post("/delivery/templates/{template_name}/preview")
def preview_email_template(
    template_name: str,
    body: TemplatePreviewRequest | None = Body(None),
    renderer: TemplateRenderer = Depends(get_template_renderer),
) -> dict[str, Any]:
    """Render an email template with sample data, or with body.data, without queuing anything."""
    body = body or TemplatePreviewRequest()
    try:
        return preview_template(renderer, template_name, body.data, body.subject, settings.frontend_url)
    except NotificationError as exc:
        raise notify_error_to_http(exc) from exc


@router.get("/notification-templates")
def get_notification_templates(db: Session = Depends(get_db)) -> dict[str, Any]:
    return {"templates": list_templates(db)}


@router.put("/notification-templates/{notification_type}")
def put_notification_template(
    notification_type: str,
    body: NotificationTemplateUpdate,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    try:
        row = upsert_template(db, notification_type, body)
    except NotificationError as exc:
        raise notify_error_to_http(exc) from exc
    return {
        "type": row.type,
        "title": row.title,
        "message": row.message,
        "category": row.category,
        "email_subject": row.email_subject,
        "email_template": row.email_template,
        "is_active": row.is_active,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
