"""
Producer-side API: turn a domain event into a Notification and, when the recipient wants it by
email right now, a DeliveryJob.

The Notification is committed first and is the source of truth; queuing the email is best effort.
notify() never fails because email delivery is unavailable. Recipients on a daily or weekly
frequency get no per-event email; the event shows up in their next digest.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from app.core.constants import NOTIFICATION_MESSAGE_MAX, NOTIFICATION_TITLE_MAX, SUBJECT_MAX
from app.core.errors import NotificationNotFoundError
from app.models.delivery_job import DeliveryJob
from app.models.enums import Frequency, JobPriority, NotificationPriority
from app.models.notification import Notification
from app.schemas.payloads import ConnectionPayload, JobAlertPayload, JobSummary, NotificationPayload
from app.services.delivery_queue import enqueue_job
from app.services.eligibility import JobCandidate, should_deliver
from app.services.notification_catalog import TemplateSpec, get_template
from app.services.preference_service import get_profile
from app.services.templates import substitute_placeholders

logger = logging.getLogger(__name__)

SYSTEM_ANNOUNCEMENT = "system_announcement"

NotificationListener = Callable[[Notification], None]
_listeners: list[NotificationListener] = []


def on_notification_created(listener: NotificationListener) -> NotificationListener:
    """Register a hook called after every notify(); usable as a decorator. Hook errors are logged only."""
    _listeners.append(listener)
    return listener


def clear_notification_listeners() -> None:
    _listeners.clear()


def _fire_listeners(notification: Notification) -> None:
    for listener in list(_listeners):
        try:
            listener(notification)
        except Exception as e:
            logger.warning("Notification listener %s failed for notification %s: %s", getattr(listener, "__name__", listener), notification.id, e)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _job_priority(priority: NotificationPriority) -> JobPriority:
    if priority == NotificationPriority.URGENT:
        return JobPriority.HIGH
    return JobPriority(priority.value)


def build_email_payload(template: TemplateSpec, notification: Notification, data: dict[str, Any]):
    """Payload shape matching the template's email body."""
    if template.email_template == "job_alert":
        jobs = data.get("jobs") or [
            {"title": data.get("job_title") or notification.title, "company": data.get("company"), "location": data.get("location"), "url": data.get("url")}
        ]
        return JobAlertPayload(
            jobs=[JobSummary.model_validate(j) for j in jobs],
            total_jobs=data.get("total_jobs") or len(jobs),
            all_jobs_url=data.get("all_jobs_url") or data.get("url"),
        )
    if template.email_template == "connection_request":
        return ConnectionPayload(
            from_name=data.get("sender_name") or "Someone",
            from_user_id=notification.sender_id,
            headline=data.get("headline"),
            accept_url=data.get("url"),
        )
    return NotificationPayload(
        notification_id=notification.id,
        type=notification.type,
        title=notification.title,
        message=notification.message,
        url=data.get("url"),
        data=data,
    )


def _enqueue_email(
    db: Session,
    template: TemplateSpec,
    notification: Notification,
    data: dict[str, Any],
    priority: NotificationPriority,
    now: datetime,
) -> DeliveryJob | None:
    if not template.emails:
        return None
    profile = get_profile(db, notification.recipient_id)
    if profile is None or not profile.email:
        logger.debug("No email address for %s; %s stays in-app only", notification.recipient_id, notification.type)
        return None
    if profile.frequency != Frequency.IMMEDIATE.value:
        logger.debug("User %s is on %s digests; %s folded into digest", profile.user_id, profile.frequency, notification.type)
        return None

    decision = should_deliver(JobCandidate(category=template.job_category), profile, now)
    if decision.is_opt_out:
        logger.info("Email for notification %s not queued: %s", notification.id, decision.reason)
        return None

    subject = substitute_placeholders(template.email_subject or notification.title, data).strip()[:SUBJECT_MAX].rstrip()
    subject = subject or notification.title[:SUBJECT_MAX]
    return enqueue_job(
        db,
        recipient_id=notification.recipient_id,
        recipient_email=profile.email,
        category=template.job_category,
        subject=subject,
        template_name=template.email_template,
        payload=build_email_payload(template, notification, data),
        priority=_job_priority(priority),
        scheduled_for=decision.defer_until if decision.is_deferral else now,
        notification_id=notification.id,
        now=now,
    )


def notify(
    db: Session,
    notification_type: str,
    recipient_id: str,
    data: dict[str, Any] | None = None,
    *,
    sender_id: str | None = None,
    priority: NotificationPriority | str = NotificationPriority.MEDIUM,
    expires_at: datetime | None = None,
    now: datetime | None = None,
) -> Notification:
    """
    Create a notification of notification_type for recipient_id and queue its email copy if eligible.
    Raises UnknownNotificationTypeError for types with no template.
    """
    now = now or _utcnow()
    data = dict(data or {})
    priority = NotificationPriority(priority)
    template = get_template(db, notification_type)

    title = substitute_placeholders(template.title, data).strip()[:NOTIFICATION_TITLE_MAX] or notification_type
    message = substitute_placeholders(template.message, data).strip()[:NOTIFICATION_MESSAGE_MAX] or title
    notification = Notification(
        recipient_id=recipient_id,
        sender_id=sender_id,
        type=notification_type,
        title=title,
        message=message,
        category=template.category,
        priority=priority.value,
        is_read=False,
        is_archived=False,
        created_at=now,
        expires_at=expires_at,
        data=data,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)

    try:
        job = _enqueue_email(db, template, notification, data, priority, now)
        if job is not None:
            logger.info("Queued %s email job %s for notification %s", job.category, job.id, notification.id)
    except Exception as e:
        db.rollback()
        logger.exception("Could not queue email for notification %s (%s): %s", notification.id, notification_type, e)

    _fire_listeners(notification)
    return notification


def notify_bulk(
    db: Session,
    recipient_ids: list[str],
    title: str,
    message: str,
    *,
    sender_id: str | None = None,
    priority: NotificationPriority | str = NotificationPriority.MEDIUM,
    expires_in_days: int | None = None,
    now: datetime | None = None,
) -> list[Notification]:
    """System announcement to many recipients (duplicates ignored), optionally expiring after N days."""
    now = now or _utcnow()
    expires_at = now + timedelta(days=expires_in_days) if expires_in_days else None
    created = []
    for recipient_id in dict.fromkeys(recipient_ids):
        created.append(
            notify(
                db,
                SYSTEM_ANNOUNCEMENT,
                recipient_id,
                {"title": title, "message": message},
                sender_id=sender_id,
                priority=priority,
                expires_at=expires_at,
                now=now,
            )
        )
    logger.info("Bulk announcement sent to %s recipients", len(created))
    return created


# --- Reads and user actions ---


def _visible(now: datetime):
    return or_(Notification.expires_at.is_(None), Notification.expires_at > now)


def _owned(db: Session, notification_id: int, recipient_id: str) -> Notification:
    row = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.recipient_id == recipient_id)
        .first()
    )
    if row is None:
        raise NotificationNotFoundError(f"Notification {notification_id} not found")
    return row


def list_notifications(
    db: Session,
    recipient_id: str,
    *,
    category: str | None = None,
    unread_only: bool = False,
    priority: str | None = None,
    limit: int = 20,
    offset: int = 0,
    now: datetime | None = None,
) -> tuple[list[Notification], int, int]:
    """(page newest first, total matching, unread count). Archived and expired notifications are hidden."""
    now = now or _utcnow()
    base = db.query(Notification).filter(
        Notification.recipient_id == recipient_id,
        Notification.is_archived.is_(False),
        _visible(now),
    )
    unread = base.filter(Notification.is_read.is_(False)).count()
    q = base
    if category:
        q = q.filter(Notification.category == category)
    if priority:
        q = q.filter(Notification.priority == priority)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    total = q.count()
    rows = q.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(offset).limit(limit).all()
    return rows, total, unread


def mark_read(db: Session, notification_id: int, recipient_id: str, now: datetime | None = None) -> Notification:
    row = _owned(db, notification_id, recipient_id)
    if not row.is_read:
        row.is_read = True
        row.read_at = now or _utcnow()
        db.commit()
        db.refresh(row)
    return row


def mark_all_read(db: Session, recipient_id: str, now: datetime | None = None) -> int:
    count = (
        db.query(Notification)
        .filter(Notification.recipient_id == recipient_id, Notification.is_read.is_(False))
        .update({Notification.is_read: True, Notification.read_at: now or _utcnow()}, synchronize_session=False)
    )
    db.commit()
    return count


def archive(db: Session, notification_id: int, recipient_id: str) -> Notification:
    row = _owned(db, notification_id, recipient_id)
    row.is_archived = True
    db.commit()
    db.refresh(row)
    return row


def delete_notification(db: Session, notification_id: int, recipient_id: str) -> None:
    row = _owned(db, notification_id, recipient_id)
    db.delete(row)
    db.commit()


def notification_stats(db: Session, recipient_id: str, now: datetime | None = None) -> dict[str, Any]:
    """Totals and unread counts by category and by priority (archived and expired excluded)."""
    now = now or _utcnow()
    rows = (
        db.query(
            Notification.category,
            Notification.priority,
            func.count(Notification.id),
            func.sum(case((Notification.is_read.is_(False), 1), else_=0)),
        )
        .filter(Notification.recipient_id == recipient_id, Notification.is_archived.is_(False), _visible(now))
        .group_by(Notification.category, Notification.priority)
        .all()
    )
    by_category: dict[str, dict[str, int]] = {}
    by_priority: dict[str, dict[str, int]] = {}
    total = unread = 0
    for category, priority, count, unread_count in rows:
        unread_count = int(unread_count or 0)
        total += count
        unread += unread_count
        for bucket, key in ((by_category, category), (by_priority, priority)):
            entry = bucket.setdefault(key, {"total": 0, "unread": 0})
            entry["total"] += count
            entry["unread"] += unread_count
    return {"total": total, "unread": unread, "by_category": by_category, "by_priority": by_priority}


def purge_expired_notifications(db: Session, now: datetime | None = None) -> int:
    now = now or _utcnow()
    deleted = (
        db.query(Notification)
        .filter(Notification.expires_at.isnot(None), Notification.expires_at <= now)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def notification_to_dict(row: Notification) -> dict[str, Any]:
    return {
        "id": row.id,
        "recipient_id": row.recipient_id,
        "sender_id": row.sender_id,
        "type": row.type,
        "title": row.title,
        "message": row.message,
        "category": row.category,
        "priority": row.priority,
        "is_read": row.is_read,
        "read_at": row.read_at.isoformat() if row.read_at else None,
        "is_archived": row.is_archived,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "expires_at": row.expires_at.isoformat() if row.expires_at else None,
        "data": row.data or {},
    }
