"""
Delivery queue: persistence and state transitions for DeliveryJob.

Every status change is a conditional UPDATE on (id, status) -- a compare-and-swap. If the row is no
longer in the expected prior state, zero rows match and the caller learns it lost the race
(claim_job returns False; the other transitions raise StaleJobStateError). This is what keeps two
overlapping processors from sending the same job twice.

State machine:
  pending    -> processing                  claim_job (attempts += 1)
  processing -> sent                        mark_sent
  processing -> pending                     schedule_retry (transport failure, attempts left)
  processing -> pending                     defer_job (quiet hours; attempt rolled back)
  processing -> failed                      mark_failed (attempts exhausted)
  processing -> cancelled                   cancel_claimed (user opted out)
  pending|processing -> cancelled           cancel_job (admin)
  failed     -> pending                     retry_job (admin; attempts reset to 0)
  processing (stale) -> pending | failed    recover_stale_jobs
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.constants import BATCH_SIZE, MAX_ATTEMPTS, RETENTION_DAYS, STALE_PROCESSING_MINUTES, SUBJECT_MAX
from app.core.errors import InvalidJobTransitionError, JobNotFoundError, StaleJobStateError
from app.models.delivery_job import DeliveryJob
from app.models.enums import TERMINAL_STATUSES, Channel, JobPriority, JobStatus

logger = logging.getLogger(__name__)

PENDING = JobStatus.PENDING.value
PROCESSING = JobStatus.PROCESSING.value
SENT = JobStatus.SENT.value
FAILED = JobStatus.FAILED.value
CANCELLED = JobStatus.CANCELLED.value

ADMIN_CANCEL_REASON = "Cancelled by admin"
STALLED_REASON = "Processing stalled and no attempts left"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Create ---


def enqueue_job(
    db: Session,
    *,
    recipient_id: str,
    recipient_email: str,
    category: str,
    subject: str,
    template_name: str,
    payload: BaseModel | dict[str, Any],
    priority: JobPriority = JobPriority.MEDIUM,
    scheduled_for: datetime | None = None,
    dedupe_key: str | None = None,
    notification_id: int | None = None,
    channel: str = Channel.EMAIL.value,
    now: datetime | None = None,
) -> DeliveryJob:
    """Insert a pending job and commit. scheduled_for defaults to now; subject is cut to the column width."""
    now = now or _utcnow()
    priority = JobPriority(priority)
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    job = DeliveryJob(
        recipient_id=recipient_id,
        recipient_email=recipient_email,
        channel=channel,
        category=category,
        priority=priority.value,
        priority_rank=priority.rank,
        status=PENDING,
        scheduled_for=scheduled_for or now,
        attempts=0,
        max_attempts=MAX_ATTEMPTS,
        subject=subject[:SUBJECT_MAX],
        template_name=template_name,
        payload=payload,
        dedupe_key=dedupe_key,
        notification_id=notification_id,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.debug("Enqueued %r for %s at %s", job, recipient_id, job.scheduled_for.isoformat())
    return job


# --- Read ---


def get_job(db: Session, job_id: int) -> DeliveryJob:
    job = db.get(DeliveryJob, job_id)
    if job is None:
        raise JobNotFoundError(f"Delivery job {job_id} not found")
    return job


def find_job_by_dedupe_key(db: Session, dedupe_key: str) -> DeliveryJob | None:
    return db.query(DeliveryJob).filter(DeliveryJob.dedupe_key == dedupe_key).first()


def select_due_jobs(db: Session, now: datetime, limit: int = BATCH_SIZE) -> list[DeliveryJob]:
    """Pending jobs whose time has come and that have attempts left; highest priority, then oldest, first."""
    return (
        db.query(DeliveryJob)
        .filter(
            DeliveryJob.status == PENDING,
            DeliveryJob.scheduled_for <= now,
            DeliveryJob.attempts < DeliveryJob.max_attempts,
        )
        .order_by(DeliveryJob.priority_rank.desc(), DeliveryJob.created_at.asc(), DeliveryJob.id.asc())
        .limit(limit)
        .all()
    )


def list_jobs(
    db: Session,
    status: str | None = None,
    category: str | None = None,
    recipient_id: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[DeliveryJob], int]:
    """Admin listing, newest first. Returns (page, total matching)."""
    q = db.query(DeliveryJob)
    if status:
        q = q.filter(DeliveryJob.status == status)
    if category:
        q = q.filter(DeliveryJob.category == category)
    if recipient_id:
        q = q.filter(DeliveryJob.recipient_id == recipient_id)
    total = q.count()
    rows = q.order_by(DeliveryJob.created_at.desc(), DeliveryJob.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def queue_stats(db: Session) -> dict[str, int]:
    """Count of jobs per status; every status present (0 when none)."""
    result = {s.value: 0 for s in JobStatus}
    for status, count in db.query(DeliveryJob.status, func.count(DeliveryJob.id)).group_by(DeliveryJob.status).all():
        result[status] = count
    return result


def delivery_analytics(db: Session, start: datetime | None = None, end: datetime | None = None) -> dict[str, Any]:
    """
    Job counts per status and per category/status, plus total send attempts, for jobs created in
    [start, end). Either bound may be omitted. Every status appears in each breakdown.
    """
    q = db.query(
        DeliveryJob.category,
        DeliveryJob.status,
        func.count(DeliveryJob.id),
        func.coalesce(func.sum(DeliveryJob.attempts), 0),
    )
    if start is not None:
        q = q.filter(DeliveryJob.created_at >= start)
    if end is not None:
        q = q.filter(DeliveryJob.created_at < end)

    counts = {s.value: 0 for s in JobStatus}
    by_category: dict[str, dict[str, int]] = {}
    attempts = 0
    for category, status, count, attempt_sum in q.group_by(DeliveryJob.category, DeliveryJob.status).all():
        counts[status] += count
        bucket = by_category.setdefault(category, {**{s.value: 0 for s in JobStatus}, "total": 0, "attempts": 0})
        bucket[status] += count
        bucket["total"] += count
        bucket["attempts"] += int(attempt_sum)
        attempts += int(attempt_sum)
    return {
        "counts": counts,
        "total": sum(counts.values()),
        "attempts": attempts,
        "by_category": dict(sorted(by_category.items())),
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
    }


def job_to_dict(job: DeliveryJob) -> dict[str, Any]:
    return {
        "id": job.id,
        "recipient_id": job.recipient_id,
        "recipient_email": job.recipient_email,
        "channel": job.channel,
        "category": job.category,
        "priority": job.priority,
        "status": job.status,
        "scheduled_for": job.scheduled_for.isoformat() if job.scheduled_for else None,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "last_attempt_at": job.last_attempt_at.isoformat() if job.last_attempt_at else None,
        "sent_at": job.sent_at.isoformat() if job.sent_at else None,
        "failure_reason": job.failure_reason,
        "subject": job.subject,
        "template_name": job.template_name,
        "dedupe_key": job.dedupe_key,
        "provider_message_id": job.provider_message_id,
        "notification_id": job.notification_id,
        "created_at": job.created_at.isoformat() if job.created_at else None,
    }


# --- Processor transitions (compare-and-swap on status) ---


def claim_job(db: Session, job_id: int, now: datetime) -> bool:
    """
    pending -> processing, attempts += 1, last_attempt_at = now; committed before any send.
    Returns False when another processor claimed (or someone cancelled) the job first.
    """
    claimed = (
        db.query(DeliveryJob)
        .filter(
            DeliveryJob.id == job_id,
            DeliveryJob.status == PENDING,
            DeliveryJob.attempts < DeliveryJob.max_attempts,
        )
        .update(
            {
                DeliveryJob.status: PROCESSING,
                DeliveryJob.attempts: DeliveryJob.attempts + 1,
                DeliveryJob.last_attempt_at: now,
                DeliveryJob.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return claimed == 1


def _transition(db: Session, job_id: int, expected: str, values: dict, now: datetime) -> None:
    values = {**values, DeliveryJob.updated_at: now}
    updated = (
        db.query(DeliveryJob)
        .filter(DeliveryJob.id == job_id, DeliveryJob.status == expected)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        raise StaleJobStateError(job_id, expected)
    db.commit()


def mark_sent(db: Session, job_id: int, now: datetime, message_id: str | None = None) -> None:
    _transition(
        db,
        job_id,
        PROCESSING,
        {
            DeliveryJob.status: SENT,
            DeliveryJob.sent_at: now,
            DeliveryJob.failure_reason: None,
            DeliveryJob.provider_message_id: message_id,
        },
        now,
    )


def schedule_retry(db: Session, job_id: int, run_at: datetime, now: datetime) -> None:
    _transition(db, job_id, PROCESSING, {DeliveryJob.status: PENDING, DeliveryJob.scheduled_for: run_at}, now)


def defer_job(db: Session, job_id: int, run_at: datetime, now: datetime) -> None:
    """Quiet-hours deferral: back to pending at run_at, and the claim's attempt does not count."""
    _transition(
        db,
        job_id,
        PROCESSING,
        {
            DeliveryJob.status: PENDING,
            DeliveryJob.scheduled_for: run_at,
            DeliveryJob.attempts: DeliveryJob.attempts - 1,
        },
        now,
    )


def mark_failed(db: Session, job_id: int, reason: str, now: datetime) -> None:
    _transition(db, job_id, PROCESSING, {DeliveryJob.status: FAILED, DeliveryJob.failure_reason: reason[:2000]}, now)


def cancel_claimed(db: Session, job_id: int, reason: str, now: datetime) -> None:
    _transition(db, job_id, PROCESSING, {DeliveryJob.status: CANCELLED, DeliveryJob.failure_reason: reason}, now)


# --- Admin actions ---


def cancel_job(db: Session, job_id: int, reason: str = ADMIN_CANCEL_REASON, now: datetime | None = None) -> DeliveryJob:
    """pending/processing -> cancelled. sent and failed jobs are immutable."""
    now = now or _utcnow()
    job = get_job(db, job_id)
    if job.status not in (PENDING, PROCESSING):
        raise InvalidJobTransitionError(f"Only pending or processing jobs can be cancelled (job {job_id} is {job.status})")
    updated = (
        db.query(DeliveryJob)
        .filter(DeliveryJob.id == job_id, DeliveryJob.status.in_((PENDING, PROCESSING)))
        .update(
            {DeliveryJob.status: CANCELLED, DeliveryJob.failure_reason: reason, DeliveryJob.updated_at: now},
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        raise StaleJobStateError(job_id, f"{PENDING}|{PROCESSING}")
    db.commit()
    db.refresh(job)
    logger.info("Delivery job %s cancelled: %s", job_id, reason)
    return job


def retry_job(db: Session, job_id: int, now: datetime | None = None) -> DeliveryJob:
    """failed -> pending with attempts reset to 0, due immediately."""
    now = now or _utcnow()
    job = get_job(db, job_id)
    if job.status != FAILED:
        raise InvalidJobTransitionError(f"Only failed jobs can be retried (job {job_id} is {job.status})")
    _transition(
        db,
        job_id,
        FAILED,
        {
            DeliveryJob.status: PENDING,
            DeliveryJob.attempts: 0,
            DeliveryJob.scheduled_for: now,
            DeliveryJob.failure_reason: None,
        },
        now,
    )
    db.refresh(job)
    logger.info("Delivery job %s queued for retry", job_id)
    return job


# --- Sweeps ---


def recover_stale_jobs(
    db: Session,
    now: datetime,
    stale_after: timedelta = timedelta(minutes=STALE_PROCESSING_MINUTES),
) -> int:
    """
    Jobs left in processing by a crashed tick: back to pending so they are retried, or to failed
    when the stalled attempt was the last one. Returns how many jobs were recovered.
    """
    cutoff = now - stale_after
    stale = (
        DeliveryJob.status == PROCESSING,
        DeliveryJob.last_attempt_at < cutoff,
    )
    exhausted = (
        db.query(DeliveryJob)
        .filter(*stale, DeliveryJob.attempts >= DeliveryJob.max_attempts)
        .update(
            {DeliveryJob.status: FAILED, DeliveryJob.failure_reason: STALLED_REASON, DeliveryJob.updated_at: now},
            synchronize_session=False,
        )
    )
    requeued = (
        db.query(DeliveryJob)
        .filter(*stale, DeliveryJob.attempts < DeliveryJob.max_attempts)
        .update(
            {DeliveryJob.status: PENDING, DeliveryJob.scheduled_for: now, DeliveryJob.updated_at: now},
            synchronize_session=False,
        )
    )
    db.commit()
    if exhausted or requeued:
        logger.warning("Recovered stale processing jobs: %s requeued, %s failed", requeued, exhausted)
    return exhausted + requeued


def purge_terminal_jobs(db: Session, now: datetime, retention_days: int = RETENTION_DAYS) -> int:
    """Delete sent/failed/cancelled jobs that reached their terminal state more than retention_days ago."""
    cutoff = now - timedelta(days=retention_days)
    deleted = (
        db.query(DeliveryJob)
        .filter(DeliveryJob.status.in_(TERMINAL_STATUSES), DeliveryJob.updated_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted
