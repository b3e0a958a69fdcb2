"""Runs daily at RETENTION_SWEEP_HOUR UTC: delete old terminal delivery jobs and expired notifications."""
import logging
from datetime import datetime, timezone

from app.config import settings
from app.core.constants import RETENTION_LEASE
from app.db.session import SessionLocal
from app.services.delivery_queue import purge_terminal_jobs
from app.services.lease_service import acquire_lease, make_owner_id, release_lease
from app.services.notification_service import purge_expired_notifications

logger = logging.getLogger(__name__)


def run_retention_sweep(now: datetime | None = None, session_factory=SessionLocal) -> dict[str, int] | None:
    now = now or datetime.now(timezone.utc)
    owner = make_owner_id()
    db = session_factory()
    try:
        if not acquire_lease(db, RETENTION_LEASE, owner, now=now):
            return None
        try:
            jobs = purge_terminal_jobs(db, now, settings.retention_days)
            notifications = purge_expired_notifications(db, now)
        finally:
            release_lease(db, RETENTION_LEASE, owner, now)
    finally:
        db.close()
    logger.info("Retention sweep: deleted %s delivery jobs, %s expired notifications", jobs, notifications)
    return {"delivery_jobs": jobs, "notifications": notifications}


def run_retention_job() -> None:
    try:
        run_retention_sweep()
    except Exception as e:
        logger.exception("Retention sweep failed: %s", e)
