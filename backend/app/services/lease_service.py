"""
Single-flight leases for recurring tasks (queue tick, digests, retention sweep).

A lease row is held by `owner` until expires_at. Acquire is a conditional UPDATE (take over an expired
lease, or extend our own) falling back to INSERT for the first run; the loser of an insert race gets
an IntegrityError and does not run. Works across processes, unlike an in-memory flag.
"""
import logging
import os
import socket
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.constants import LEASE_TTL_SECONDS
from app.models.scheduler_lease import SchedulerLease

logger = logging.getLogger(__name__)


def make_owner_id() -> str:
    """Unique per process instance: host:pid:random."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def acquire_lease(
    db: Session,
    name: str,
    owner: str,
    ttl_seconds: int = LEASE_TTL_SECONDS,
    now: datetime | None = None,
) -> bool:
    """Try to take (or extend) lease `name`. Returns True if `owner` now holds it."""
    now = now or datetime.now(timezone.utc)
    expires = now + timedelta(seconds=ttl_seconds)
    updated = (
        db.query(SchedulerLease)
        .filter(
            SchedulerLease.name == name,
            or_(SchedulerLease.expires_at <= now, SchedulerLease.owner == owner),
        )
        .update(
            {SchedulerLease.owner: owner, SchedulerLease.acquired_at: now, SchedulerLease.expires_at: expires},
            synchronize_session=False,
        )
    )
    if updated:
        db.commit()
        return True
    if db.query(SchedulerLease).filter(SchedulerLease.name == name).first() is not None:
        db.rollback()
        return False
    db.add(SchedulerLease(name=name, owner=owner, acquired_at=now, expires_at=expires))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug("Lease %s taken concurrently by another owner", name)
        return False
    return True


def release_lease(db: Session, name: str, owner: str, now: datetime | None = None) -> bool:
    """Expire our own lease so the next tick (any process) can take it immediately."""
    now = now or datetime.now(timezone.utc)
    released = (
        db.query(SchedulerLease)
        .filter(SchedulerLease.name == name, SchedulerLease.owner == owner)
        .update({SchedulerLease.expires_at: now}, synchronize_session=False)
    )
    db.commit()
    return bool(released)
