"""
Runs every minute: generate daily / weekly digests once per period.

The job only wakes up; DigestSchedule decides the period. A frequency runs when its period key differs
from the last one this process handled, so a restart re-runs the current period and the per-user
dedupe key keeps that from creating duplicates.
"""
import logging
from datetime import datetime, timezone

from app.config import settings
from app.core.constants import DAILY_DIGEST_LEASE, WEEKLY_DIGEST_LEASE
from app.db.session import SessionLocal
from app.models.enums import Frequency
from app.services.digest_service import DigestRunResult, DigestSchedule, generate_digests
from app.services.lease_service import acquire_lease, make_owner_id, release_lease

logger = logging.getLogger(__name__)

DIGEST_LEASES = {Frequency.DAILY: DAILY_DIGEST_LEASE, Frequency.WEEKLY: WEEKLY_DIGEST_LEASE}

# frequency -> last period key handled by this process
_last_period: dict[str, str] = {}


def run_digest(frequency: Frequency, now: datetime | None = None, session_factory=SessionLocal) -> DigestRunResult | None:
    """Generate this period's digests for frequency under its lease. None when another runner holds it."""
    now = now or datetime.now(timezone.utc)
    schedule = DigestSchedule.from_settings(settings, frequency)
    lease = DIGEST_LEASES[frequency]
    owner = make_owner_id()
    db = session_factory()
    try:
        if not acquire_lease(db, lease, owner, now=now):
            logger.info("%s digest skipped: lease %s held elsewhere", frequency.value, lease)
            return None
        try:
            return generate_digests(db, schedule, now)
        finally:
            release_lease(db, lease, owner, now)
    finally:
        db.close()


def run_digest_check_job() -> None:
    now = datetime.now(timezone.utc)
    for frequency in (Frequency.DAILY, Frequency.WEEKLY):
        try:
            key = DigestSchedule.from_settings(settings, frequency).period_key(now)
            if _last_period.get(frequency.value) == key:
                continue
            if run_digest(frequency, now) is not None:
                _last_period[frequency.value] = key
        except Exception as e:
            logger.exception("%s digest job failed: %s", frequency.value, e)
