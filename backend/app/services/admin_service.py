"""
Admin maintenance: wipe the delivery queue (jobs and scheduler leases).
Preference profiles, notifications and template overrides are kept.
"""
import logging

from sqlalchemy.orm import Session

from app.db.tables import QUEUE_TABLE_NAMES
from app.models.delivery_job import DeliveryJob
from app.models.scheduler_lease import SchedulerLease

logger = logging.getLogger(__name__)

_QUEUE_MODELS = {
    "delivery_jobs": DeliveryJob,
    "scheduler_leases": SchedulerLease,
}


def clear_delivery_queue(db: Session) -> dict[str, int]:
    """
    Delete all rows from the queue tables (QUEUE_TABLE_NAMES). Returns dict of table -> deleted count.
    Jobs in flight in a running backend will fail their next state transition and be logged.
    """
    deleted: dict[str, int] = {}
    for table in QUEUE_TABLE_NAMES:
        deleted[table] = db.query(_QUEUE_MODELS[table]).delete(synchronize_session=False)
    db.commit()
    logger.warning("Delivery queue cleared: %s", deleted)
    return deleted
