"""Delivery queue: enqueue, due-job selection, compare-and-swap transitions, admin actions, sweeps."""
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import T0, reload_job

from app.core.errors import InvalidJobTransitionError, JobNotFoundError, StaleJobStateError
from app.models.delivery_job import DeliveryJob
from app.models.enums import JobPriority
from app.models.scheduler_lease import SchedulerLease
from app.services import delivery_queue as dq
from app.services.admin_service import clear_delivery_queue
from app.services.lease_service import acquire_lease


def _enqueue(db, now=T0, **overrides):
    fields = {
        "recipient_id": "user-1",
        "recipient_email": "user-1@example.com",
        "category": "job_alert",
        "subject": "New job match: {{job_title}}",
        "template_name": "notification",
        "payload": {"kind": "generic", "data": {"job_title": "Backend Engineer"}},
        "now": now,
    }
    fields.update(overrides)
    return dq.enqueue_job(db, **fields)


def _exhaust(db, job_id, now=T0):
    """Drive a job through max_attempts failed sends."""
    for attempt in range(1, 4):
        assert dq.claim_job(db, job_id, now)
        if attempt < 3:
            dq.schedule_retry(db, job_id, now, now)
        else:
            dq.mark_failed(db, job_id, "provider down", now)


def test_enqueue_defaults(db_session):
    job = _enqueue(db_session)
    assert job.status == "pending"
    assert job.attempts == 0
    assert job.max_attempts == 3
    assert job.scheduled_for == T0
    assert job.priority == "medium"
    assert job.priority_rank == JobPriority.MEDIUM.rank
    assert job.sent_at is None and job.failure_reason is None


def test_enqueue_cuts_subject_to_column_width(db_session):
    job = _enqueue(db_session, subject="s" * 400)
    assert len(reload_job(db_session, job.id).subject) == 255


def test_enqueue_accepts_pydantic_payload(db_session):
    from app.schemas.payloads import ConnectionPayload

    job = _enqueue(db_session, category="connection_request", payload=ConnectionPayload(from_name="Ada"))
    assert job.payload["kind"] == "connection"
    assert job.payload["from_name"] == "Ada"


def test_select_due_orders_by_priority_then_age(db_session):
    old_low = _enqueue(db_session, now=T0, priority=JobPriority.LOW)
    old_medium = _enqueue(db_session, now=T0 + timedelta(seconds=1))
    new_high = _enqueue(db_session, now=T0 + timedelta(seconds=2), priority=JobPriority.HIGH)
    newer_medium = _enqueue(db_session, now=T0 + timedelta(seconds=3))
    _enqueue(db_session, now=T0, scheduled_for=T0 + timedelta(hours=1))

    due = dq.select_due_jobs(db_session, T0 + timedelta(minutes=1), limit=10)
    assert [j.id for j in due] == [new_high.id, old_medium.id, newer_medium.id, old_low.id]


def test_select_due_respects_limit_and_status(db_session):
    jobs = [_enqueue(db_session, now=T0 + timedelta(seconds=i)) for i in range(4)]
    dq.claim_job(db_session, jobs[0].id, T0)
    due = dq.select_due_jobs(db_session, T0 + timedelta(minutes=1), limit=2)
    assert [j.id for j in due] == [jobs[1].id, jobs[2].id]


def test_claim_is_compare_and_swap(db_session, session_factory):
    job = _enqueue(db_session)
    other = session_factory()
    try:
        assert dq.claim_job(db_session, job.id, T0)
        assert not dq.claim_job(other, job.id, T0)
    finally:
        other.close()
    job = reload_job(db_session, job.id)
    assert job.status == "processing"
    assert job.attempts == 1
    assert job.last_attempt_at == T0


def test_transition_from_wrong_state_raises_stale(db_session):
    job = _enqueue(db_session)
    with pytest.raises(StaleJobStateError):
        dq.mark_sent(db_session, job.id, T0, "msg-1")
    assert reload_job(db_session, job.id).status == "pending"


def test_mark_sent_sets_receipt(db_session):
    job = _enqueue(db_session)
    dq.claim_job(db_session, job.id, T0)
    dq.mark_sent(db_session, job.id, T0 + timedelta(seconds=2), "msg-1")
    job = reload_job(db_session, job.id)
    assert job.status == "sent"
    assert job.sent_at == T0 + timedelta(seconds=2)
    assert job.provider_message_id == "msg-1"
    assert job.failure_reason is None


def test_defer_rolls_back_the_attempt(db_session):
    job = _enqueue(db_session)
    dq.claim_job(db_session, job.id, T0)
    dq.defer_job(db_session, job.id, T0 + timedelta(hours=8), T0)
    job = reload_job(db_session, job.id)
    assert job.status == "pending"
    assert job.attempts == 0
    assert job.scheduled_for == T0 + timedelta(hours=8)


def test_failed_requires_exhausted_attempts(db_session):
    job = _enqueue(db_session)
    _exhaust(db_session, job.id)
    job = reload_job(db_session, job.id)
    assert job.status == "failed"
    assert job.attempts == job.max_attempts == 3
    assert job.failure_reason == "provider down"


def test_exhausted_job_is_not_claimable(db_session):
    job = _enqueue(db_session)
    _exhaust(db_session, job.id)
    assert not dq.claim_job(db_session, job.id, T0)


def test_cancel_pending_job(db_session):
    job = _enqueue(db_session)
    job = dq.cancel_job(db_session, job.id, now=T0)
    assert job.status == "cancelled"
    assert job.failure_reason == dq.ADMIN_CANCEL_REASON


def test_cancel_wins_over_inflight_send(db_session, session_factory):
    job = _enqueue(db_session)
    dq.claim_job(db_session, job.id, T0)
    admin = session_factory()
    try:
        dq.cancel_job(admin, job.id, "user deleted", now=T0)
    finally:
        admin.close()
    with pytest.raises(StaleJobStateError):
        dq.mark_sent(db_session, job.id, T0, "msg-1")
    job = reload_job(db_session, job.id)
    assert job.status == "cancelled"
    assert job.failure_reason == "user deleted"


def test_cancel_terminal_job_is_rejected(db_session):
    job = _enqueue(db_session)
    dq.claim_job(db_session, job.id, T0)
    dq.mark_sent(db_session, job.id, T0, "msg-1")
    with pytest.raises(InvalidJobTransitionError):
        dq.cancel_job(db_session, job.id)
    assert reload_job(db_session, job.id).status == "sent"


def test_cancel_missing_job(db_session):
    with pytest.raises(JobNotFoundError):
        dq.cancel_job(db_session, 999)


def test_retry_failed_job_resets_attempts(db_session):
    job = _enqueue(db_session)
    _exhaust(db_session, job.id)
    later = T0 + timedelta(hours=1)
    job = dq.retry_job(db_session, job.id, now=later)
    assert job.status == "pending"
    assert job.attempts == 0
    assert job.scheduled_for == later
    assert job.failure_reason is None
    assert [j.id for j in dq.select_due_jobs(db_session, later)] == [job.id]


def test_retry_only_failed_jobs(db_session):
    job = _enqueue(db_session)
    with pytest.raises(InvalidJobTransitionError):
        dq.retry_job(db_session, job.id)


def test_recover_stale_processing_jobs(db_session):
    fresh = _enqueue(db_session)
    stale = _enqueue(db_session)
    dq.claim_job(db_session, stale.id, T0)
    dq.claim_job(db_session, fresh.id, T0 + timedelta(minutes=10))

    now = T0 + timedelta(minutes=20)
    assert dq.recover_stale_jobs(db_session, now, timedelta(minutes=15)) == 1
    stale = reload_job(db_session, stale.id)
    assert stale.status == "pending"
    assert stale.scheduled_for == now
    assert stale.attempts == 1
    assert reload_job(db_session, fresh.id).status == "processing"


def test_recover_stale_job_on_last_attempt_fails_it(db_session):
    job = _enqueue(db_session)
    for _ in range(2):
        dq.claim_job(db_session, job.id, T0)
        dq.schedule_retry(db_session, job.id, T0, T0)
    dq.claim_job(db_session, job.id, T0)

    dq.recover_stale_jobs(db_session, T0 + timedelta(minutes=30), timedelta(minutes=15))
    job = reload_job(db_session, job.id)
    assert job.status == "failed"
    assert job.attempts == 3
    assert job.failure_reason == dq.STALLED_REASON


def test_purge_terminal_jobs_after_retention(db_session):
    old_sent = _enqueue(db_session)
    dq.claim_job(db_session, old_sent.id, T0)
    dq.mark_sent(db_session, old_sent.id, T0, "msg-1")
    recent_cancelled = _enqueue(db_session)
    dq.cancel_job(db_session, recent_cancelled.id, now=T0 + timedelta(days=2))
    old_pending = _enqueue(db_session)

    deleted = dq.purge_terminal_jobs(db_session, T0 + timedelta(days=8), retention_days=7)
    assert deleted == 1
    db_session.expire_all()
    remaining = {j.id for j in db_session.query(DeliveryJob).all()}
    assert remaining == {recent_cancelled.id, old_pending.id}


def test_dedupe_key_is_unique(db_session):
    _enqueue(db_session, dedupe_key="digest_daily:user-1:2026-10-17")
    with pytest.raises(IntegrityError):
        _enqueue(db_session, dedupe_key="digest_daily:user-1:2026-10-17")
    db_session.rollback()
    assert dq.find_job_by_dedupe_key(db_session, "digest_daily:user-1:2026-10-17") is not None


def test_queue_stats_lists_every_status(db_session):
    a = _enqueue(db_session)
    _enqueue(db_session)
    dq.cancel_job(db_session, a.id, now=T0)
    assert dq.queue_stats(db_session) == {
        "pending": 1,
        "processing": 0,
        "sent": 0,
        "failed": 0,
        "cancelled": 1,
    }


def test_list_jobs_filters_and_pages(db_session):
    for i in range(3):
        _enqueue(db_session, now=T0 + timedelta(seconds=i))
    _enqueue(db_session, recipient_id="user-2", category="endorsement")

    rows, total = dq.list_jobs(db_session, recipient_id="user-1", limit=2)
    assert total == 3
    assert len(rows) == 2
    assert rows[0].created_at > rows[1].created_at

    rows, total = dq.list_jobs(db_session, category="endorsement")
    assert total == 1 and rows[0].recipient_id == "user-2"


def test_job_to_dict_is_json_ready(db_session):
    job = _enqueue(db_session)
    data = dq.job_to_dict(job)
    assert data["status"] == "pending"
    assert data["scheduled_for"] == T0.isoformat()


def test_clear_delivery_queue(db_session):
    _enqueue(db_session)
    _enqueue(db_session)
    acquire_lease(db_session, "queue_processor", "someone", now=T0)
    assert clear_delivery_queue(db_session) == {"delivery_jobs": 2, "scheduler_leases": 1}
    assert db_session.query(DeliveryJob).count() == 0
    assert db_session.query(SchedulerLease).count() == 0
