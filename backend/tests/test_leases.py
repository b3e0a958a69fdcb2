"""Scheduler leases: one holder at a time, expiry and release."""
from datetime import timedelta

from conftest import T0

from app.models.scheduler_lease import SchedulerLease
from app.services.lease_service import acquire_lease, make_owner_id, release_lease


def test_first_acquire_inserts(db_session):
    assert acquire_lease(db_session, "job", "a", ttl_seconds=60, now=T0)
    lease = db_session.query(SchedulerLease).filter_by(name="job").one()
    assert lease.owner == "a"
    assert lease.expires_at == T0 + timedelta(seconds=60)


def test_held_lease_blocks_other_owner(db_session):
    acquire_lease(db_session, "job", "a", ttl_seconds=60, now=T0)
    assert not acquire_lease(db_session, "job", "b", ttl_seconds=60, now=T0 + timedelta(seconds=30))


def test_owner_can_extend(db_session):
    acquire_lease(db_session, "job", "a", ttl_seconds=60, now=T0)
    assert acquire_lease(db_session, "job", "a", ttl_seconds=60, now=T0 + timedelta(seconds=30))
    db_session.expire_all()
    assert db_session.query(SchedulerLease).filter_by(name="job").one().expires_at == T0 + timedelta(seconds=90)


def test_expired_lease_taken_over(db_session):
    acquire_lease(db_session, "job", "a", ttl_seconds=60, now=T0)
    assert acquire_lease(db_session, "job", "b", ttl_seconds=60, now=T0 + timedelta(seconds=60))
    db_session.expire_all()
    assert db_session.query(SchedulerLease).filter_by(name="job").one().owner == "b"


def test_release_frees_immediately(db_session):
    acquire_lease(db_session, "job", "a", ttl_seconds=300, now=T0)
    assert release_lease(db_session, "job", "a", now=T0 + timedelta(seconds=1))
    assert acquire_lease(db_session, "job", "b", now=T0 + timedelta(seconds=1))


def test_release_by_non_owner_is_ignored(db_session):
    acquire_lease(db_session, "job", "a", ttl_seconds=300, now=T0)
    assert not release_lease(db_session, "job", "b", now=T0)
    assert not acquire_lease(db_session, "job", "b", now=T0 + timedelta(seconds=1))


def test_leases_are_independent(db_session):
    assert acquire_lease(db_session, "digest_daily", "a", now=T0)
    assert acquire_lease(db_session, "digest_weekly", "b", now=T0)


def test_owner_ids_are_unique():
    assert make_owner_id() != make_owner_id()
