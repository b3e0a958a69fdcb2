"""Preference store: defaults on first read, partial updates, validation."""
import pytest
from pydantic import ValidationError

from app.core.errors import PreferenceValidationError
from app.models.enums import Frequency
from app.models.preference_profile import PreferenceProfile
from app.schemas.preferences import PreferenceProfileUpdate, QuietHoursSettings
from app.services.preference_service import (
    get_or_create_profile,
    get_profile,
    list_profiles_by_frequency,
    profile_to_out,
    upsert_profile,
)


def test_first_read_creates_permissive_defaults(db_session):
    assert get_profile(db_session, "user-1") is None
    row = get_or_create_profile(db_session, "user-1", email="user-1@example.com")

    out = profile_to_out(row)
    assert out.email == "user-1@example.com"
    assert out.email_channel.enabled is True
    assert out.email_channel.categories == {}
    assert out.frequency == Frequency.IMMEDIATE
    assert out.quiet_hours.enabled is False
    assert (out.quiet_hours.start_time, out.quiet_hours.end_time) == ("22:00", "08:00")


def test_get_or_create_is_idempotent(db_session):
    first = get_or_create_profile(db_session, "user-1")
    second = get_or_create_profile(db_session, "user-1")
    assert first.id == second.id
    assert db_session.query(PreferenceProfile).count() == 1


def test_partial_update_keeps_other_sections(db_session):
    upsert_profile(
        db_session,
        "user-1",
        PreferenceProfileUpdate(
            email="user-1@example.com",
            email_channel={"enabled": True, "categories": {"job_matches": False}},
            quiet_hours={"enabled": True, "start_time": "23:00", "end_time": "07:00", "timezone": "Europe/Berlin"},
        ),
    )
    row = upsert_profile(db_session, "user-1", PreferenceProfileUpdate(frequency=Frequency.WEEKLY))

    assert row.frequency == "weekly"
    assert row.email == "user-1@example.com"
    assert row.email_categories == {"job_matches": False}
    assert row.quiet_hours_enabled is True
    assert (row.quiet_start, row.quiet_end, row.quiet_timezone) == ("23:00", "07:00", "Europe/Berlin")


def test_equal_quiet_bounds_rejected(db_session):
    with pytest.raises(PreferenceValidationError):
        upsert_profile(
            db_session,
            "user-1",
            PreferenceProfileUpdate(quiet_hours={"enabled": True, "start_time": "08:00", "end_time": "08:00"}),
        )
    assert get_profile(db_session, "user-1") is None


def test_equal_bounds_allowed_when_disabled(db_session):
    row = upsert_profile(
        db_session,
        "user-1",
        PreferenceProfileUpdate(quiet_hours={"enabled": False, "start_time": "08:00", "end_time": "08:00"}),
    )
    assert row.quiet_hours_enabled is False


@pytest.mark.parametrize("value", ["24:00", "7:00", "07:60", "noon"])
def test_bad_clock_times_rejected(value):
    with pytest.raises(ValidationError):
        QuietHoursSettings(enabled=True, start_time=value)


def test_unknown_timezone_rejected():
    with pytest.raises(ValidationError):
        QuietHoursSettings(timezone="Mars/Olympus_Mons")


def test_bad_email_rejected():
    with pytest.raises(ValidationError):
        PreferenceProfileUpdate(email="not-an-address")


def test_profiles_by_frequency(db_session, make_profile):
    make_profile("user-b", email="b@example.com", frequency="daily")
    make_profile("user-a", email="a@example.com", frequency="daily")
    make_profile("user-c", email="c@example.com", frequency="weekly")
    assert [p.user_id for p in list_profiles_by_frequency(db_session, Frequency.DAILY)] == ["user-a", "user-b"]
