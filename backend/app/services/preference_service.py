"""
Preference store: one PreferenceProfile per user, created on first read with permissive defaults.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import PreferenceValidationError
from app.models.enums import Frequency
from app.models.preference_profile import PreferenceProfile
from app.schemas.preferences import (
    ChannelPreferences,
    PreferenceProfileOut,
    PreferenceProfileUpdate,
    QuietHoursSettings,
)

logger = logging.getLogger(__name__)

# Explicit values so transient (unsaved) profiles read the same as stored ones
_DEFAULTS = {
    "email_enabled": True,
    "push_enabled": True,
    "in_app_enabled": True,
    "frequency": Frequency.IMMEDIATE.value,
    "quiet_hours_enabled": False,
    "quiet_start": "22:00",
    "quiet_end": "08:00",
    "quiet_timezone": "UTC",
}


def default_profile(user_id: str, email: str | None = None) -> PreferenceProfile:
    """Unsaved profile carrying the defaults (everything opted in, immediate, no quiet hours)."""
    return PreferenceProfile(
        user_id=user_id,
        email=email,
        email_categories={},
        push_categories={},
        in_app_categories={},
        **_DEFAULTS,
    )


def get_profile(db: Session, user_id: str) -> PreferenceProfile | None:
    return db.query(PreferenceProfile).filter(PreferenceProfile.user_id == user_id).first()


def get_or_create_profile(db: Session, user_id: str, email: str | None = None) -> PreferenceProfile:
    """
    Return the user's profile, creating the default one if missing.
    Idempotent under races: a concurrent insert of the same user_id is caught and re-read.
    """
    row = get_profile(db, user_id)
    if row:
        return row
    row = default_profile(user_id, email=email)
    row.updated_at = datetime.now(timezone.utc)
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug("Preference profile for %s created concurrently; re-reading", user_id)
        return get_profile(db, user_id)
    db.refresh(row)
    return row


def upsert_profile(db: Session, user_id: str, update: PreferenceProfileUpdate) -> PreferenceProfile:
    """Apply a partial update (omitted sections keep their stored values)."""
    if update.quiet_hours is not None and update.quiet_hours.enabled:
        if update.quiet_hours.start_time == update.quiet_hours.end_time:
            raise PreferenceValidationError("Quiet hours start and end must differ")
    row = get_or_create_profile(db, user_id)
    if update.email is not None:
        row.email = update.email.strip()
    if update.email_channel is not None:
        row.email_enabled = update.email_channel.enabled
        row.email_categories = dict(update.email_channel.categories)
    if update.push_channel is not None:
        row.push_enabled = update.push_channel.enabled
        row.push_categories = dict(update.push_channel.categories)
    if update.in_app_channel is not None:
        row.in_app_enabled = update.in_app_channel.enabled
        row.in_app_categories = dict(update.in_app_channel.categories)
    if update.frequency is not None:
        row.frequency = update.frequency.value
    if update.quiet_hours is not None:
        row.quiet_hours_enabled = update.quiet_hours.enabled
        row.quiet_start = update.quiet_hours.start_time
        row.quiet_end = update.quiet_hours.end_time
        row.quiet_timezone = update.quiet_hours.timezone
    row.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(row)
    logger.info("Preferences updated for user %s (frequency=%s, email_enabled=%s)", user_id, row.frequency, row.email_enabled)
    return row


def profile_to_out(row: PreferenceProfile) -> PreferenceProfileOut:
    return PreferenceProfileOut(
        user_id=row.user_id,
        email=row.email,
        email_channel=ChannelPreferences(enabled=row.email_enabled, categories=row.email_categories or {}),
        push_channel=ChannelPreferences(enabled=row.push_enabled, categories=row.push_categories or {}),
        in_app_channel=ChannelPreferences(enabled=row.in_app_enabled, categories=row.in_app_categories or {}),
        frequency=Frequency(row.frequency),
        quiet_hours=QuietHoursSettings(
            enabled=row.quiet_hours_enabled,
            start_time=row.quiet_start,
            end_time=row.quiet_end,
            timezone=row.quiet_timezone,
        ),
        updated_at=row.updated_at,
    )


def list_profiles_by_frequency(db: Session, frequency: Frequency) -> list[PreferenceProfile]:
    return (
        db.query(PreferenceProfile)
        .filter(PreferenceProfile.frequency == frequency.value)
        .order_by(PreferenceProfile.user_id.asc())
        .all()
    )
