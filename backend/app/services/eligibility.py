"""
Eligibility filter: should this job be delivered to this user right now?

Pure function of (job, profile, now). Used when a job is enqueued (whether to create it at all) and
again when the processor picks it up (preferences may have changed since).

Outcomes:
  deliver                                  -> send now
  skip, "channel disabled" / "category opted out" -> cancel, never retried
  skip, "quiet hours", defer_until=<end>   -> not yet eligible; reschedule to the window's end
"""
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.models.enums import Channel, JobCategory
from app.models.preference_profile import PreferenceProfile

logger = logging.getLogger(__name__)

REASON_CHANNEL_DISABLED = "channel disabled"
REASON_CATEGORY_OPTED_OUT = "category opted out"
REASON_QUIET_HOURS = "quiet hours"

# Job category -> per-category preference flag. Categories not listed (system) cannot be opted out of.
CATEGORY_PREFERENCE_KEYS: dict[str, str] = {
    JobCategory.JOB_ALERT.value: "job_matches",
    JobCategory.APPLICATION_UPDATE.value: "application_updates",
    JobCategory.INTERVIEW_REMINDER.value: "application_updates",
    JobCategory.CONNECTION_REQUEST.value: "connection_requests",
    JobCategory.ENDORSEMENT.value: "endorsements",
    JobCategory.RECOMMENDATION.value: "recommendations",
    JobCategory.ASSESSMENT_INVITATION.value: "assessment_invitations",
    JobCategory.DIGEST_DAILY.value: "weekly_digest",
    JobCategory.DIGEST_WEEKLY.value: "weekly_digest",
}

# Channel -> (enabled attribute, category map attribute) on PreferenceProfile
_CHANNEL_FIELDS: dict[str, tuple[str, str]] = {
    Channel.EMAIL.value: ("email_enabled", "email_categories"),
    Channel.PUSH.value: ("push_enabled", "push_categories"),
    Channel.IN_APP.value: ("in_app_enabled", "in_app_categories"),
}


@dataclass(frozen=True)
class EligibilityDecision:
    deliver: bool
    reason: str | None = None
    defer_until: datetime | None = None

    @property
    def is_deferral(self) -> bool:
        """Quiet-hours skip: retry later, do not cancel."""
        return not self.deliver and self.defer_until is not None

    @property
    def is_opt_out(self) -> bool:
        return not self.deliver and self.defer_until is None


DELIVER = EligibilityDecision(deliver=True)


@dataclass(frozen=True)
class JobCandidate:
    """The parts of a not-yet-created job the filter looks at."""

    category: str
    channel: str = Channel.EMAIL.value


def parse_clock(value: str) -> time:
    """'HH:MM' -> time. Raises ValueError on malformed input."""
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def in_quiet_window(local: time, start: time, end: time) -> bool:
    """
    Window membership at minute precision with the end excluded; the start minute counts as quiet.
    Whole-hour windows behave like an hour comparison up to (not including) the end hour.
    start > end wraps midnight (22:00-08:00: quiet from 22:00 until 07:59).
    start == end is an empty window.
    """
    local = local.replace(second=0, microsecond=0)
    if start == end:
        return False
    if start > end:
        return local >= start or local < end
    return start <= local < end


def quiet_window_end(now: datetime, end: time, tz: ZoneInfo) -> datetime:
    """Next occurrence of the local clock time `end` after `now`, as UTC."""
    local_now = now.astimezone(tz)
    candidate = datetime.combine(local_now.date(), end, tzinfo=tz)
    if candidate <= local_now:
        candidate += timedelta(days=1)
    return candidate.astimezone(timezone.utc)


def _zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo((name or "UTC").strip() or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown quiet-hours timezone %r; using UTC", name)
        return ZoneInfo("UTC")


def quiet_hours_decision(profile: PreferenceProfile, now: datetime) -> EligibilityDecision | None:
    """Deferral decision if `now` falls inside the profile's quiet hours, else None."""
    if not profile.quiet_hours_enabled:
        return None
    try:
        start = parse_clock(profile.quiet_start or "22:00")
        end = parse_clock(profile.quiet_end or "08:00")
    except ValueError:
        logger.warning("Malformed quiet hours %r-%r for user %s; ignoring", profile.quiet_start, profile.quiet_end, profile.user_id)
        return None
    tz = _zone(profile.quiet_timezone)
    if not in_quiet_window(now.astimezone(tz).time(), start, end):
        return None
    return EligibilityDecision(deliver=False, reason=REASON_QUIET_HOURS, defer_until=quiet_window_end(now, end, tz))


def should_deliver(job: Any, profile: PreferenceProfile | None, now: datetime) -> EligibilityDecision:
    """
    Decide for `job` (a DeliveryJob or JobCandidate: anything with .category and .channel).
    A missing profile evaluates as the default, fully opted-in profile.
    """
    if profile is None:
        return DELIVER
    channel = getattr(job, "channel", None) or Channel.EMAIL.value
    enabled_attr, categories_attr = _CHANNEL_FIELDS.get(channel, _CHANNEL_FIELDS[Channel.EMAIL.value])

    if getattr(profile, enabled_attr) is False:
        return EligibilityDecision(deliver=False, reason=REASON_CHANNEL_DISABLED)

    pref_key = CATEGORY_PREFERENCE_KEYS.get(job.category)
    if pref_key is not None:
        categories = getattr(profile, categories_attr) or {}
        if categories.get(pref_key) is False:
            return EligibilityDecision(deliver=False, reason=REASON_CATEGORY_OPTED_OUT)

    deferral = quiet_hours_decision(profile, now)
    if deferral is not None:
        return deferral
    return DELIVER
