"""
Daily / weekly digests: one low-priority email per opted-in user per period summarizing the
notifications they received in the previous period.

DigestSchedule is the calendar: for an injected `now` it gives the start of the current period
(the most recent local trigger time) and a period key. The digest for that period covers
[period_start - period_length, period_start). Each job carries the dedupe key
"<category>:<user_id>:<period_key>", so running the generator twice in one period creates nothing new.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import Settings
from app.core.constants import DIGEST_HIGHLIGHT_LIMIT
from app.models.enums import Frequency, JobCategory, JobPriority
from app.models.notification import Notification
from app.models.preference_profile import PreferenceProfile
from app.schemas.payloads import DigestHighlight, DigestPayload
from app.services.delivery_queue import enqueue_job, find_job_by_dedupe_key
from app.services.eligibility import JobCandidate, parse_clock, should_deliver
from app.services.preference_service import list_profiles_by_frequency

logger = logging.getLogger(__name__)

# Notification type -> DigestPayload counter. Anything else counts as "other".
TYPE_BUCKETS: dict[str, str] = {
    "job_match": "new_jobs",
    "job_application": "applications",
    "application_status_change": "applications",
    "interview_scheduled": "applications",
    "connection_request": "connections",
    "connection_accepted": "connections",
    "new_follower": "connections",
    "skill_endorsed": "endorsements",
    "profile_viewed": "profile_views",
}

DIGEST_SUBJECTS = {
    Frequency.DAILY: "Your daily JobPortal digest: {{total}} updates",
    Frequency.WEEKLY: "Your week on JobPortal: {{total}} updates",
}


@dataclass(frozen=True)
class DigestSchedule:
    frequency: Frequency
    at: time
    tz: ZoneInfo
    weekday: int = 6  # weekly only; Monday=0
    highlight_limit: int = DIGEST_HIGHLIGHT_LIMIT

    def __post_init__(self):
        if self.frequency not in (Frequency.DAILY, Frequency.WEEKLY):
            raise ValueError(f"Digest schedule needs daily or weekly frequency, got {self.frequency}")

    @classmethod
    def from_settings(cls, settings: Settings, frequency: Frequency) -> "DigestSchedule":
        at = settings.daily_digest_time if frequency == Frequency.DAILY else settings.weekly_digest_time
        return cls(
            frequency=frequency,
            at=parse_clock(at),
            tz=ZoneInfo(settings.digest_timezone or "UTC"),
            weekday=settings.weekly_digest_weekday,
            highlight_limit=settings.digest_highlight_limit,
        )

    @property
    def category(self) -> str:
        if self.frequency == Frequency.DAILY:
            return JobCategory.DIGEST_DAILY.value
        return JobCategory.DIGEST_WEEKLY.value

    @property
    def template_name(self) -> str:
        return self.category

    @property
    def period_length(self) -> timedelta:
        return timedelta(days=1) if self.frequency == Frequency.DAILY else timedelta(days=7)

    def _local_start(self, now: datetime) -> datetime:
        local_now = now.astimezone(self.tz)
        start = datetime.combine(local_now.date(), self.at, tzinfo=self.tz)
        if self.frequency == Frequency.WEEKLY:
            start -= timedelta(days=(local_now.weekday() - self.weekday) % 7)
        if start > local_now:
            start -= self.period_length
        return start

    def period_start(self, now: datetime) -> datetime:
        """Most recent trigger instant at or before now, in UTC."""
        return self._local_start(now).astimezone(timezone.utc)

    def period_key(self, now: datetime) -> str:
        """'2026-10-17' for daily periods, '2026-W42' for weekly ones (local calendar)."""
        start = self._local_start(now)
        if self.frequency == Frequency.DAILY:
            return start.date().isoformat()
        year, week, _ = start.isocalendar()
        return f"{year}-W{week:02d}"

    def window(self, now: datetime) -> tuple[datetime, datetime]:
        """[start, end) of the activity a digest generated at now summarizes, in UTC."""
        end = self._local_start(now)
        return (end - self.period_length).astimezone(timezone.utc), end.astimezone(timezone.utc)

    def dedupe_key(self, user_id: str, now: datetime) -> str:
        return f"{self.category}:{user_id}:{self.period_key(now)}"


@dataclass
class DigestRunResult:
    period_key: str
    created: int = 0
    already_queued: int = 0
    opted_out: int = 0
    no_email: int = 0
    job_ids: list[int] = field(default_factory=list)


def build_digest_payload(
    db: Session,
    user_id: str,
    window_start: datetime,
    window_end: datetime,
    period_key: str,
    highlight_limit: int = DIGEST_HIGHLIGHT_LIMIT,
) -> DigestPayload:
    """Per-bucket counts via GROUP BY type plus the newest highlight_limit rows; the window is never loaded whole."""
    in_window = (
        Notification.recipient_id == user_id,
        Notification.created_at >= window_start,
        Notification.created_at < window_end,
    )
    counts = {bucket: 0 for bucket in ("new_jobs", "applications", "connections", "endorsements", "profile_views", "other")}
    type_counts = (
        db.query(Notification.type, func.count(Notification.id))
        .filter(*in_window)
        .group_by(Notification.type)
        .all()
    )
    for notification_type, count in type_counts:
        counts[TYPE_BUCKETS.get(notification_type, "other")] += count

    rows = (
        db.query(Notification.type, Notification.title, Notification.created_at)
        .filter(*in_window)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(highlight_limit)
        .all()
    )
    highlights = [DigestHighlight(type=row.type, title=row.title, created_at=row.created_at) for row in rows]
    return DigestPayload(
        period_key=period_key,
        window_start=window_start,
        window_end=window_end,
        highlights=highlights,
        **counts,
    )


def _enqueue_digest(db: Session, schedule: DigestSchedule, profile: PreferenceProfile, now: datetime, result: DigestRunResult) -> None:
    key = schedule.dedupe_key(profile.user_id, now)
    if find_job_by_dedupe_key(db, key) is not None:
        result.already_queued += 1
        return

    decision = should_deliver(JobCandidate(category=schedule.category), profile, now)
    if decision.is_opt_out:
        logger.debug("Digest skipped for %s: %s", profile.user_id, decision.reason)
        result.opted_out += 1
        return

    window_start, window_end = schedule.window(now)
    payload = build_digest_payload(db, profile.user_id, window_start, window_end, result.period_key, schedule.highlight_limit)
    try:
        job = enqueue_job(
            db,
            recipient_id=profile.user_id,
            recipient_email=profile.email,
            category=schedule.category,
            subject=DIGEST_SUBJECTS[schedule.frequency],
            template_name=schedule.template_name,
            payload=payload,
            priority=JobPriority.LOW,
            scheduled_for=decision.defer_until if decision.is_deferral else now,
            dedupe_key=key,
            now=now,
        )
    except IntegrityError:
        # Another runner inserted the same period key first
        db.rollback()
        result.already_queued += 1
        return
    result.created += 1
    result.job_ids.append(job.id)


def generate_digests(db: Session, schedule: DigestSchedule, now: datetime | None = None) -> DigestRunResult:
    """Create this period's digest job for every profile on schedule.frequency. Idempotent per period."""
    now = now or datetime.now(timezone.utc)
    result = DigestRunResult(period_key=schedule.period_key(now))
    profiles = list_profiles_by_frequency(db, schedule.frequency)
    for profile in profiles:
        if not profile.email:
            result.no_email += 1
            continue
        _enqueue_digest(db, schedule, profile, now, result)
    logger.info(
        "%s digests for %s: %s created, %s already queued, %s opted out, %s without email",
        schedule.frequency.value.capitalize(),
        result.period_key,
        result.created,
        result.already_queued,
        result.opted_out,
        result.no_email,
    )
    return result
