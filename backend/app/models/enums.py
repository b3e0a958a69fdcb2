"""String enums shared by models, services and API schemas. Values are what is stored in the DB."""
from enum import Enum


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (JobStatus.SENT.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value)


class JobPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self.value]


_PRIORITY_RANK = {"low": 0, "medium": 1, "high": 2}


class JobCategory(str, Enum):
    JOB_ALERT = "job_alert"
    APPLICATION_UPDATE = "application_update"
    INTERVIEW_REMINDER = "interview_reminder"
    CONNECTION_REQUEST = "connection_request"
    ENDORSEMENT = "endorsement"
    RECOMMENDATION = "recommendation"
    ASSESSMENT_INVITATION = "assessment_invitation"
    DIGEST_DAILY = "digest_daily"
    DIGEST_WEEKLY = "digest_weekly"
    SYSTEM = "system"


class Channel(str, Enum):
    EMAIL = "email"
    PUSH = "push"
    IN_APP = "in_app"


class Frequency(str, Enum):
    IMMEDIATE = "immediate"
    DAILY = "daily"
    WEEKLY = "weekly"


class NotificationCategory(str, Enum):
    JOB = "job"
    NETWORK = "network"
    ASSESSMENT = "assessment"
    SYSTEM = "system"
    ACTIVITY = "activity"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"
