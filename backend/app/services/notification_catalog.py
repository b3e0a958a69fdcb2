"""
Built-in notification templates, one per notification type.

title/message/email_subject carry {{placeholder}} markers filled from the event data.
job_category is the DeliveryJob category for the email copy; None means the type is in-app only.
An active NotificationTemplate row for the same type overrides the text fields here.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.core.errors import UnknownNotificationTypeError
from app.models.enums import JobCategory, NotificationCategory
from app.models.notification_template import NotificationTemplate
from app.schemas.notifications import NotificationTemplateUpdate

logger = logging.getLogger(__name__)

DEFAULT_EMAIL_TEMPLATE = "notification"


@dataclass(frozen=True)
class TemplateSpec:
    type: str
    title: str
    message: str
    category: str
    job_category: str | None = None
    email_subject: str | None = None
    email_template: str = DEFAULT_EMAIL_TEMPLATE

    @property
    def emails(self) -> bool:
        return self.job_category is not None


_JOB = NotificationCategory.JOB.value
_NETWORK = NotificationCategory.NETWORK.value
_ASSESSMENT = NotificationCategory.ASSESSMENT.value
_SYSTEM = NotificationCategory.SYSTEM.value
_ACTIVITY = NotificationCategory.ACTIVITY.value

BUILTIN_TEMPLATES: dict[str, TemplateSpec] = {
    t.type: t
    for t in (
        # Job-related
        TemplateSpec(
            "job_match",
            "New job match: {{job_title}}",
            "{{company}} is hiring a {{job_title}} that matches your profile.",
            _JOB,
            JobCategory.JOB_ALERT.value,
            "New job match: {{job_title}}",
            "job_alert",
        ),
        TemplateSpec(
            "job_application",
            "New application for {{job_title}}",
            "{{applicant_name}} applied for {{job_title}}.",
            _JOB,
            JobCategory.APPLICATION_UPDATE.value,
            "New application for {{job_title}}",
        ),
        TemplateSpec(
            "application_status_change",
            "Application update: {{job_title}}",
            "Your application for {{job_title}} is now {{status}}.",
            _JOB,
            JobCategory.APPLICATION_UPDATE.value,
            "Your application for {{job_title}} was updated",
        ),
        TemplateSpec(
            "interview_scheduled",
            "Interview scheduled: {{job_title}}",
            "Your interview for {{job_title}} at {{company}} is scheduled for {{interview_time}}.",
            _JOB,
            JobCategory.INTERVIEW_REMINDER.value,
            "Interview scheduled for {{job_title}}",
        ),
        # Networking
        TemplateSpec(
            "connection_request",
            "New connection request",
            "{{sender_name}} wants to connect with you.",
            _NETWORK,
            JobCategory.CONNECTION_REQUEST.value,
            "{{sender_name}} wants to connect",
            "connection_request",
        ),
        TemplateSpec(
            "connection_accepted",
            "Connection accepted",
            "{{sender_name}} accepted your connection request.",
            _NETWORK,
            JobCategory.CONNECTION_REQUEST.value,
            "{{sender_name}} accepted your connection request",
        ),
        TemplateSpec(
            "skill_endorsed",
            "New endorsement",
            "{{sender_name}} endorsed you for {{skill}}.",
            _NETWORK,
            JobCategory.ENDORSEMENT.value,
            "{{sender_name}} endorsed you for {{skill}}",
        ),
        TemplateSpec(
            "recommendation_request",
            "Recommendation request",
            "{{sender_name}} asked you for a recommendation.",
            _NETWORK,
            JobCategory.RECOMMENDATION.value,
            "{{sender_name}} asked you for a recommendation",
        ),
        TemplateSpec(
            "recommendation_received",
            "New recommendation",
            "{{sender_name}} wrote you a recommendation.",
            _NETWORK,
            JobCategory.RECOMMENDATION.value,
            "{{sender_name}} wrote you a recommendation",
        ),
        # Assessment
        TemplateSpec(
            "assessment_invitation",
            "Assessment invitation: {{assessment_title}}",
            "You have been invited to take the {{assessment_title}} assessment.",
            _ASSESSMENT,
            JobCategory.ASSESSMENT_INVITATION.value,
            "You're invited: {{assessment_title}}",
        ),
        TemplateSpec(
            "assessment_completed",
            "Assessment completed",
            "You scored {{score}} on {{assessment_title}}.",
            _ASSESSMENT,
            JobCategory.ASSESSMENT_INVITATION.value,
            "Your {{assessment_title}} results",
        ),
        TemplateSpec(
            "skill_verified",
            "Skill verified: {{skill}}",
            "Your {{skill}} skill is now verified.",
            _ASSESSMENT,
            JobCategory.ASSESSMENT_INVITATION.value,
            "Your {{skill}} skill is verified",
        ),
        # System
        TemplateSpec("profile_viewed", "Someone viewed your profile", "{{sender_name}} viewed your profile.", _SYSTEM),
        TemplateSpec("message_received", "New message", "{{sender_name}} sent you a message.", _SYSTEM),
        TemplateSpec(
            "system_announcement",
            "{{title}}",
            "{{message}}",
            _SYSTEM,
            JobCategory.SYSTEM.value,
            "{{title}}",
        ),
        # Activity
        TemplateSpec("activity_liked", "New like", "{{sender_name}} liked your post.", _ACTIVITY),
        TemplateSpec("activity_commented", "New comment", "{{sender_name}} commented on your post.", _ACTIVITY),
        TemplateSpec("new_follower", "New follower", "{{sender_name}} started following you.", _ACTIVITY),
    )
}


def get_active_override(db: Session, notification_type: str) -> NotificationTemplate | None:
    return (
        db.query(NotificationTemplate)
        .filter(NotificationTemplate.type == notification_type, NotificationTemplate.is_active.is_(True))
        .first()
    )


def get_template(db: Session, notification_type: str) -> TemplateSpec:
    """
    Template for notification_type: the built-in entry with any active DB override applied.
    The override replaces the text fields; the email category stays the built-in one.
    """
    builtin = BUILTIN_TEMPLATES.get(notification_type)
    if builtin is None:
        raise UnknownNotificationTypeError(f"Unknown notification type {notification_type!r}")
    row = get_active_override(db, notification_type)
    if row is None:
        return builtin
    return replace(
        builtin,
        title=row.title,
        message=row.message,
        category=row.category or builtin.category,
        email_subject=row.email_subject or builtin.email_subject,
        email_template=row.email_template or builtin.email_template,
    )


def list_templates(db: Session) -> list[dict]:
    """Every known type with its effective text and whether a DB override is active."""
    overrides = {row.type: row for row in db.query(NotificationTemplate).all()}
    out = []
    for notification_type, builtin in sorted(BUILTIN_TEMPLATES.items()):
        row = overrides.get(notification_type)
        effective = get_template(db, notification_type) if row is not None and row.is_active else builtin
        out.append(
            {
                "type": notification_type,
                "title": effective.title,
                "message": effective.message,
                "category": effective.category,
                "job_category": effective.job_category,
                "email_subject": effective.email_subject,
                "email_template": effective.email_template,
                "overridden": bool(row is not None and row.is_active),
                "updated_at": row.updated_at.isoformat() if row is not None and row.updated_at else None,
            }
        )
    return out


def upsert_template(db: Session, notification_type: str, update: NotificationTemplateUpdate) -> NotificationTemplate:
    """Create or replace the DB override for a built-in notification type."""
    builtin = BUILTIN_TEMPLATES.get(notification_type)
    if builtin is None:
        raise UnknownNotificationTypeError(f"Unknown notification type {notification_type!r}")
    row = db.query(NotificationTemplate).filter(NotificationTemplate.type == notification_type).first()
    if row is None:
        row = NotificationTemplate(type=notification_type)
        db.add(row)
    row.title = update.title
    row.message = update.message
    row.category = update.category.value if update.category else builtin.category
    row.email_subject = update.email_subject
    row.email_template = update.email_template
    row.is_active = update.is_active
    row.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(row)
    logger.info("Notification template %s updated (active=%s)", notification_type, row.is_active)
    return row
