"""
Admin preview of email templates: render one template with sample data (or caller-supplied data)
exactly the way the queue processor would, but surface failures instead of falling back.

Supplied data with a "kind" key is validated as a delivery payload; anything else is used as a
free-form context, like a generic payload.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from jinja2 import TemplateNotFound
from pydantic import ValidationError

from app.core.errors import EmailTemplateNotFoundError, TemplatePreviewError
from app.models.enums import Frequency
from app.schemas.payloads import (
    ConnectionPayload,
    DigestHighlight,
    DigestPayload,
    JobAlertPayload,
    JobSummary,
    NotificationPayload,
    parse_payload,
)
from app.services.digest_service import DIGEST_SUBJECTS
from app.services.templates import TemplateRenderer, add_portal_links

logger = logging.getLogger(__name__)

_SAMPLE_WINDOW_END = datetime(2026, 10, 17, 8, 0, tzinfo=timezone.utc)


def _sample_digest(period_key: str, days: int) -> DigestPayload:
    start = _SAMPLE_WINDOW_END - timedelta(days=days)
    return DigestPayload(
        period_key=period_key,
        window_start=start,
        window_end=_SAMPLE_WINDOW_END,
        new_jobs=3,
        applications=1,
        connections=2,
        profile_views=4,
        highlights=[
            DigestHighlight(type="job_match", title="New job match: Backend Engineer", created_at=start),
            DigestHighlight(type="connection_request", title="Jordan Lee wants to connect", created_at=start),
        ],
    )


SAMPLE_PAYLOADS = {
    "job_alert": JobAlertPayload(
        jobs=[
            JobSummary(title="Backend Engineer", company="Acme", location="Remote", url="https://jobs.example.com/42"),
            JobSummary(title="Platform Engineer", company="Globex", location="Berlin"),
        ],
        total_jobs=2,
    ),
    "connection_request": ConnectionPayload(from_name="Jordan Lee", headline="Engineering Manager at Acme"),
    "digest_daily": _sample_digest("2026-10-17", 1),
    "digest_weekly": _sample_digest("2026-W42", 7),
    "notification": NotificationPayload(
        type="job_match",
        title="New job match: Backend Engineer",
        message="Acme is hiring a Backend Engineer that matches your profile.",
        url="https://jobs.example.com/42",
    ),
}

SAMPLE_SUBJECTS = {
    "job_alert": "{{job_count}} new job matches for you",
    "connection_request": "{{from_name}} wants to connect",
    "digest_daily": DIGEST_SUBJECTS[Frequency.DAILY],
    "digest_weekly": DIGEST_SUBJECTS[Frequency.WEEKLY],
}


def _context(template_name: str, data: dict[str, Any] | None) -> dict[str, Any]:
    if data is None:
        return SAMPLE_PAYLOADS.get(template_name, SAMPLE_PAYLOADS["notification"]).template_context()
    if "kind" not in data:
        return dict(data)
    try:
        return parse_payload(data).template_context()
    except ValidationError as e:
        raise TemplatePreviewError(f"Preview data is not a valid {data['kind']!r} payload: {e}") from e


def preview_template(
    renderer: TemplateRenderer,
    template_name: str,
    data: dict[str, Any] | None = None,
    subject: str | None = None,
    frontend_url: str | None = None,
) -> dict[str, Any]:
    """
    Render template_name for review. Returns subject, html and text, and whether sample data was used.
    Raises EmailTemplateNotFoundError for names that are not renderable templates and
    TemplatePreviewError when the data is invalid or the template raises.
    """
    if template_name not in renderer.email_template_names():
        raise EmailTemplateNotFoundError(f"Unknown email template: {template_name}")

    context = add_portal_links(_context(template_name, data), frontend_url)
    subject_template = subject or SAMPLE_SUBJECTS.get(template_name) or context.get("title") or ""
    rendered_subject = renderer.render_subject(subject_template, context)
    context["subject"] = rendered_subject
    try:
        rendered = renderer.render(template_name, context)
    except TemplateNotFound as e:
        raise EmailTemplateNotFoundError(f"Unknown email template: {template_name}") from e
    except Exception as e:
        logger.info("Preview of %s failed: %s", template_name, e)
        raise TemplatePreviewError(f"Template {template_name} failed to render: {type(e).__name__}: {e}") from e
    return {
        "template": template_name,
        "subject": rendered_subject,
        "html": rendered.html,
        "text": rendered.text,
        "sample_data": data is None,
    }
