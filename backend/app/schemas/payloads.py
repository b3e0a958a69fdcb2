"""
Delivery job payloads: a tagged union on 'kind' with one shape per category family,
plus a 'generic' escape hatch for free-form template context.

Jobs store payload.model_dump(mode="json"); the processor re-validates with parse_payload before rendering.
"""
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class JobSummary(BaseModel):
    title: str
    company: str | None = None
    location: str | None = None
    url: str | None = None


class JobAlertPayload(BaseModel):
    kind: Literal["job_alert"] = "job_alert"
    jobs: list[JobSummary] = Field(default_factory=list)
    total_jobs: int = 0
    all_jobs_url: str | None = None

    def template_context(self) -> dict[str, Any]:
        shown = self.jobs[:5]
        return {
            "jobs": [j.model_dump() for j in shown],
            "job_count": self.total_jobs or len(self.jobs),
            "has_more_jobs": (self.total_jobs or len(self.jobs)) > len(shown),
            "all_jobs_url": self.all_jobs_url,
        }


class ConnectionPayload(BaseModel):
    kind: Literal["connection"] = "connection"
    from_name: str
    from_user_id: str | None = None
    headline: str | None = None
    accept_url: str | None = None

    def template_context(self) -> dict[str, Any]:
        return self.model_dump(exclude={"kind"})


class NotificationPayload(BaseModel):
    """Email copy of an in-app notification (the default for immediate events)."""

    kind: Literal["notification"] = "notification"
    notification_id: int | None = None
    type: str
    title: str
    message: str
    url: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    def template_context(self) -> dict[str, Any]:
        return {**self.data, **self.model_dump(exclude={"kind", "data"})}


class DigestHighlight(BaseModel):
    type: str
    title: str
    created_at: datetime


class DigestPayload(BaseModel):
    kind: Literal["digest"] = "digest"
    period_key: str
    window_start: datetime
    window_end: datetime
    new_jobs: int = 0
    applications: int = 0
    connections: int = 0
    endorsements: int = 0
    profile_views: int = 0
    other: int = 0
    highlights: list[DigestHighlight] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.new_jobs + self.applications + self.connections + self.endorsements + self.profile_views + self.other

    def template_context(self) -> dict[str, Any]:
        ctx = self.model_dump(exclude={"kind"})
        ctx["total"] = self.total
        ctx["window_start_str"] = self.window_start.strftime("%b %d, %Y")
        ctx["window_end_str"] = self.window_end.strftime("%b %d, %Y")
        return ctx


class GenericPayload(BaseModel):
    kind: Literal["generic"] = "generic"
    data: dict[str, Any] = Field(default_factory=dict)

    def template_context(self) -> dict[str, Any]:
        return dict(self.data)


DeliveryPayload = Annotated[
    Union[JobAlertPayload, ConnectionPayload, NotificationPayload, DigestPayload, GenericPayload],
    Field(discriminator="kind"),
]

_payload_adapter = TypeAdapter(DeliveryPayload)


def parse_payload(raw: dict[str, Any] | None) -> DeliveryPayload:
    """Validate a stored payload. Untagged dicts (older rows, ad-hoc jobs) become GenericPayload."""
    raw = dict(raw or {})
    if "kind" not in raw:
        return GenericPayload(data=raw)
    return _payload_adapter.validate_python(raw)
