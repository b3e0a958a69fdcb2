"""Delivery payload union: tagged shapes plus the generic escape hatch."""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from app.schemas.payloads import (
    ConnectionPayload,
    DigestPayload,
    GenericPayload,
    JobAlertPayload,
    JobSummary,
    NotificationPayload,
    parse_payload,
)


def test_untagged_dict_is_generic():
    payload = parse_payload({"headline": "Hello", "count": 2})
    assert isinstance(payload, GenericPayload)
    assert payload.template_context() == {"headline": "Hello", "count": 2}
    assert isinstance(parse_payload(None), GenericPayload)


def test_tagged_dict_selects_shape():
    stored = ConnectionPayload(from_name="Ada").model_dump(mode="json")
    assert stored["kind"] == "connection"
    assert isinstance(parse_payload(stored), ConnectionPayload)


def test_unknown_kind_is_rejected():
    with pytest.raises(ValidationError):
        parse_payload({"kind": "carrier_pigeon"})


def test_missing_required_field_is_rejected():
    with pytest.raises(ValidationError):
        parse_payload({"kind": "notification", "type": "job_match"})


def test_job_alert_context_caps_listing():
    payload = JobAlertPayload(jobs=[JobSummary(title=f"Job {i}") for i in range(8)])
    ctx = payload.template_context()
    assert len(ctx["jobs"]) == 5
    assert ctx["job_count"] == 8
    assert ctx["has_more_jobs"] is True


def test_notification_context_merges_data_under_fields():
    payload = NotificationPayload(type="job_match", title="Real title", message="m", data={"title": "shadowed", "company": "Acme"})
    ctx = payload.template_context()
    assert ctx["title"] == "Real title"
    assert ctx["company"] == "Acme"
    assert "kind" not in ctx


def test_digest_total_and_dates():
    payload = DigestPayload(
        period_key="2026-10-17",
        window_start=datetime(2026, 10, 16, 8, tzinfo=timezone.utc),
        window_end=datetime(2026, 10, 17, 8, tzinfo=timezone.utc),
        new_jobs=2,
        connections=1,
        other=4,
    )
    ctx = parse_payload(payload.model_dump(mode="json")).template_context()
    assert ctx["total"] == 7
    assert ctx["window_start_str"] == "Oct 16, 2026"
