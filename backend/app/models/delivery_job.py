"""Delivery job: one unit of outbound notification work with its own retry state.

status: pending -> processing -> sent | pending (retry / quiet-hours deferral) | failed | cancelled.
priority_rank: numeric mirror of priority so selection can ORDER BY priority desc.
subject: subject template with {{placeholder}} markers; template_name: body template.
payload: rendering context, validated by app.schemas.payloads (tagged on 'kind').
dedupe_key: period-keyed idempotency key (digests); unique, NULL for ordinary jobs.
"""
from sqlalchemy import CheckConstraint, Column, Index, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.core.constants import MAX_ATTEMPTS
from app.db.base import Base
from app.db.types import UTCDateTime
from app.models.enums import JobPriority, JobStatus


class DeliveryJob(Base):
    __tablename__ = "delivery_jobs"
    __table_args__ = (
        CheckConstraint("attempts >= 0 AND attempts <= max_attempts", name="ck_delivery_jobs_attempts"),
        CheckConstraint(
            "status <> 'sent' OR (sent_at IS NOT NULL AND failure_reason IS NULL)",
            name="ck_delivery_jobs_sent",
        ),
        CheckConstraint("status <> 'failed' OR attempts = max_attempts", name="ck_delivery_jobs_failed"),
        # Selection predicate: status = pending AND scheduled_for <= now
        Index("ix_delivery_jobs_status_scheduled", "status", "scheduled_for"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_id = Column(String(64), nullable=False, index=True)
    recipient_email = Column(String(320), nullable=False)
    channel = Column(String(16), nullable=False, default="email")
    category = Column(String(32), nullable=False, index=True)
    priority = Column(String(8), nullable=False, default=JobPriority.MEDIUM.value)
    priority_rank = Column(Integer, nullable=False, default=JobPriority.MEDIUM.rank)
    status = Column(String(16), nullable=False, default=JobStatus.PENDING.value)
    scheduled_for = Column(UTCDateTime(), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=MAX_ATTEMPTS)
    last_attempt_at = Column(UTCDateTime(), nullable=True)
    sent_at = Column(UTCDateTime(), nullable=True)
    failure_reason = Column(Text, nullable=True)
    subject = Column(String(255), nullable=False)
    template_name = Column(String(64), nullable=False)
    payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    dedupe_key = Column(String(160), nullable=True, unique=True)
    provider_message_id = Column(String(255), nullable=True)
    notification_id = Column(Integer, nullable=True, index=True)
    created_at = Column(UTCDateTime(), nullable=False)
    updated_at = Column(UTCDateTime(), nullable=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.SENT.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value)

    def __repr__(self) -> str:
        return f"<DeliveryJob id={self.id} {self.category} {self.status} attempts={self.attempts}/{self.max_attempts}>"
