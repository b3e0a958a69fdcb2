"""User-visible notification, independent of whether any email was delivered.

recipient_id / sender_id: user ids owned by the portal (sender optional, e.g. system announcements).
type: notification kind ('job_match', 'connection_accepted', ...); category groups types for filtering.
read_at: set together with is_read (check constraint).
expires_at: optional TTL; expired rows are hidden from listings and deleted by the retention sweep.
data: type-specific payload (job_id, url, ...).
"""
from sqlalchemy import Boolean, CheckConstraint, Column, Index, Integer, JSON, String
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base
from app.db.types import UTCDateTime


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        CheckConstraint("NOT is_read OR read_at IS NOT NULL", name="ck_notifications_read_at"),
        Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
        Index("ix_notifications_recipient_unread", "recipient_id", "is_read"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_id = Column(String(64), nullable=False, index=True)
    sender_id = Column(String(64), nullable=True)
    type = Column(String(48), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    message = Column(String(500), nullable=False)
    category = Column(String(16), nullable=False)
    priority = Column(String(8), nullable=False, default="medium")
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(UTCDateTime(), nullable=True)
    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime(), nullable=False)
    expires_at = Column(UTCDateTime(), nullable=True, index=True)
    data = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
