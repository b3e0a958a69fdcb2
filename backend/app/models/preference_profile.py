"""Per-user notification preferences: exactly one row per user_id.

Each channel has an enabled flag plus a category -> bool map; a category missing from the map is opted in.
quiet_start / quiet_end are local 'HH:MM' clock times in quiet_timezone; the window may wrap midnight.
"""
from sqlalchemy import Boolean, Column, Integer, JSON, String
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base
from app.db.types import UTCDateTime

_JSON = JSON().with_variant(JSONB, "postgresql")


class PreferenceProfile(Base):
    __tablename__ = "preference_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    email = Column(String(320), nullable=True)
    email_enabled = Column(Boolean, nullable=False, default=True)
    email_categories = Column(_JSON, nullable=False, default=dict)
    push_enabled = Column(Boolean, nullable=False, default=True)
    push_categories = Column(_JSON, nullable=False, default=dict)
    in_app_enabled = Column(Boolean, nullable=False, default=True)
    in_app_categories = Column(_JSON, nullable=False, default=dict)
    frequency = Column(String(16), nullable=False, default="immediate", index=True)
    quiet_hours_enabled = Column(Boolean, nullable=False, default=False)
    quiet_start = Column(String(5), nullable=False, default="22:00")
    quiet_end = Column(String(5), nullable=False, default="08:00")
    quiet_timezone = Column(String(64), nullable=False, default="UTC")
    updated_at = Column(UTCDateTime(), nullable=True)
