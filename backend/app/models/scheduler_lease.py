"""Single-flight lease for a recurring task. Held while expires_at is in the future."""
from sqlalchemy import Column, String

from app.db.base import Base
from app.db.types import UTCDateTime


class SchedulerLease(Base):
    __tablename__ = "scheduler_leases"

    name = Column(String(64), primary_key=True)
    owner = Column(String(128), nullable=False)
    acquired_at = Column(UTCDateTime(), nullable=False)
    expires_at = Column(UTCDateTime(), nullable=False)
