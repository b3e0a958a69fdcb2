"""Admin-editable template for a notification type; overrides the built-in catalog entry when active."""
from sqlalchemy import Boolean, Column, Integer, String, Text

from app.db.base import Base
from app.db.types import UTCDateTime


class NotificationTemplate(Base):
    __tablename__ = "notification_templates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(48), nullable=False, unique=True, index=True)
    title = Column(String(200), nullable=False)
    message = Column(String(500), nullable=False)
    category = Column(String(16), nullable=False)
    email_subject = Column(String(255), nullable=True)
    email_template = Column(String(64), nullable=True)  # body template name under templates/email
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(UTCDateTime(), nullable=True)
