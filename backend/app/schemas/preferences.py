"""Request/response shapes for preference profiles (GET/PUT /notifications/preferences)."""
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.enums import Frequency

_HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class ChannelPreferences(BaseModel):
    enabled: bool = True
    categories: dict[str, bool] = Field(default_factory=dict)


class QuietHoursSettings(BaseModel):
    enabled: bool = False
    start_time: str = Field("22:00", pattern=_HHMM_PATTERN)
    end_time: str = Field("08:00", pattern=_HHMM_PATTERN)
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: str) -> str:
        v = (v or "").strip() or "UTC"
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone {v!r}") from e
        return v


class PreferenceProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    email: str | None = None
    email_channel: ChannelPreferences
    push_channel: ChannelPreferences
    in_app_channel: ChannelPreferences
    frequency: Frequency
    quiet_hours: QuietHoursSettings
    updated_at: datetime | None = None


class PreferenceProfileUpdate(BaseModel):
    """Partial update: omitted fields keep their stored value."""

    email: str | None = Field(None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    email_channel: ChannelPreferences | None = None
    push_channel: ChannelPreferences | None = None
    in_app_channel: ChannelPreferences | None = None
    frequency: Frequency | None = None
    quiet_hours: QuietHoursSettings | None = None
