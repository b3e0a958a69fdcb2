from app.services.eligibility import should_deliver
from app.services.notification_service import notify, notify_bulk, on_notification_created
from app.services.preference_service import get_or_create_profile, upsert_profile

__all__ = ["notify", "notify_bulk", "on_notification_created", "should_deliver", "get_or_create_profile", "upsert_profile"]
