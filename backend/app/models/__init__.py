from app.models.delivery_job import DeliveryJob
from app.models.notification import Notification
from app.models.notification_template import NotificationTemplate
from app.models.preference_profile import PreferenceProfile
from app.models.scheduler_lease import SchedulerLease

__all__ = [
    "DeliveryJob",
    "Notification",
    "NotificationTemplate",
    "PreferenceProfile",
    "SchedulerLease",
]
