"""
Centralized constants for the scheduler and the delivery queue.

Change job IDs or policy values here instead of scattering literals across main, jobs and services.
Intervals and timing that differ per environment come from app.config.settings.
"""

# Scheduler job IDs (must match ids used in main.py add_job)
QUEUE_PROCESSOR_JOB_ID = "delivery_queue_tick"
DIGEST_JOB_ID = "digest_check"
RETENTION_JOB_ID = "retention_sweep"

# Lease names for single-flight across processes (scheduler_leases.name)
QUEUE_PROCESSOR_LEASE = "queue_processor"
DAILY_DIGEST_LEASE = "digest_daily"
WEEKLY_DIGEST_LEASE = "digest_weekly"
RETENTION_LEASE = "retention_sweep"

# Lease expiry; must comfortably exceed one batch of sends at the transport timeout
LEASE_TTL_SECONDS = 300

# Delivery policy
MAX_ATTEMPTS = 3
BATCH_SIZE = 10
RETRY_DELAY_SECONDS = 5 * 60
RETENTION_DAYS = 7
STALE_PROCESSING_MINUTES = 15
DIGEST_HIGHLIGHT_LIMIT = 10

# Retention sweep runs daily at this UTC hour
RETENTION_SWEEP_HOUR = 2

# Notification text limits
NOTIFICATION_TITLE_MAX = 200
NOTIFICATION_MESSAGE_MAX = 500

# delivery_jobs.subject column width
SUBJECT_MAX = 255

# Admin listing caps
ADMIN_JOBS_PAGE_LIMIT = 100
NOTIFICATIONS_PAGE_LIMIT = 200
