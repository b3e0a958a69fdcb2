"""
Single source of truth for database tables that exist after migrations.

Use these names when writing raw SQL (e.g. TRUNCATE). alembic/env.py asserts the registered
models match ALL_TABLE_NAMES exactly.
"""
# All tables that exist in the DB. Must match models and migrations.
ALL_TABLE_NAMES = (
    "delivery_jobs",
    "notifications",
    "notification_templates",
    "preference_profiles",
    "scheduler_leases",
)

# Tables cleared when resetting the delivery queue (TRUNCATE). Profiles and templates are kept.
QUEUE_TABLE_NAMES = (
    "delivery_jobs",
    "scheduler_leases",
)
