"""
FastAPI app entrypoint.

Notifications API + delivery admin, with the email delivery pipeline driven by APScheduler:
queue tick every QUEUE_TICK_SECONDS, digest check every minute, retention sweep daily.
"""
import logging
import os
import threading
from contextlib import asynccontextmanager
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from app.api.routes import delivery_admin, notifications
from app.config import settings
from app.core.constants import (
    DIGEST_JOB_ID,
    QUEUE_PROCESSOR_JOB_ID,
    RETENTION_JOB_ID,
    RETENTION_SWEEP_HOUR,
)
from app.scheduler.delivery_queue_job import get_processor, run_queue_recovery_job, run_queue_tick_job
from app.scheduler.digest_job import run_digest_check_job
from app.scheduler.retention_job import run_retention_job

logger = logging.getLogger(__name__)

_scheduler = BackgroundScheduler(timezone="UTC")


def _add_jobs(scheduler: BackgroundScheduler) -> None:
    # max_instances=1 + coalesce: a slow run is never overlapped by the next one, missed runs collapse
    common = {"max_instances": 1, "coalesce": True, "replace_existing": True}
    scheduler.add_job(
        run_queue_tick_job,
        "interval",
        seconds=settings.queue_tick_seconds,
        id=QUEUE_PROCESSOR_JOB_ID,
        **common,
    )
    scheduler.add_job(run_digest_check_job, "interval", minutes=1, id=DIGEST_JOB_ID, **common)
    scheduler.add_job(run_retention_job, "cron", hour=RETENTION_SWEEP_HOUR, minute=0, id=RETENTION_JOB_ID, **common)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Delivery config: provider=%s tick=%ss batch=%s retry=%s/%ss retention=%sd digests=%s daily %s, weekday %s %s",
        settings.email_provider,
        settings.queue_tick_seconds,
        settings.queue_batch_size,
        settings.retry_backoff,
        settings.retry_delay_seconds,
        settings.retention_days,
        settings.digest_timezone,
        settings.daily_digest_time,
        settings.weekly_digest_weekday,
        settings.weekly_digest_time,
    )
    if settings.scheduler_enabled:
        _add_jobs(_scheduler)
        _scheduler.start()
        app.state.scheduler = _scheduler

        def startup_background():
            # Requeue jobs stuck in processing from a previous run, then one tick so nothing waits a full interval
            run_queue_recovery_job()
            run_queue_tick_job()

        threading.Thread(target=startup_background, daemon=True).start()
    else:
        logger.info("SCHEDULER_ENABLED=false: delivery jobs run only via scripts/run_delivery_jobs.py")
    logger.info("Backend ready at http://127.0.0.1:8000 (docs at /docs)")
    yield
    if _scheduler.running:
        _scheduler.shutdown(wait=False)


app = FastAPI(title="JobPortal Notifications", version="0.1.0", lifespan=lifespan)

# CORS: dev origins + optional CORS_ORIGINS env (comma-separated) for the production frontend
_cors_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_cors_extra = os.getenv("CORS_ORIGINS", "")
if _cors_extra:
    _cors_origins.extend(o.strip() for o in _cors_extra.split(",") if o.strip())
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(notifications.router, tags=["notifications"])
app.include_router(delivery_admin.router, tags=["delivery-admin"])


@app.get("/", include_in_schema=False)
def root():
    return {"message": "JobPortal Notifications API", "docs": "/docs", "health": "/health"}


@app.get("/health")
def health() -> dict[str, str]:
    transport = "disabled"
    if settings.scheduler_enabled:
        processor = get_processor()
        transport = processor.transport.name if processor.transport is not None else "unconfigured"
    return {"status": "ok", "email_transport": transport}
