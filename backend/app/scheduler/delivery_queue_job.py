"""
Runs every QUEUE_TICK_SECONDS (default 60s): one queue processor tick.
The processor is built once per process from settings; a transport misconfiguration is logged at build
time and the processor then refuses to claim jobs until the config is fixed and the app restarted.
"""
import logging
import threading
from datetime import timedelta

from app.config import settings
from app.core.errors import TransportConfigurationError
from app.db.session import SessionLocal
from app.services.email_transport import build_transport
from app.services.queue_processor import QueueProcessor
from app.services.retry_policy import retry_policy_from_settings
from app.services.templates import TemplateRenderer

logger = logging.getLogger(__name__)

_processor: QueueProcessor | None = None
_processor_lock = threading.Lock()


def build_processor(session_factory=SessionLocal) -> QueueProcessor:
    try:
        transport = build_transport(settings)
    except TransportConfigurationError as e:
        logger.error("Email transport misconfigured, delivery disabled: %s", e)
        transport = None
    return QueueProcessor(
        session_factory,
        transport,
        TemplateRenderer(),
        retry_policy=retry_policy_from_settings(settings),
        batch_size=settings.queue_batch_size,
        transport_timeout=settings.transport_timeout_seconds,
        stale_after=timedelta(minutes=settings.stale_processing_minutes),
        frontend_url=settings.frontend_url,
    )


def get_processor() -> QueueProcessor:
    global _processor
    with _processor_lock:
        if _processor is None:
            _processor = build_processor()
        return _processor


def run_queue_recovery_job() -> None:
    """Startup: requeue jobs a crashed process left in processing."""
    try:
        get_processor().start()
    except Exception as e:
        logger.exception("Delivery queue recovery failed: %s", e)


def run_queue_tick_job() -> None:
    try:
        get_processor().tick()
    except Exception as e:
        logger.exception("Delivery queue tick failed: %s", e)
