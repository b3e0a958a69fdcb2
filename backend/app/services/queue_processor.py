"""
Queue processor: one tick = claim due jobs, re-check eligibility, render, send, record the outcome.

Ticks are single-flight twice over: a non-blocking in-process lock (overlapping scheduler threads)
and the queue_processor lease row (other processes). A tick that finds either held is a no-op.
Within a tick, jobs are handled sequentially in priority-then-age order. Each job is claimed with a
compare-and-swap before sending, so a job can only be sent by the processor that claimed it.

Per-job outcomes:
  lost       another processor claimed it first, or it was cancelled before the send (nothing sent)
  deferred   quiet hours; back to pending at the window's end, attempt not counted
  cancelled  user opted out (channel or category); terminal
  sent       transport accepted it
  retry      transport failed/timed out with attempts left; pending again after the retry delay
  failed     transport failed on the last attempt; terminal with failure_reason
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.constants import BATCH_SIZE, LEASE_TTL_SECONDS, QUEUE_PROCESSOR_LEASE, STALE_PROCESSING_MINUTES
from app.core.errors import StaleJobStateError, TransportError, TransportTimeoutError
from app.models.delivery_job import DeliveryJob
from app.schemas.payloads import parse_payload
from app.services import delivery_queue
from app.services.eligibility import should_deliver
from app.services.email_transport import DeliveryReceipt, EmailTransport, OutboundEmail
from app.services.lease_service import acquire_lease, make_owner_id, release_lease
from app.services.preference_service import get_profile
from app.services.retry_policy import FixedDelay, RetryPolicy
from app.services.templates import RenderedEmail, TemplateRenderer, add_portal_links, fallback_content

logger = logging.getLogger(__name__)

OUTCOME_LOST = "lost"
OUTCOME_DEFERRED = "deferred"
OUTCOME_CANCELLED = "cancelled"
OUTCOME_SENT = "sent"
OUTCOME_RETRY = "retry"
OUTCOME_FAILED = "failed"
OUTCOME_ERROR = "error"

DEFAULT_SUBJECT = "Notification from JobPortal"

_executor: ThreadPoolExecutor | None = None
_executor_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="email_send")
        return _executor


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TickResult:
    selected: int = 0
    outcomes: dict[str, int] = field(default_factory=dict)

    def record(self, outcome: str) -> None:
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def count(self, outcome: str) -> int:
        return self.outcomes.get(outcome, 0)


class QueueProcessor:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        transport: EmailTransport | None,
        renderer: TemplateRenderer,
        *,
        retry_policy: RetryPolicy | None = None,
        batch_size: int = BATCH_SIZE,
        transport_timeout: float = 10.0,
        stale_after: timedelta = timedelta(minutes=STALE_PROCESSING_MINUTES),
        lease_ttl_seconds: int = LEASE_TTL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
        owner: str | None = None,
        frontend_url: str = "",
    ):
        self.session_factory = session_factory
        self.transport = transport
        self.renderer = renderer
        self.retry_policy = retry_policy or FixedDelay()
        self.batch_size = batch_size
        self.transport_timeout = transport_timeout
        self.stale_after = stale_after
        self.lease_ttl_seconds = lease_ttl_seconds
        self.clock = clock
        self.owner = owner or make_owner_id()
        self.frontend_url = (frontend_url or "").rstrip("/")
        self._tick_lock = threading.Lock()

    # --- lifecycle ---

    def start(self) -> int:
        """Startup recovery: requeue jobs a previous (crashed) process left in processing."""
        db = self.session_factory()
        try:
            recovered = delivery_queue.recover_stale_jobs(db, self.clock(), self.stale_after)
        finally:
            db.close()
        if self.transport is None:
            logger.error("Queue processor started without an email transport; jobs will stay pending")
        else:
            logger.info("Queue processor started (transport=%s, owner=%s, recovered=%s)", self.transport.name, self.owner, recovered)
        return recovered

    def tick(self) -> TickResult | None:
        """
        Process one batch. Returns None when the tick did not run (another tick in flight, lease
        held elsewhere, or no transport configured).
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Queue tick skipped: previous tick still running")
            return None
        try:
            if self.transport is None:
                logger.error("No email transport configured; refusing to claim delivery jobs")
                return None
            db = self.session_factory()
            try:
                now = self.clock()
                if not acquire_lease(db, QUEUE_PROCESSOR_LEASE, self.owner, self.lease_ttl_seconds, now):
                    logger.debug("Queue tick skipped: lease %s held by another processor", QUEUE_PROCESSOR_LEASE)
                    return None
                try:
                    return self._run_batch(db, now)
                finally:
                    try:
                        release_lease(db, QUEUE_PROCESSOR_LEASE, self.owner, self.clock())
                    except Exception as e:
                        db.rollback()
                        logger.warning("Could not release lease %s (expires on its own): %s", QUEUE_PROCESSOR_LEASE, e)
            finally:
                db.close()
        finally:
            self._tick_lock.release()

    def _run_batch(self, db: Session, now: datetime) -> TickResult:
        delivery_queue.recover_stale_jobs(db, now, self.stale_after)
        job_ids = [j.id for j in delivery_queue.select_due_jobs(db, now, self.batch_size)]
        result = TickResult(selected=len(job_ids))
        if not job_ids:
            return result
        logger.info("Processing %s delivery jobs", len(job_ids))
        for job_id in job_ids:
            try:
                outcome = self.process_job(db, job_id)
            except StaleJobStateError as e:
                # Cancelled (or recovered) by someone else while we held it
                logger.warning("Job %s changed state mid-flight: %s", job_id, e)
                outcome = OUTCOME_LOST
            except Exception as e:
                # Persistence failure: job stays in its last committed state; the stale sweep picks it up
                db.rollback()
                logger.exception("Delivery job %s failed to process: %s", job_id, e)
                outcome = OUTCOME_ERROR
            result.record(outcome)
        logger.info("Queue tick done: %s", result.outcomes)
        return result

    # --- one job ---

    def process_job(self, db: Session, job_id: int) -> str:
        now = self.clock()
        if not delivery_queue.claim_job(db, job_id, now):
            logger.debug("Job %s already claimed elsewhere", job_id)
            return OUTCOME_LOST
        job = delivery_queue.get_job(db, job_id)
        if job.status != delivery_queue.PROCESSING:
            logger.info("Job %s left processing right after the claim (%s)", job_id, job.status)
            return OUTCOME_LOST
        profile = get_profile(db, job.recipient_id)

        decision = should_deliver(job, profile, now)
        if decision.is_deferral:
            delivery_queue.defer_job(db, job_id, decision.defer_until, now)
            logger.info("Job %s deferred until %s (%s)", job_id, decision.defer_until.isoformat(), decision.reason)
            return OUTCOME_DEFERRED
        if not decision.deliver:
            delivery_queue.cancel_claimed(db, job_id, decision.reason, now)
            logger.info("Job %s cancelled for user %s: %s", job_id, job.recipient_id, decision.reason)
            return OUTCOME_CANCELLED

        subject, rendered = self.compose(job)
        message = OutboundEmail(to=job.recipient_email, subject=subject, html=rendered.html, text=rendered.text)
        attempts, max_attempts = job.attempts, job.max_attempts
        if not self._still_claimed(db, job_id):
            logger.info("Job %s was cancelled while rendering; not sending", job_id)
            return OUTCOME_LOST
        try:
            receipt = self._send(message)
        except TransportError as e:
            return self._record_failure(db, job_id, attempts, max_attempts, str(e))
        except Exception as e:
            # Anything the provider throws counts as a delivery failure
            return self._record_failure(db, job_id, attempts, max_attempts, f"{type(e).__name__}: {e}")

        delivery_queue.mark_sent(db, job_id, self.clock(), receipt.message_id)
        logger.info("Job %s sent to %s via %s (%s)", job_id, message.to, receipt.provider, receipt.message_id)
        return OUTCOME_SENT

    def _still_claimed(self, db: Session, job_id: int) -> bool:
        status = db.query(DeliveryJob.status).filter(DeliveryJob.id == job_id).scalar()
        return status == delivery_queue.PROCESSING

    def _record_failure(self, db: Session, job_id: int, attempts: int, max_attempts: int, reason: str) -> str:
        now = self.clock()
        if attempts >= max_attempts:
            delivery_queue.mark_failed(db, job_id, reason, now)
            logger.error("Job %s failed after %s attempts: %s", job_id, attempts, reason)
            return OUTCOME_FAILED
        run_at = now + self.retry_policy.delay(attempts)
        delivery_queue.schedule_retry(db, job_id, run_at, now)
        logger.warning("Job %s attempt %s/%s failed (%s); retry at %s", job_id, attempts, max_attempts, reason, run_at.isoformat())
        return OUTCOME_RETRY

    def _send(self, message: OutboundEmail) -> DeliveryReceipt:
        """Transport call bounded by transport_timeout; a timeout is a transport failure."""
        future = _get_executor().submit(self.transport.send, message)
        try:
            return future.result(timeout=self.transport_timeout)
        except FutureTimeoutError as e:
            if not future.cancel():
                logger.warning(
                    "Transport %s still running after %ss; its email_send worker stays busy until the call returns",
                    getattr(self.transport, "name", type(self.transport).__name__),
                    self.transport_timeout,
                )
            raise TransportTimeoutError(f"Transport did not answer within {self.transport_timeout}s") from e

    # --- rendering ---

    def _context(self, job: DeliveryJob) -> dict[str, Any]:
        try:
            context = parse_payload(job.payload).template_context()
        except ValidationError as e:
            logger.warning("Job %s has an invalid payload; rendering with raw data: %s", job.id, e)
            context = dict(job.payload or {})
        context.setdefault("recipient_id", job.recipient_id)
        return add_portal_links(context, self.frontend_url)

    def compose(self, job: DeliveryJob) -> tuple[str, RenderedEmail]:
        """Subject and body for job. Never raises for template problems; falls back to a minimal body."""
        context = self._context(job)
        subject = self.renderer.render_subject(job.subject, context) or DEFAULT_SUBJECT
        context["subject"] = subject
        try:
            rendered = self.renderer.render(job.template_name, context)
        except Exception as e:
            logger.warning("Template %s failed for job %s, using fallback body: %s", job.template_name, job.id, e)
            return subject, fallback_content(subject, context)
        if not rendered.html.strip():
            logger.warning("Template %s rendered empty for job %s, using fallback body", job.template_name, job.id)
            return subject, fallback_content(subject, context)
        return subject, rendered
