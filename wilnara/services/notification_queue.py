"""
Notification queue - durable job queue for emails, SMS, push and webhooks.

Producers write a row to notification_queue and return immediately. A poll
loop claims due rows every few seconds, runs each job's channel sender as a
background task (bounded by a concurrency ceiling), and records the outcome:
completed, retrying with exponential backoff, or failed (dead-lettered) once
the job's attempt cap is reached.

Every state transition is a conditional single-row UPDATE checked by
rowcount, so two pollers can never both claim the same job and terminal
rows are never touched again by the dispatcher.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy import case, delete, func, or_, select, update

from wilnara.models.notification_job import (
    DEFAULT_MAX_ATTEMPTS,
    JobPriority,
    JobStatus,
    JobType,
    NotificationJob,
)
from wilnara.schemas.job_payloads import (
    MAX_SMS_TARGETS,
    MAX_WEBHOOK_TIMEOUT_SECONDS,
    EmailJob,
    PushJob,
    SMSJob,
    WebhookJob,
)
from wilnara.utils.backoff import next_retry_at
from wilnara.utils.logging import set_correlation_id

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 5
MAX_CONCURRENT_JOBS = 5
RETENTION_DAYS = 7
PROCESSING_LEASE_SECONDS = 900
LEASE_MARGIN_SECONDS = 60
DEFAULT_WEBHOOK_TIMEOUT_SECONDS = 30.0
MAX_ERROR_MESSAGE_LENGTH = 1000

SENDER_RETURNED_FALSE = "Job processing returned false"
LEASE_EXPIRED = "Processing lease expired"

Sender = Callable[[dict], Awaitable[bool]]

_PRIORITY_ORDER = case(
    JobPriority.RANK,
    value=NotificationJob.priority,
    else_=JobPriority.RANK[JobPriority.NORMAL],
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def longest_attempt_seconds(webhook_default_timeout_seconds: float = DEFAULT_WEBHOOK_TIMEOUT_SECONDS) -> float:
    """
    Upper bound on one attempt of any job type: a webhook at its timeout,
    or an SMS job sending to every allowed target one after another.
    """
    from wilnara.services.push import PUSH_TIMEOUT_SECONDS
    from wilnara.services.sms import TWILIO_CLIENT_TIMEOUT
    from wilnara.services.transactional_email import SENDGRID_TIMEOUT_SECONDS

    return max(
        MAX_WEBHOOK_TIMEOUT_SECONDS,
        webhook_default_timeout_seconds,
        MAX_SMS_TARGETS * TWILIO_CLIENT_TIMEOUT,
        PUSH_TIMEOUT_SECONDS,
        SENDGRID_TIMEOUT_SECONDS,
    )


def default_senders() -> dict[str, Sender]:
    """Production channel senders, keyed by job type."""
    from wilnara.services.push import send_push_job
    from wilnara.services.sms import send_sms_job
    from wilnara.services.transactional_email import send_email_job
    from wilnara.services.webhooks import send_webhook_job

    return {
        JobType.EMAIL: send_email_job,
        JobType.SMS: send_sms_job,
        JobType.PUSH: send_push_job,
        JobType.WEBHOOK: send_webhook_job,
    }


@dataclass(frozen=True)
class ClaimedJob:
    """Snapshot of a row taken when the poller selected it."""
    id: uuid.UUID
    type: str
    priority: str
    payload: dict
    attempts: int
    max_attempts: int

    @classmethod
    def from_row(cls, row: NotificationJob) -> "ClaimedJob":
        return cls(
            id=row.id,
            type=row.type,
            priority=row.priority,
            payload=row.payload or {},
            attempts=row.attempts,
            max_attempts=row.max_attempts,
        )

    @property
    def short_id(self) -> str:
        return str(self.id)[:8]


class NotificationQueue:
    """
    Construct once per process and share it. Call start_processing() from
    inside a running event loop (the server lifespan) to begin polling;
    processes that only enqueue never need to start it.
    """

    def __init__(
        self,
        session_factory=None,
        senders: Optional[dict[str, Sender]] = None,
        *,
        poll_interval_seconds: float = POLL_INTERVAL_SECONDS,
        max_concurrent_jobs: int = MAX_CONCURRENT_JOBS,
        retention_days: int = RETENTION_DAYS,
        processing_lease_seconds: int = PROCESSING_LEASE_SECONDS,
        webhook_default_timeout_seconds: float = DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")
        # A lease shorter than one attempt lets another process re-dispatch a running job
        min_lease = longest_attempt_seconds(webhook_default_timeout_seconds) + LEASE_MARGIN_SECONDS
        if processing_lease_seconds < min_lease:
            raise ValueError(
                f"processing_lease_seconds must be at least {min_lease:g} "
                f"(longest attempt plus {LEASE_MARGIN_SECONDS}s margin)"
            )
        if session_factory is None:
            from wilnara.database import async_session_factory
            session_factory = async_session_factory

        self._session_factory = session_factory
        self._senders = dict(default_senders() if senders is None else senders)
        self._clock = clock

        self.poll_interval_seconds = poll_interval_seconds
        self.max_concurrent_jobs = max_concurrent_jobs
        self.retention_days = retention_days
        self.processing_lease_seconds = processing_lease_seconds

        self._poller: Optional[asyncio.Task] = None
        self._slots = asyncio.Semaphore(max_concurrent_jobs)
        self._in_flight: dict[asyncio.Task, uuid.UUID] = {}

    @classmethod
    def from_settings(cls, settings, session_factory=None, senders=None) -> "NotificationQueue":
        return cls(
            session_factory,
            senders,
            poll_interval_seconds=settings.queue_poll_interval_seconds,
            max_concurrent_jobs=settings.queue_max_concurrent_jobs,
            retention_days=settings.queue_retention_days,
            processing_lease_seconds=settings.queue_processing_lease_seconds,
            webhook_default_timeout_seconds=settings.webhook_default_timeout_seconds,
        )

    @property
    def is_processing(self) -> bool:
        return self._poller is not None and not self._poller.done()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    async def queue_email(
        self,
        email_data,
        priority: str = JobPriority.NORMAL,
        scheduled_at: Optional[datetime] = None,
        *,
        max_attempts: Optional[int] = None,
    ) -> Optional[str]:
        """Queue a templated email. Returns the job ID, or None if it could not be queued."""
        return await self._enqueue(
            JobType.EMAIL, EmailJob, email_data, priority, scheduled_at, max_attempts,
        )

    async def queue_sms(
        self,
        sms_data,
        priority: str = JobPriority.NORMAL,
        scheduled_at: Optional[datetime] = None,
        *,
        max_attempts: Optional[int] = None,
    ) -> Optional[str]:
        """Queue an SMS. Returns the job ID, or None if it could not be queued."""
        return await self._enqueue(
            JobType.SMS, SMSJob, sms_data, priority, scheduled_at, max_attempts,
        )

    async def queue_push_notification(
        self,
        push_data,
        priority: str = JobPriority.NORMAL,
        *,
        max_attempts: Optional[int] = None,
    ) -> Optional[str]:
        """Queue a push notification for immediate delivery."""
        return await self._enqueue(
            JobType.PUSH, PushJob, push_data, priority, None, max_attempts,
        )

    async def queue_webhook(
        self,
        webhook_data,
        priority: str = JobPriority.NORMAL,
        *,
        max_attempts: Optional[int] = None,
    ) -> Optional[str]:
        """Queue an outbound webhook call for immediate delivery."""
        return await self._enqueue(
            JobType.WEBHOOK, WebhookJob, webhook_data, priority, None, max_attempts,
        )

    async def _enqueue(
        self,
        job_type: str,
        schema: type[BaseModel],
        data,
        priority: str,
        scheduled_at: Optional[datetime],
        max_attempts: Optional[int],
    ) -> Optional[str]:
        try:
            payload = data if isinstance(data, schema) else schema.model_validate(data)
        except ValidationError as e:
            logger.warning(
                "Rejected %s job: invalid payload (%d errors): %s",
                job_type, e.error_count(), str(e),
                extra={"job_type": job_type},
            )
            return None

        if priority not in JobPriority.ALL:
            logger.warning("Rejected %s job: unknown priority %r", job_type, priority)
            return None

        attempts_cap = DEFAULT_MAX_ATTEMPTS[job_type] if max_attempts is None else max_attempts
        if attempts_cap < 1:
            logger.warning("Rejected %s job: max_attempts must be >= 1", job_type)
            return None

        if scheduled_at is not None and scheduled_at.tzinfo is None:
            scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)

        now = self._clock()
        job = NotificationJob(
            id=uuid.uuid4(),
            type=job_type,
            priority=priority,
            status=JobStatus.PENDING,
            payload=payload.model_dump(mode="json", exclude_none=True),
            attempts=0,
            max_attempts=attempts_cap,
            scheduled_at=scheduled_at,
            created_at=now,
            updated_at=now,
        )

        try:
            async with self._session_factory() as db:
                db.add(job)
                await db.commit()
        except Exception as e:
            logger.error(
                "Error queueing %s job: %s", job_type, str(e),
                extra={"job_type": job_type},
            )
            return None

        job_id = str(job.id)
        logger.info(
            "Job queued: type=%s priority=%s scheduled_at=%s id=%s",
            job_type, priority,
            scheduled_at.isoformat() if scheduled_at else "now",
            job_id[:8],
            extra={"job_id": job_id, "job_type": job_type},
        )
        return job_id

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_processing(self) -> None:
        """Start the poll loop. No-op if it is already running."""
        if self.is_processing:
            return
        loop = asyncio.get_running_loop()
        self._poller = loop.create_task(self._run_poller(), name="notification-queue-poller")
        logger.info(
            "Notification queue processing started (every %ss, max %d concurrent jobs)",
            self.poll_interval_seconds, self.max_concurrent_jobs,
        )

    def stop_processing(self) -> None:
        """Stop claiming new work. Jobs already dispatched run to completion."""
        if self._poller is None:
            return
        self._poller.cancel()
        self._poller = None
        logger.info(
            "Notification queue processing stopped (%d jobs still in flight)",
            self.in_flight,
        )

    async def wait_for_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until no job is in flight. Returns False if the timeout expired first."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._in_flight:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(list(self._in_flight), timeout=remaining)
        return True

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Stop polling and give in-flight jobs up to `timeout` seconds to finish."""
        self.stop_processing()
        if await self.wait_for_idle(timeout):
            return
        # Rows left in processing are picked up again by lease recovery
        logger.warning(
            "Notification queue shutdown timed out - cancelling %d in-flight jobs",
            self.in_flight,
        )
        pending = list(self._in_flight)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    async def _run_poller(self) -> None:
        while True:
            try:
                await self.process_queue()
            except Exception as e:
                logger.error("Notification queue tick error: %s", str(e), exc_info=True)
            await asyncio.sleep(self.poll_interval_seconds)

    # ------------------------------------------------------------------
    # Polling and dispatch
    # ------------------------------------------------------------------

    async def process_queue(self) -> int:
        """
        Run one poll tick: claim due jobs up to the free concurrency headroom,
        dispatch them without waiting, then run maintenance.
        Returns the number of jobs dispatched.
        """
        headroom = self.max_concurrent_jobs - self.in_flight
        if headroom <= 0:
            logger.debug("Queue at capacity (%d in flight) - skipping tick", self.in_flight)
            return 0

        now = self._clock()
        dispatched = 0
        try:
            candidates = await self._fetch_due_jobs(now, headroom)
            for job in candidates:
                if not await self._claim(job, now):
                    # Claimed by another poller between select and update
                    continue
                self._dispatch(job)
                dispatched += 1
        except Exception as e:
            logger.error("Error processing queue: %s", str(e))
            return dispatched

        if dispatched:
            logger.info(
                "Processing %d queue jobs (%d in flight)", dispatched, self.in_flight,
            )

        await self.cleanup_old_jobs()
        await self.recover_stale_jobs()
        return dispatched

    @staticmethod
    def _due_clause(now: datetime):
        return or_(
            NotificationJob.scheduled_at.is_(None),
            NotificationJob.scheduled_at <= now,
        )

    async def _fetch_due_jobs(self, now: datetime, limit: int) -> list[ClaimedJob]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(NotificationJob)
                .where(
                    NotificationJob.status.in_(JobStatus.CLAIMABLE),
                    self._due_clause(now),
                )
                .order_by(_PRIORITY_ORDER.desc(), NotificationJob.created_at.asc())
                .limit(limit)
            )
            return [ClaimedJob.from_row(row) for row in result.scalars().all()]

    async def _claim(self, job: ClaimedJob, now: datetime) -> bool:
        """pending/retrying -> processing. First writer wins."""
        async with self._session_factory() as db:
            result = await db.execute(
                update(NotificationJob)
                .where(
                    NotificationJob.id == job.id,
                    NotificationJob.status.in_(JobStatus.CLAIMABLE),
                    self._due_clause(now),
                )
                .values(
                    status=JobStatus.PROCESSING,
                    processed_at=func.coalesce(NotificationJob.processed_at, now),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        return result.rowcount == 1

    def _dispatch(self, job: ClaimedJob) -> None:
        task = asyncio.get_running_loop().create_task(
            self._run_job(job), name=f"notification-job-{job.short_id}",
        )
        self._in_flight[task] = job.id
        task.add_done_callback(self._release)

    def _release(self, task: asyncio.Task) -> None:
        self._in_flight.pop(task, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Notification job task crashed: %s", str(task.exception()))

    async def _run_job(self, job: ClaimedJob) -> None:
        async with self._slots:
            set_correlation_id(str(job.id))
            logger.info(
                "Processing %s job %s (attempt %d/%d)",
                job.type, job.short_id, job.attempts + 1, job.max_attempts,
                extra={"job_id": str(job.id), "job_type": job.type},
            )

            succeeded, error_message = await self._send(job)

            try:
                if succeeded:
                    await self._mark_completed(job)
                else:
                    await self._handle_job_failure(job, error_message)
            except Exception as e:
                logger.error(
                    "Failed to record outcome for job %s: %s", job.short_id, str(e),
                    extra={"job_id": str(job.id), "job_type": job.type},
                )

    async def _send(self, job: ClaimedJob) -> tuple[bool, Optional[str]]:
        sender = self._senders.get(job.type)
        if sender is None:
            return False, f"No sender registered for job type: {job.type}"
        try:
            result = await sender(job.payload)
        except Exception as e:
            logger.error(
                "Job %s sender raised: %s", job.short_id, str(e),
                extra={"job_id": str(job.id), "job_type": job.type},
            )
            return False, str(e) or e.__class__.__name__
        if result:
            return True, None
        return False, SENDER_RETURNED_FALSE

    async def _mark_completed(self, job: ClaimedJob) -> None:
        now = self._clock()
        async with self._session_factory() as db:
            result = await db.execute(
                update(NotificationJob)
                .where(
                    NotificationJob.id == job.id,
                    NotificationJob.status == JobStatus.PROCESSING,
                )
                .values(
                    status=JobStatus.COMPLETED,
                    attempts=job.attempts + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        if result.rowcount != 1:
            logger.warning("Job %s was no longer processing - completion not recorded", job.short_id)
            return
        logger.info(
            "Job completed: %s", job.short_id,
            extra={"job_id": str(job.id), "job_type": job.type},
        )

    async def _handle_job_failure(self, job: ClaimedJob, error_message: Optional[str]) -> None:
        """processing -> retrying (with backoff) or failed once the attempt cap is reached."""
        now = self._clock()
        attempts = job.attempts + 1
        error_message = (error_message or SENDER_RETURNED_FALSE)[:MAX_ERROR_MESSAGE_LENGTH]

        if attempts >= job.max_attempts:
            values = {
                "status": JobStatus.FAILED,
                "attempts": attempts,
                "error_message": error_message,
                "failed_at": now,
                "updated_at": now,
            }
        else:
            values = {
                "status": JobStatus.RETRYING,
                "attempts": attempts,
                "error_message": error_message,
                "scheduled_at": next_retry_at(attempts, now),
                "updated_at": now,
            }

        async with self._session_factory() as db:
            result = await db.execute(
                update(NotificationJob)
                .where(
                    NotificationJob.id == job.id,
                    NotificationJob.status == JobStatus.PROCESSING,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        if result.rowcount != 1:
            logger.warning("Job %s was no longer processing - failure not recorded", job.short_id)
            return

        extra = {"job_id": str(job.id), "job_type": job.type}
        if values["status"] == JobStatus.FAILED:
            logger.error(
                "Job permanently failed after %d attempts: %s error=%s",
                attempts, job.short_id, error_message, extra=extra,
            )
        else:
            logger.warning(
                "Job scheduled for retry %d/%d: %s at %s error=%s",
                attempts, job.max_attempts, job.short_id,
                values["scheduled_at"].isoformat(), error_message, extra=extra,
            )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_old_jobs(self) -> int:
        """Delete completed/failed jobs not updated within the retention window."""
        cutoff = self._clock() - timedelta(days=self.retention_days)
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    delete(NotificationJob)
                    .where(
                        NotificationJob.status.in_(JobStatus.TERMINAL),
                        NotificationJob.updated_at < cutoff,
                    )
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
        except Exception as e:
            logger.error("Error cleaning up old jobs: %s", str(e))
            return 0

        deleted = result.rowcount or 0
        if deleted:
            logger.info("Purged %d finished jobs older than %d days", deleted, self.retention_days)
        return deleted

    async def recover_stale_jobs(self) -> int:
        """
        Treat rows stuck in processing past the lease as a failed attempt
        (crashed process, lost outcome write). Jobs this process is still
        running are left alone.
        """
        now = self._clock()
        cutoff = now - timedelta(seconds=self.processing_lease_seconds)
        exhausted = NotificationJob.attempts + 1 >= NotificationJob.max_attempts

        stmt = update(NotificationJob).where(
            NotificationJob.status == JobStatus.PROCESSING,
            NotificationJob.updated_at < cutoff,
        )
        running_ids = list(self._in_flight.values())
        if running_ids:
            stmt = stmt.where(NotificationJob.id.not_in(running_ids))

        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    stmt.values(
                        attempts=NotificationJob.attempts + 1,
                        status=case((exhausted, JobStatus.FAILED), else_=JobStatus.RETRYING),
                        failed_at=case((exhausted, now), else_=NotificationJob.failed_at),
                        scheduled_at=now,
                        error_message=LEASE_EXPIRED,
                        updated_at=now,
                    ).execution_options(synchronize_session=False)
                )
                await db.commit()
        except Exception as e:
            logger.error("Error recovering stale jobs: %s", str(e))
            return 0

        recovered = result.rowcount or 0
        if recovered:
            logger.warning("Recovered %d jobs with expired processing lease", recovered)
        return recovered

    # ------------------------------------------------------------------
    # Introspection and dead-letter handling
    # ------------------------------------------------------------------

    async def get_queue_stats(self) -> Optional[dict]:
        """Return {"total", "by_status", "by_type"} counts, or None on failure."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(NotificationJob.status, NotificationJob.type, func.count())
                    .group_by(NotificationJob.status, NotificationJob.type)
                )
                rows = result.all()
        except Exception as e:
            logger.error("Error getting queue stats: %s", str(e))
            return None

        stats = {"total": 0, "by_status": {}, "by_type": {}}
        for status, job_type, count in rows:
            stats["total"] += count
            stats["by_status"][status] = stats["by_status"].get(status, 0) + count
            stats["by_type"][job_type] = stats["by_type"].get(job_type, 0) + count
        return stats

    async def list_failed_jobs(self, limit: int = 50) -> Optional[list[dict]]:
        """Dead-lettered jobs, most recently failed first. None on failure."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(NotificationJob)
                    .where(NotificationJob.status == JobStatus.FAILED)
                    .order_by(NotificationJob.updated_at.desc())
                    .limit(limit)
                )
                jobs = result.scalars().all()
        except Exception as e:
            logger.error("Error listing failed jobs: %s", str(e))
            return None
        return [job.to_dict() for job in jobs]

    async def requeue_failed_job(self, job_id: str) -> Optional[str]:
        """
        Queue a fresh copy of a dead-lettered job: same type, priority, payload
        and attempt cap. The failed row is left as it is. Returns the new job
        ID, or None if job_id is not a failed job.
        """
        try:
            job_uuid = uuid.UUID(str(job_id))
        except ValueError:
            return None

        now = self._clock()
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(NotificationJob).where(
                        NotificationJob.id == job_uuid,
                        NotificationJob.status == JobStatus.FAILED,
                    )
                )
                failed = result.scalar_one_or_none()
                if failed is None:
                    return None

                fresh = NotificationJob(
                    id=uuid.uuid4(),
                    type=failed.type,
                    priority=failed.priority,
                    status=JobStatus.PENDING,
                    payload=dict(failed.payload or {}),
                    attempts=0,
                    max_attempts=failed.max_attempts,
                    created_at=now,
                    updated_at=now,
                )
                db.add(fresh)
                await db.commit()
        except Exception as e:
            logger.error("Error requeueing job %s: %s", str(job_id)[:8], str(e))
            return None

        new_id = str(fresh.id)
        logger.info(
            "Dead-lettered job requeued: %s as %s", str(job_uuid)[:8], new_id[:8],
            extra={"job_id": new_id},
        )
        return new_id
