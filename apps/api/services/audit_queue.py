"""Audit job dispatch: in-process task supervision or durable Redis/RQ queue."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Set

from redis import Redis
from rq import Queue, Retry
from rq.job import Job
from sqlalchemy import select

from config import settings
from database import async_session_maker
from models.audit_job import AuditJob
from services.lifecycle import FAILED, PENDING, PROCESSING, assert_transition

logger = logging.getLogger(__name__)

AUDIT_QUEUE_NAME = "audit_jobs"
IN_PROGRESS_STATUSES = (PENDING, PROCESSING)
STALLED_AUDIT_MESSAGE = "Audit execution was interrupted. Re-run the audit."


class AuditTaskSupervisor:
    """Owns detached audit tasks so none of them fail silently."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, factory: Callable[[], Awaitable[object]]) -> asyncio.Task:
        task = asyncio.create_task(factory(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Audit task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Audit task %s failed: %s",
                task.get_name(),
                exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for every running task to settle."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


supervisor = AuditTaskSupervisor()


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_audit_queue() -> Queue:
    """Return the configured audit queue."""
    return Queue(
        name=AUDIT_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=1800,
    )


def enqueue_audit_job(job_id: str) -> Job:
    """Enqueue the analysis phase of an audit with retry/timeouts for durability."""
    queue = get_audit_queue()
    return queue.enqueue(
        "services.audit.process_audit_job",
        job_id,
        job_id=f"audit:{job_id}",
        retry=Retry(max=3, interval=[15, 60, 180]),
        job_timeout=1800,
        result_ttl=86400,
        failure_ttl=86400,
    )


def dispatch_audit_job(job_id: str) -> str:
    """Detach the analysis phase; returns the dispatch handle."""
    if settings.AUDIT_DISPATCH_MODE == "queue":
        queue_job = enqueue_audit_job(job_id)
        return str(queue_job.id)

    from services.audit import run_audit_analysis

    task = supervisor.spawn(f"audit:{job_id}", lambda: run_audit_analysis(job_id))
    return task.get_name()


async def recover_stalled_audits(max_age_minutes: Optional[int] = None) -> int:
    """Mark stale in-progress audits as failed after restarts/worker interruptions."""
    age = settings.STALLED_AUDIT_MAX_AGE_MINUTES if max_age_minutes is None else max_age_minutes
    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=max(age, 1))
    async with async_session_maker() as db:
        result = await db.execute(
            select(AuditJob).where(
                AuditJob.status.in_(IN_PROGRESS_STATUSES),
                AuditJob.created_at < cutoff,
            )
        )
        jobs = result.scalars().all()
        for job in jobs:
            # pending jobs never started; they pass through processing first.
            if job.status == PENDING:
                assert_transition(PENDING, PROCESSING)
                job.status = PROCESSING
            assert_transition(job.status, FAILED)
            started_at = job.processing_started_at or now
            if started_at.tzinfo is None:
                started_at = started_at.replace(tzinfo=timezone.utc)
            job.processing_started_at = started_at
            job.status = FAILED
            job.error_message = STALLED_AUDIT_MESSAGE
            job.completed_at = now
            job.processing_time_ms = max(int((now - started_at).total_seconds() * 1000), 0)
        if jobs:
            await db.commit()
        return len(jobs)
