import asyncio
import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from sqlalchemy.ext.asyncio import AsyncSession

from analyzers import Analyzer, AnalyzerOptions, default_analyzers
from config import settings
from database import async_session_maker, engine
from models.audit_job import AuditJob
from services.audit_queue import dispatch_audit_job
from services.audit_repository import HISTORY_GROUPS, HISTORY_PERIODS, AuditJobFilter, AuditJobRepository
from services.errors import (
    AnalyzerFailure,
    AuthorizationError,
    DispatchUnavailableError,
    JobFailure,
    NotFoundError,
    ValidationError,
)
from services.fanout import TaskOutcome, settle_all
from services.lifecycle import (
    AUDIT_STATUSES,
    COMPLETED,
    FAILED,
    PENDING,
    PROCESSING,
    assert_transition,
    is_terminal,
)
from services.quota import check_batch_tier, require_admission
from services.recommendations import generate_recommendations
from services.scoring import PartialCategoryResults, aggregate_overall_score, score_breakdown

logger = logging.getLogger(__name__)

DEVICE_TYPES = ("desktop", "mobile")
MAX_URL_LENGTH = 2048
MAX_TAGS = 20
MAX_TAG_LENGTH = 50
RESULT_CATEGORIES = ("performance", "seo", "accessibility", "images")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    value = _as_utc(value)
    return value.isoformat() if value else None


def validate_audit_url(raw_url: Any) -> Tuple[str, str]:
    """Return (url, domain) for an absolute http(s) URL or raise ValidationError."""
    url = str(raw_url or "").strip()
    if not url:
        raise ValidationError("url is required")
    if len(url) > MAX_URL_LENGTH or any(ch.isspace() for ch in url):
        raise ValidationError("Please provide a valid URL")
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
        parsed.port  # raises on a malformed port
    except ValueError as exc:
        raise ValidationError("Please provide a valid URL") from exc
    if parsed.scheme.lower() not in {"http", "https"} or not hostname:
        raise ValidationError("Please provide a valid absolute http(s) URL")
    if "." not in hostname and hostname != "localhost":
        raise ValidationError("Please provide a valid URL")
    return url, hostname.lower()


def validate_device_type(device_type: Optional[str]) -> str:
    value = (device_type or "desktop").strip().lower()
    if value not in DEVICE_TYPES:
        raise ValidationError("Device type must be desktop or mobile")
    return value


def normalize_tags(tags: Optional[Sequence[Any]]) -> List[str]:
    normalized: List[str] = []
    for tag in tags or []:
        value = str(tag or "").strip()[:MAX_TAG_LENGTH]
        if value and value not in normalized:
            normalized.append(value)
    if len(normalized) > MAX_TAGS:
        raise ValidationError(f"At most {MAX_TAGS} tags are allowed")
    return normalized


def job_summary(job: AuditJob) -> Dict[str, Any]:
    return {
        "id": job.id,
        "url": job.url,
        "domain": job.domain,
        "status": job.status,
        "created_at": _isoformat(job.created_at),
        "device_type": job.device_type,
        "overall_score": job.overall_score if job.status == COMPLETED else None,
        "processing_time_ms": job.processing_time_ms,
    }


def job_detail(job: AuditJob) -> Dict[str, Any]:
    completed = job.status == COMPLETED
    return {
        **job_summary(job),
        "owner_id": job.owner_id,
        "location": job.location,
        "is_public": bool(job.is_public),
        "updated_at": _isoformat(job.updated_at),
        "completed_at": _isoformat(job.completed_at),
        "performance": job.performance,
        "seo": job.seo,
        "accessibility": job.accessibility,
        "images": job.images,
        "recommendations": (job.recommendations or []) if completed else None,
        "score_breakdown": score_breakdown(PartialCategoryResults.from_job(job)) if completed else None,
        "category_errors": job.category_errors or {},
        "error": job.error_message if job.status == FAILED else None,
        "tags": list(job.tags or []),
        "notes": job.notes,
    }


async def _create_and_dispatch(
    db: AsyncSession,
    *,
    url: str,
    domain: str,
    device_type: str,
    location: str,
    owner_id: Optional[str],
    is_public: bool,
    tags: List[str],
    notes: Optional[str],
) -> AuditJob:
    repo = AuditJobRepository(db)
    job = AuditJob(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        url=url,
        domain=domain,
        device_type=device_type,
        location=location,
        is_public=is_public,
        status=PENDING,
        tags=tags,
        notes=notes,
    )
    await repo.create(job)

    assert_transition(job.status, PROCESSING)
    job = await repo.update(job.id, status=PROCESSING, processing_started_at=_utcnow())

    try:
        handle = dispatch_audit_job(job.id)
        logger.info("Audit %s dispatched (%s) for %s", job.id, handle, url)
    except Exception as exc:
        logger.error("Audit %s could not be dispatched: %s", job.id, exc)
        await _write_terminal(db, job.id, status=FAILED, error_message=f"Audit queue unavailable: {exc}")
        raise DispatchUnavailableError(
            "Audit queue unavailable. Check Redis/worker availability and retry.",
            job_id=job.id,
        ) from exc
    return job


async def submit_audit(
    db: AsyncSession,
    *,
    url: Any,
    device_type: Optional[str] = None,
    location: Optional[str] = None,
    is_public: Optional[bool] = None,
    tags: Optional[Sequence[Any]] = None,
    notes: Optional[str] = None,
    owner_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Validate, admit and create one audit job, then detach its analysis phase.

    Returns the job summary immediately with status `processing`. Validation
    and quota errors are raised before any record exists.
    """
    clean_url, domain = validate_audit_url(url)
    clean_device = validate_device_type(device_type)
    clean_tags = normalize_tags(tags)
    await require_admission(db, owner_id)

    job = await _create_and_dispatch(
        db,
        url=clean_url,
        domain=domain,
        device_type=clean_device,
        location=(location or settings.DEFAULT_LOCATION).strip() or settings.DEFAULT_LOCATION,
        owner_id=owner_id,
        # Anonymous jobs have no owner to read them back, so they are always public.
        is_public=True if not owner_id else bool(is_public),
        tags=clean_tags,
        notes=notes,
    )
    return job_summary(job)


async def submit_batch(
    db: AsyncSession,
    *,
    urls: Sequence[Any],
    owner_id: Optional[str],
    device_type: Optional[str] = None,
    location: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Create one independent audit per URL; nothing is created if any input is invalid.

    A URL whose dispatch fails is returned as a failed job while the rest of
    the batch carries on.
    """
    url_list = list(urls or [])
    if not 1 <= len(url_list) <= settings.BATCH_MAX_URLS:
        raise ValidationError(f"URLs must be an array with 1-{settings.BATCH_MAX_URLS} items")
    validated = [validate_audit_url(url) for url in url_list]
    clean_device = validate_device_type(device_type)

    await check_batch_tier(db, owner_id)
    await require_admission(db, owner_id, units=len(validated))

    summaries: List[Dict[str, Any]] = []
    dispatch_failures = 0
    for clean_url, domain in validated:
        try:
            job = await _create_and_dispatch(
                db,
                url=clean_url,
                domain=domain,
                device_type=clean_device,
                location=(location or settings.DEFAULT_LOCATION).strip() or settings.DEFAULT_LOCATION,
                owner_id=owner_id,
                is_public=False,
                tags=[],
                notes=None,
            )
        except DispatchUnavailableError as exc:
            job = await AuditJobRepository(db).get(exc.job_id) if exc.job_id else None
            if job is None:
                raise
            dispatch_failures += 1
        summaries.append(job_summary(job))
    logger.info(
        "Batch audit started for %s URLs (owner=%s, dispatch_failed=%s)",
        len(summaries),
        owner_id,
        dispatch_failures,
    )
    return summaries


def _valid_record(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    score = value.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return False
    return not math.isnan(score) and 0 <= score <= 100


def reduce_outcomes(
    analyzers: Sequence[Analyzer],
    outcomes: Sequence[TaskOutcome],
) -> Tuple[Dict[str, Dict[str, Any]], Dict[str, AnalyzerFailure]]:
    """Turn settled analyzer outcomes into category sub-records and per-category failures."""
    by_category = {analyzer.category: analyzer for analyzer in analyzers}
    records: Dict[str, Dict[str, Any]] = {}
    failures: Dict[str, AnalyzerFailure] = {}

    for outcome in outcomes:
        analyzer = by_category.get(outcome.key)
        if not outcome.ok:
            failures[outcome.key] = AnalyzerFailure(outcome.key, outcome.error_message or "analysis failed")
            continue
        value = dict(outcome.value) if isinstance(outcome.value, dict) else outcome.value
        companions: Dict[str, Any] = {}
        if isinstance(value, dict) and analyzer is not None:
            for companion in analyzer.companion_categories:
                if companion in value:
                    companions[companion] = value.pop(companion)
        if not _valid_record(value):
            failures[outcome.key] = AnalyzerFailure(outcome.key, "analyzer returned no valid score")
            continue
        records[outcome.key] = value
        for companion, record in companions.items():
            if _valid_record(record):
                records[companion] = record
    return records, failures


def _elapsed_ms(started_at: Optional[datetime], finished_at: datetime) -> int:
    started = _as_utc(started_at) or finished_at
    return max(int((finished_at - started).total_seconds() * 1000), 0)


async def _write_terminal(db: AsyncSession, job_id: str, *, status: str, **fields: Any) -> Optional[AuditJob]:
    """Single terminal write; a job already in a terminal state is left untouched."""
    repo = AuditJobRepository(db)
    job = await repo.get(job_id)
    if not job:
        return None
    if is_terminal(job.status):
        logger.warning("Audit %s already %s; terminal write to %s skipped", job_id, job.status, status)
        return job
    assert_transition(job.status, status)
    finished_at = _utcnow()
    return await repo.update(
        job_id,
        status=status,
        completed_at=finished_at,
        processing_time_ms=_elapsed_ms(job.processing_started_at, finished_at),
        **fields,
    )


async def run_audit_analysis(
    job_id: str,
    analyzers: Optional[Sequence[Analyzer]] = None,
) -> Optional[str]:
    """
    Analysis phase of one job: fan out to every analyzer, wait for all of
    them to settle, then write the terminal state exactly once.

    Returns the terminal status, or None when the job does not exist.
    """
    async with async_session_maker() as db:
        job = await AuditJobRepository(db).get(job_id)
        if not job:
            logger.error("Audit record %s not found; aborting background task", job_id)
            return None
        if job.status != PROCESSING:
            logger.warning("Audit %s is %s, not processing; skipping analysis", job_id, job.status)
            return job.status
        url = job.url
        options = AnalyzerOptions(device_type=job.device_type, location=job.location)

    active = list(analyzers) if analyzers is not None else default_analyzers()
    try:
        logger.info("Starting audit analysis %s for %s (%s analyzers)", job_id, url, len(active))
        outcomes = await settle_all(
            {analyzer.category: analyzer.analyze(url, options) for analyzer in active},
            timeout=settings.AUDIT_JOB_TIMEOUT_SECONDS,
        )
        records, failures = reduce_outcomes(active, outcomes)
        for analyzer_failure in failures.values():
            logger.warning(
                "Audit %s: %s analysis failed: %s", job_id, analyzer_failure.category, analyzer_failure.message
            )
        category_errors = {category: item.message for category, item in failures.items()}

        primary = [analyzer.category for analyzer in active if analyzer.category in records]
        async with async_session_maker() as db:
            if not primary:
                failure = JobFailure(category_errors, "All analyses failed" if active else "No analyzers configured")
                job = await _write_terminal(
                    db,
                    job_id,
                    status=FAILED,
                    error_message=str(failure),
                    category_errors=category_errors,
                )
                logger.error("Audit %s failed: %s", job_id, failure)
                return job.status if job else None

            results = PartialCategoryResults(**{key: records.get(key) for key in RESULT_CATEGORIES})
            job = await _write_terminal(
                db,
                job_id,
                status=COMPLETED,
                **{key: records.get(key) for key in RESULT_CATEGORIES},
                overall_score=aggregate_overall_score(results),
                recommendations=generate_recommendations(results),
                category_errors=category_errors,
            )
            if job:
                logger.info(
                    "Audit %s completed for %s in %sms (score=%s, failed=%s)",
                    job_id,
                    url,
                    job.processing_time_ms,
                    job.overall_score,
                    sorted(failures) or "none",
                )
            return job.status if job else None
    except asyncio.CancelledError:
        logger.warning("Audit %s cancelled before completion", job_id)
        async with async_session_maker() as db:
            await _write_terminal(db, job_id, status=FAILED, error_message="Audit cancelled at shutdown")
        raise
    except Exception as exc:
        logger.error("Audit %s processing error: %s", job_id, exc, exc_info=True)
        async with async_session_maker() as db:
            job = await _write_terminal(db, job_id, status=FAILED, error_message=f"Audit processing error: {exc}")
        return job.status if job else None


def process_audit_job(job_id: str) -> Optional[str]:
    """RQ worker entrypoint for the analysis phase."""

    async def _run() -> Optional[str]:
        try:
            return await run_audit_analysis(job_id)
        finally:
            # pooled connections are bound to this run's event loop
            await engine.dispose()

    return asyncio.run(_run())


async def get_audit_job(db: AsyncSession, job_id: str, requester_id: Optional[str]) -> Dict[str, Any]:
    job = await AuditJobRepository(db).get(job_id)
    if not job:
        raise NotFoundError("Audit not found")
    if not job.is_public and (not requester_id or job.owner_id != requester_id):
        raise AuthorizationError("Not authorized to access this audit")
    return job_detail(job)


def _validate_filters(status: Optional[str], device_type: Optional[str]) -> None:
    if status and status not in AUDIT_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(AUDIT_STATUSES)}")
    if device_type and device_type not in DEVICE_TYPES:
        raise ValidationError("Device type must be desktop or mobile")


def _page_payload(jobs: List[AuditJob], total: int, page: int, limit: int) -> Dict[str, Any]:
    return {
        "count": len(jobs),
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit) if limit else 0,
        "audits": [job_summary(job) for job in jobs],
    }


async def list_audit_jobs(
    db: AsyncSession,
    *,
    owner_id: str,
    status: Optional[str] = None,
    device_type: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    sort_order: str = "desc",
) -> Dict[str, Any]:
    _validate_filters(status, device_type)
    filters = AuditJobFilter(owner_id=owner_id, status=status, device_type=device_type, search=search)
    jobs, total = await AuditJobRepository(db).list(filters, page, limit, sort_ascending=sort_order == "asc")
    return _page_payload(jobs, total, page, limit)


async def list_public_audits(
    db: AsyncSession,
    *,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    filters = AuditJobFilter(public_only=True, search=search)
    jobs, total = await AuditJobRepository(db).list(filters, page, limit)
    return _page_payload(jobs, total, page, limit)


async def delete_audit_job(db: AsyncSession, job_id: str, requester_id: str) -> None:
    repo = AuditJobRepository(db)
    job = await repo.get(job_id)
    if not job:
        raise NotFoundError("Audit not found")
    if not requester_id or job.owner_id != requester_id:
        raise AuthorizationError("Not authorized to delete this audit")
    await repo.delete(job_id)


async def get_audit_history(
    db: AsyncSession,
    *,
    owner_id: str,
    period: str = "30d",
    group_by: str = "day",
) -> List[Dict[str, Any]]:
    if period not in HISTORY_PERIODS:
        raise ValidationError(f"period must be one of {', '.join(HISTORY_PERIODS)}")
    if group_by not in HISTORY_GROUPS:
        raise ValidationError(f"group_by must be one of {', '.join(HISTORY_GROUPS)}")
    return await AuditJobRepository(db).history(owner_id, period, group_by)
