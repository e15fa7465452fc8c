import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from conftest import StaticAnalyzer, add_processing_job
from config import settings
from database import Base
from models.audit_job import AuditJob
from services.audit import job_detail, process_audit_job, reduce_outcomes, run_audit_analysis
from services.audit_queue import supervisor
from services.errors import AnalyzerFailure
from services.fanout import TaskOutcome

PERFORMANCE = {"score": 90, "issues": [], "accessibility": {"score": 70, "issues": []}}
SEO = {"score": 70, "title": {"present": True, "length": 40, "score": 80}}
IMAGES = {"score": 50, "total_images": 0}


def _analyzers(**overrides):
    defaults = {
        "performance": StaticAnalyzer("performance", PERFORMANCE, companions=("accessibility",)),
        "seo": StaticAnalyzer("seo", SEO),
        "images": StaticAnalyzer("images", IMAGES),
    }
    defaults.update(overrides)
    return list(defaults.values())


async def _load(session_maker, job_id) -> AuditJob:
    async with session_maker() as session:
        return await session.get(AuditJob, job_id)


@pytest.mark.asyncio
async def test_all_analyzers_succeed(session_maker):
    job_id = await add_processing_job(session_maker)

    status = await run_audit_analysis(job_id, analyzers=_analyzers())

    job = await _load(session_maker, job_id)
    assert status == "completed"
    assert job.status == "completed"
    assert job.overall_score == 72
    assert job.performance["score"] == 90
    assert "accessibility" not in job.performance
    assert job.accessibility == {"score": 70, "issues": []}
    assert job.seo["score"] == 70
    assert job.images["score"] == 50
    assert job.error_message is None
    assert job.category_errors == {}
    assert job.completed_at is not None
    assert job.processing_time_ms >= 0
    assert [rec["rule"] for rec in job.recommendations] == ["meta_tags_score", "images_score"]

    breakdown = job_detail(job)["score_breakdown"]
    assert breakdown["overall_score"] == 72
    assert breakdown["categories"]["performance"]["effective_weight"] == 0.4
    assert breakdown["categories"]["seo"]["present"] is True


@pytest.mark.asyncio
async def test_one_failed_analyzer_still_completes(session_maker):
    job_id = await add_processing_job(session_maker)
    analyzers = _analyzers(seo=StaticAnalyzer("seo", error=RuntimeError("connection refused")))

    await run_audit_analysis(job_id, analyzers=analyzers)

    job = await _load(session_maker, job_id)
    assert job.status == "completed"
    assert job.seo is None
    # (0.4*90 + 0.3*50) / 0.7 = 72.86
    assert job.overall_score == 73
    assert job.category_errors == {"seo": "connection refused"}
    assert all(rec["category"] != "meta-tags" for rec in job.recommendations)
    assert job_detail(job)["error"] is None
    breakdown = job_detail(job)["score_breakdown"]
    assert breakdown["categories"]["seo"]["present"] is False
    assert breakdown["categories"]["performance"]["effective_weight"] == round(0.4 / 0.7, 4)


@pytest.mark.asyncio
async def test_every_analyzer_failing_fails_the_job(session_maker):
    job_id = await add_processing_job(session_maker)
    analyzers = [
        StaticAnalyzer("performance", error=RuntimeError("quota exhausted")),
        StaticAnalyzer("seo", error=RuntimeError("dns failure")),
        StaticAnalyzer("images", error=RuntimeError("dns failure")),
    ]

    status = await run_audit_analysis(job_id, analyzers=analyzers)

    job = await _load(session_maker, job_id)
    assert status == "failed"
    assert job.status == "failed"
    assert job.overall_score is None
    assert job.recommendations is None
    assert job.error_message.startswith("All analyses failed")
    assert "performance: quota exhausted" in job.error_message
    assert job.processing_time_ms is not None

    detail = job_detail(job)
    assert detail["overall_score"] is None
    assert detail["recommendations"] is None
    assert detail["error"] == job.error_message
    assert detail["score_breakdown"] is None


@pytest.mark.asyncio
async def test_siblings_run_to_completion_after_a_fast_failure(session_maker):
    job_id = await add_processing_job(session_maker)
    slow_images = StaticAnalyzer("images", IMAGES, delay=0.05)
    analyzers = _analyzers(
        performance=StaticAnalyzer("performance", error=RuntimeError("boom")),
        images=slow_images,
    )

    await run_audit_analysis(job_id, analyzers=analyzers)

    job = await _load(session_maker, job_id)
    assert slow_images.calls == 1
    assert job.images["score"] == 50
    assert job.status == "completed"


@pytest.mark.asyncio
async def test_outer_deadline_treats_hung_analyzer_as_failed(session_maker):
    job_id = await add_processing_job(session_maker)
    analyzers = _analyzers(images=StaticAnalyzer("images", IMAGES, delay=10))

    with patch.object(settings, "AUDIT_JOB_TIMEOUT_SECONDS", 0.1):
        await asyncio.wait_for(run_audit_analysis(job_id, analyzers=analyzers), timeout=5)

    job = await _load(session_maker, job_id)
    assert job.status == "completed"
    assert job.images is None
    assert "did not settle" in job.category_errors["images"]


@pytest.mark.asyncio
async def test_invalid_record_counts_as_failure(session_maker):
    job_id = await add_processing_job(session_maker)
    analyzers = _analyzers(seo=StaticAnalyzer("seo", {"score": "high"}))

    await run_audit_analysis(job_id, analyzers=analyzers)

    job = await _load(session_maker, job_id)
    assert job.seo is None
    assert job.category_errors["seo"] == "analyzer returned no valid score"


@pytest.mark.asyncio
async def test_terminal_job_is_not_reanalyzed(session_maker):
    job_id = await add_processing_job(session_maker, status="completed", overall_score=55)
    analyzers = _analyzers()

    status = await run_audit_analysis(job_id, analyzers=analyzers)

    job = await _load(session_maker, job_id)
    assert status == "completed"
    assert job.overall_score == 55
    assert all(analyzer.calls == 0 for analyzer in analyzers)


@pytest.mark.asyncio
async def test_unknown_job_is_ignored(session_maker):
    assert await run_audit_analysis("missing-job", analyzers=_analyzers()) is None


def test_reduce_outcomes_splits_companion_records():
    analyzers = _analyzers()
    outcomes = [
        TaskOutcome(key="performance", ok=True, value=dict(PERFORMANCE)),
        TaskOutcome(key="seo", ok=False, error=RuntimeError("timeout")),
        TaskOutcome(key="images", ok=True, value=dict(IMAGES)),
    ]
    records, failures = reduce_outcomes(analyzers, outcomes)
    assert set(records) == {"performance", "accessibility", "images"}
    assert set(failures) == {"seo"}
    assert isinstance(failures["seo"], AnalyzerFailure)
    assert failures["seo"].category == "seo"
    assert failures["seo"].message == "timeout"


@pytest.mark.asyncio
async def test_shutdown_cancellation_marks_job_failed(session_maker):
    job_id = await add_processing_job(session_maker)
    analyzers = _analyzers(images=StaticAnalyzer("images", IMAGES, delay=5))

    supervisor.spawn(f"audit:{job_id}", lambda: run_audit_analysis(job_id, analyzers=analyzers))
    await supervisor.drain(timeout=0.1)
    await supervisor.shutdown()

    job = await _load(session_maker, job_id)
    assert supervisor.active_count == 0
    assert job.status == "failed"
    assert "cancelled" in job.error_message
    assert job.completed_at is not None
    assert job.processing_time_ms is not None


@pytest.mark.asyncio
async def test_unexpected_error_is_recorded_without_raising(session_maker):
    job_id = await add_processing_job(session_maker)

    with patch("services.audit.generate_recommendations", side_effect=RuntimeError("rules broke")):
        status = await run_audit_analysis(job_id, analyzers=_analyzers())

    job = await _load(session_maker, job_id)
    assert status == "failed"
    assert job.status == "failed"
    assert "rules broke" in job.error_message
    assert job.processing_time_ms is not None


def test_worker_entrypoint_on_failed_job_returns_without_retry(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'worker.db'}", poolclass=NullPool)
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _seed() -> str:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        return await add_processing_job(
            maker,
            status="failed",
            error_message="Audit queue unavailable: redis down",
        )

    job_id = asyncio.run(_seed())
    analyzers = _analyzers()

    with patch("services.audit.async_session_maker", maker), \
         patch("services.audit.engine", engine), \
         patch("services.audit.default_analyzers", return_value=analyzers):
        assert process_audit_job(job_id) == "failed"

    assert all(analyzer.calls == 0 for analyzer in analyzers)
