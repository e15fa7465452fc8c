import asyncio
import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from analyzers.base import Analyzer
from database import Base
from main import app
from models.audit_job import AuditJob
from models.user import User
from routers import rate_limit
from services.audit_queue import supervisor
from services.session_token import create_session_token


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """Per-test sqlite database shared by request handlers and background tasks."""
    db_path = tmp_path / "site_health.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    with patch("services.audit.async_session_maker", maker), \
         patch("services.audit_queue.async_session_maker", maker):
        yield maker
        await supervisor.shutdown()

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


def auth_headers(user_id: str) -> dict:
    token = create_session_token(user_id, email=f"{user_id}@example.com")["token"]
    return {"Authorization": f"Bearer {token}"}


async def add_user(session_maker, user_id: str, plan_tier: str = "free", audits_this_month: int = 0) -> None:
    async with session_maker() as session:
        session.add(
            User(
                id=user_id,
                email=f"{user_id}@example.com",
                plan_tier=plan_tier,
                audits_this_month=audits_this_month,
                usage_period=datetime.now(timezone.utc).strftime("%Y-%m"),
                total_audits=audits_this_month,
            )
        )
        await session.commit()


async def add_processing_job(session_maker, url: str = "https://example.com/", **fields) -> str:
    job_id = str(uuid.uuid4())
    async with session_maker() as session:
        session.add(
            AuditJob(
                id=job_id,
                url=url,
                domain="example.com",
                device_type=fields.pop("device_type", "desktop"),
                location="us",
                is_public=fields.pop("is_public", True),
                status=fields.pop("status", "processing"),
                processing_started_at=datetime.now(timezone.utc),
                tags=[],
                **fields,
            )
        )
        await session.commit()
    return job_id


class StaticAnalyzer(Analyzer):
    """Returns a fixed record, or raises the given error."""

    timeout_seconds = 1.0

    def __init__(self, category: str, record=None, error: Exception = None, delay: float = 0.0, companions=()):
        self.category = category
        self.record = record
        self.error = error
        self.delay = delay
        self.companion_categories = tuple(companions)
        self.calls = 0

    async def analyze(self, url, options):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return dict(self.record or {})
