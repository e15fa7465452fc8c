"""SQLAlchemy-backed storage for audit job records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.audit_job import AuditJob

MAX_PAGE_SIZE = 100
HISTORY_PERIODS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
HISTORY_GROUPS = ("day", "week", "month")


@dataclass
class AuditJobFilter:
    owner_id: Optional[str] = None
    public_only: bool = False
    status: Optional[str] = None
    device_type: Optional[str] = None
    search: Optional[str] = None


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _group_key(created_at: datetime, group_by: str) -> str:
    if group_by == "week":
        # Sunday-based week number, matching strftime %U.
        return created_at.strftime("%Y-%U")
    if group_by == "month":
        return created_at.strftime("%Y-%m")
    return created_at.strftime("%Y-%m-%d")


class AuditJobRepository:
    """Create/read/update/list/delete for `AuditJob` rows on one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, job: AuditJob) -> str:
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)
        return job.id

    async def get(self, job_id: str) -> Optional[AuditJob]:
        result = await self.db.execute(select(AuditJob).where(AuditJob.id == job_id))
        return result.scalar_one_or_none()

    async def update(self, job_id: str, **fields: Any) -> Optional[AuditJob]:
        job = await self.get(job_id)
        if not job:
            return None
        for key, value in fields.items():
            setattr(job, key, value)
        job.updated_at = datetime.now(timezone.utc)
        await self.db.commit()
        await self.db.refresh(job)
        return job

    def _apply_filter(self, query, filters: AuditJobFilter):
        if filters.owner_id:
            query = query.where(AuditJob.owner_id == filters.owner_id)
        if filters.public_only:
            query = query.where(AuditJob.is_public.is_(True))
        if filters.status:
            query = query.where(AuditJob.status == filters.status)
        if filters.device_type:
            query = query.where(AuditJob.device_type == filters.device_type)
        term = (filters.search or "").strip()
        if term:
            pattern = f"%{_escape_like(term.lower())}%"
            query = query.where(
                or_(
                    func.lower(AuditJob.url).like(pattern, escape="\\"),
                    func.lower(AuditJob.domain).like(pattern, escape="\\"),
                )
            )
        return query

    async def list(
        self,
        filters: AuditJobFilter,
        page: int = 1,
        limit: int = 10,
        sort_ascending: bool = False,
    ) -> Tuple[List[AuditJob], int]:
        page = max(int(page), 1)
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        order = AuditJob.created_at.asc() if sort_ascending else AuditJob.created_at.desc()

        count_query = self._apply_filter(select(func.count(AuditJob.id)), filters)
        total = int((await self.db.execute(count_query)).scalar() or 0)

        query = (
            self._apply_filter(select(AuditJob), filters)
            .order_by(order, AuditJob.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def delete(self, job_id: str) -> bool:
        result = await self.db.execute(delete(AuditJob).where(AuditJob.id == job_id))
        await self.db.commit()
        return bool(result.rowcount)

    async def history(self, owner_id: str, period: str = "30d", group_by: str = "day") -> List[Dict[str, Any]]:
        """Completed-audit counts and averages bucketed by day, week or month."""
        query = select(AuditJob.created_at, AuditJob.overall_score, AuditJob.processing_time_ms).where(
            AuditJob.owner_id == owner_id,
            AuditJob.status == "completed",
        )
        days = HISTORY_PERIODS.get(period)
        if days:
            cutoff = datetime.now(timezone.utc) - timedelta(days=days)
            query = query.where(AuditJob.created_at >= cutoff)

        rows = (await self.db.execute(query)).all()
        buckets: Dict[str, Dict[str, Any]] = {}
        for created_at, score, processing_ms in rows:
            if created_at is None:
                continue
            bucket = buckets.setdefault(
                _group_key(created_at, group_by),
                {"count": 0, "scores": [], "processing": []},
            )
            bucket["count"] += 1
            if score is not None:
                bucket["scores"].append(score)
            if processing_ms is not None:
                bucket["processing"].append(processing_ms)

        history: List[Dict[str, Any]] = []
        for key in sorted(buckets):
            bucket = buckets[key]
            scores, processing = bucket["scores"], bucket["processing"]
            history.append(
                {
                    "period": key,
                    "count": bucket["count"],
                    "avg_score": round(sum(scores) / len(scores), 1) if scores else None,
                    "avg_processing_time_ms": round(sum(processing) / len(processing)) if processing else None,
                }
            )
        return history
