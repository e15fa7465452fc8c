"""Monthly audit quota gate and subscription tier checks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import monthly_audit_limit, settings
from models.user import User
from services.errors import AuthorizationError, QuotaExceededError


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: str
    remaining: Optional[int] = None


def _current_period_key(now: Optional[datetime] = None) -> str:
    current = now or datetime.now(timezone.utc)
    return current.strftime("%Y-%m")


async def _get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def ensure_user(db: AsyncSession, user_id: str) -> User:
    """Return the requester row, creating a free-tier user on first sight."""
    user = await _get_user(db, user_id)
    if not user:
        user = User(
            id=user_id,
            email=f"{user_id}@local.invalid",
            plan_tier="free",
            audits_this_month=0,
            total_audits=0,
        )
        db.add(user)
        await db.flush()
    return user


def _roll_period(user: User, now: datetime) -> None:
    period_key = _current_period_key(now)
    if user.usage_period != period_key:
        user.usage_period = period_key
        user.audits_this_month = 0


async def admit(
    db: AsyncSession,
    requester_id: Optional[str],
    units: int = 1,
) -> QuotaDecision:
    """
    Admit `units` audits for the requester and count them against the plan.

    Anonymous requesters are always admitted. A denial changes nothing; an
    admission increments the usage counters (flushed, committed by the caller).
    """
    if not requester_id:
        return QuotaDecision(allowed=True, reason="anonymous")

    units = max(int(units), 1)
    now = datetime.now(timezone.utc)
    user = await ensure_user(db, requester_id)
    _roll_period(user, now)

    limit = monthly_audit_limit(user.plan_tier)
    used = int(user.audits_this_month or 0)
    if limit >= 0 and used + units > limit:
        return QuotaDecision(
            allowed=False,
            reason=(
                f"Monthly audit limit reached for the {user.plan_tier} plan "
                f"({used}/{limit} used, {units} requested). Upgrade your plan to continue."
            ),
            remaining=max(limit - used, 0),
        )

    user.audits_this_month = used + units
    user.total_audits = int(user.total_audits or 0) + units
    user.last_audit_at = now
    await db.flush()
    return QuotaDecision(
        allowed=True,
        reason="within plan limit" if limit >= 0 else "unlimited plan",
        remaining=(limit - used - units) if limit >= 0 else None,
    )


async def require_admission(db: AsyncSession, requester_id: Optional[str], units: int = 1) -> QuotaDecision:
    decision = await admit(db, requester_id, units)
    if not decision.allowed:
        raise QuotaExceededError(decision.reason)
    return decision


async def check_batch_tier(db: AsyncSession, requester_id: Optional[str]) -> None:
    """Batch audits are reserved for paid tiers."""
    if not requester_id:
        raise AuthorizationError("Batch audits require an authenticated account")
    user = await ensure_user(db, requester_id)
    allowed = {tier.lower() for tier in settings.BATCH_ALLOWED_TIERS}
    if (user.plan_tier or "free").lower() not in allowed:
        raise AuthorizationError("Batch audits require premium subscription")
