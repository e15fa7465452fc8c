import pytest
from sqlalchemy.future import select

from conftest import add_user
from models.user import User
from services.errors import AuthorizationError, QuotaExceededError
from services.quota import admit, check_batch_tier, require_admission


@pytest.mark.asyncio
async def test_anonymous_requester_is_always_admitted(db):
    decision = await admit(db, None)
    assert decision.allowed is True
    assert decision.reason == "anonymous"


@pytest.mark.asyncio
async def test_admission_counts_usage(session_maker, db):
    await add_user(session_maker, "free-user", plan_tier="free", audits_this_month=3)

    decision = await admit(db, "free-user")
    await db.commit()

    assert decision.allowed is True
    assert decision.remaining == 6
    user = (await db.execute(select(User).where(User.id == "free-user"))).scalar_one()
    assert user.audits_this_month == 4
    assert user.total_audits == 4
    assert user.last_audit_at is not None


@pytest.mark.asyncio
async def test_denial_changes_nothing(session_maker, db):
    await add_user(session_maker, "capped", plan_tier="free", audits_this_month=10)

    with pytest.raises(QuotaExceededError) as exc_info:
        await require_admission(db, "capped")
    assert "free plan" in str(exc_info.value)

    user = (await db.execute(select(User).where(User.id == "capped"))).scalar_one()
    assert user.audits_this_month == 10


@pytest.mark.asyncio
async def test_batch_units_must_fit_remaining_allowance(session_maker, db):
    await add_user(session_maker, "basic-user", plan_tier="basic", audits_this_month=95)

    assert (await admit(db, "basic-user", units=6)).allowed is False
    assert (await admit(db, "basic-user", units=5)).allowed is True


@pytest.mark.asyncio
async def test_enterprise_is_unlimited(session_maker, db):
    await add_user(session_maker, "big", plan_tier="enterprise", audits_this_month=100000)
    decision = await admit(db, "big", units=10)
    assert decision.allowed is True
    assert decision.remaining is None


@pytest.mark.asyncio
async def test_usage_resets_in_a_new_month(session_maker, db):
    await add_user(session_maker, "stale", plan_tier="free", audits_this_month=10)
    user = (await db.execute(select(User).where(User.id == "stale"))).scalar_one()
    user.usage_period = "2000-01"
    await db.commit()

    decision = await admit(db, "stale")
    assert decision.allowed is True
    assert user.audits_this_month == 1


@pytest.mark.asyncio
async def test_unknown_requester_starts_on_free_plan(db):
    decision = await admit(db, "first-timer")
    assert decision.allowed is True
    assert decision.remaining == 9


@pytest.mark.asyncio
async def test_batch_requires_paid_tier(session_maker, db):
    await add_user(session_maker, "free-user", plan_tier="free")
    await add_user(session_maker, "premium-user", plan_tier="premium")

    with pytest.raises(AuthorizationError):
        await check_batch_tier(db, "free-user")
    with pytest.raises(AuthorizationError):
        await check_batch_tier(db, None)
    await check_batch_tier(db, "premium-user")
