from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.models.sql import InsightDB
from app.services.analytics import AnalyticsService
from app.services.exceptions import InsightAccessDeniedError, InsightNotFoundError
from app.services.insights import InsightService
from app.services.rules import RuleEvaluator

WED = 2
SUCCESS_30 = "Your savings rate is good! You're saving 30.00% of your income."


async def count_insights(session, user_id):
    result = await session.execute(select(func.count()).select_from(InsightDB).where(InsightDB.user_id == user_id))
    return result.scalar()


@pytest.fixture
async def saver(seed, on_weekday):
    """User "1": 10,000 income against 7,000 of rent on a weekday, i.e. a 30% savings rate."""
    day = on_weekday(WED)
    await seed.tx("1", "Salary", "income", "10000.00", day)
    await seed.tx("1", "Rent", "expense", "7000.00", day)


@pytest.mark.asyncio
async def test_generate_success_insight(session, saver):
    count = await InsightService(session).generate_for_user("1")

    assert count == 1
    insights = await InsightService(session).list_insights("1")
    assert len(insights) == 1
    assert insights[0].message == SUCCESS_30
    assert insights[0].type == "success"
    assert insights[0].is_read is False


@pytest.mark.asyncio
async def test_generate_is_idempotent_within_a_day(session, saver):
    service = InsightService(session)

    assert await service.generate_for_user("1") == 1
    assert await service.generate_for_user("1") == 0
    assert await count_insights(session, "1") == 1


@pytest.mark.asyncio
async def test_duplicate_older_than_window_is_reissued(session, seed, saver):
    await seed.insight("1", SUCCESS_30, datetime.now(UTC) - timedelta(hours=25), type="success")

    assert await InsightService(session).generate_for_user("1") == 1
    assert await count_insights(session, "1") == 2


@pytest.mark.asyncio
async def test_duplicate_check_is_per_user(session, seed, saver):
    await seed.insight("2", SUCCESS_30, datetime.now(UTC), type="success")

    assert await InsightService(session).generate_for_user("1") == 1


@pytest.mark.asyncio
async def test_read_duplicate_still_suppresses(session, seed, saver):
    await seed.insight("1", SUCCESS_30, datetime.now(UTC) - timedelta(hours=1), is_read=True, type="success")

    assert await InsightService(session).generate_for_user("1") == 0


@pytest.mark.asyncio
async def test_budget_overage_generates_one_warning(session, seed, on_weekday):
    await seed.tx("1", "Food", "expense", "1200.00", on_weekday(WED))
    await seed.budget("1", "Food", "1000.00")

    count = await InsightService(session).generate_for_user("1")

    insights = await InsightService(session).list_insights("1")
    budget_warnings = [i for i in insights if "budget" in i.message]
    assert count == 2  # concentration warning + budget warning
    assert len(budget_warnings) == 1
    assert budget_warnings[0].message == "You've exceeded your budget for Food by 20.00%."
    assert budget_warnings[0].type == "warning"


@pytest.mark.asyncio
async def test_retention_keeps_five_newest(session, seed, saver):
    now = datetime.now(UTC)
    for i in range(7):
        await seed.insight("1", f"old insight {i}", now - timedelta(hours=30 + i), is_read=i % 2 == 0)

    assert await InsightService(session).generate_for_user("1") == 1

    remaining = await InsightService(session).list_insights("1")
    assert len(remaining) == 5
    assert [i.message for i in remaining] == [SUCCESS_30] + [f"old insight {i}" for i in range(4)]


@pytest.mark.asyncio
async def test_retention_runs_without_new_insights(session, seed):
    now = datetime.now(UTC)
    for i in range(8):
        await seed.insight("1", f"insight {i}", now - timedelta(minutes=i))
    await seed.insight("2", "other user", now - timedelta(days=10))

    assert await InsightService(session).generate_for_user("1") == 0

    assert await count_insights(session, "1") == 5
    assert await count_insights(session, "2") == 1


@pytest.mark.asyncio
async def test_retention_bound_after_every_pass(session, seed, on_weekday):
    service = InsightService(session)
    day = on_weekday(WED)
    await seed.tx("1", "Salary", "income", "10000", day)
    await seed.goal("1", "10000", "0")

    # Each new expense moves the savings rate, producing fresh messages every pass
    for amount in ("100", "200", "300", "400", "500", "600", "700"):
        await seed.tx("1", "Food", "expense", amount, day)
        await service.generate_for_user("1")
        assert await count_insights(session, "1") <= 5


@pytest.mark.asyncio
async def test_transient_store_failure_returns_zero(session, saver, mocker):
    mocker.patch.object(
        AnalyticsService,
        "get_window_aggregate",
        side_effect=OperationalError("SELECT 1", {}, Exception("connection refused")),
    )

    assert await InsightService(session).generate_for_user("1") == 0
    assert await count_insights(session, "1") == 0


@pytest.mark.asyncio
async def test_unexpected_failure_returns_zero(session, saver, mocker):
    mocker.patch.object(RuleEvaluator, "evaluate", side_effect=KeyError("oops"))

    assert await InsightService(session).generate_for_user("1") == 0


@pytest.mark.asyncio
async def test_failing_rule_still_persists_other_rules(session, seed, on_weekday, mocker):
    mocker.patch.object(RuleEvaluator, "_category_concentration", side_effect=ZeroDivisionError())
    await seed.tx("1", "Food", "expense", "1200.00", on_weekday(WED))
    await seed.budget("1", "Food", "1000.00")

    assert await InsightService(session).generate_for_user("1") == 1
    insights = await InsightService(session).list_insights("1")
    assert insights[0].message == "You've exceeded your budget for Food by 20.00%."


# --- Read state ---


@pytest.fixture
async def eight_insights(seed):
    now = datetime.now(UTC)
    created = []
    for i in range(8):
        created.append(await seed.insight("1", f"insight {i}", now - timedelta(minutes=i), is_read=i == 1))
    return created


@pytest.mark.asyncio
async def test_list_caps_at_six_newest_first(session, eight_insights):
    insights = await InsightService(session).list_insights("1")

    assert [i.message for i in insights] == [f"insight {i}" for i in range(6)]


@pytest.mark.asyncio
async def test_list_unread_only_is_not_capped(session, eight_insights):
    insights = await InsightService(session).list_insights("1", unread_only=True)

    assert [i.message for i in insights] == [f"insight {i}" for i in range(8) if i != 1]
    assert all(i.is_read is False for i in insights)


@pytest.mark.asyncio
async def test_list_orders_same_timestamp_by_id(session, seed):
    now = datetime.now(UTC)
    first = await seed.insight("1", "first", now)
    second = await seed.insight("1", "second", now)

    insights = await InsightService(session).list_insights("1")

    assert [i.id for i in insights] == [second.id, first.id]


@pytest.mark.asyncio
async def test_mark_read(session, eight_insights):
    service = InsightService(session)
    target = eight_insights[0]

    await service.mark_read("1", target.id)
    await service.mark_read("1", target.id)

    unread = await service.list_insights("1", unread_only=True)
    assert target.id not in [i.id for i in unread]
    assert len(unread) == 6


@pytest.mark.asyncio
async def test_mark_read_touches_updated_at(session, seed):
    insight = await seed.insight("1", "stale", datetime.now(UTC) - timedelta(hours=1))

    await InsightService(session).mark_read("1", insight.id)
    await session.refresh(insight)

    assert insight.is_read is True
    assert insight.updated_at > insight.created_at


@pytest.mark.asyncio
async def test_mark_read_other_users_insight(session, seed):
    foreign = await seed.insight("B", "not yours", datetime.now(UTC))

    with pytest.raises(InsightAccessDeniedError):
        await InsightService(session).mark_read("A", foreign.id)

    await session.refresh(foreign)
    assert foreign.is_read is False


@pytest.mark.asyncio
async def test_mark_read_missing_insight(session):
    with pytest.raises(InsightNotFoundError):
        await InsightService(session).mark_read("A", 424242)


@pytest.mark.asyncio
async def test_mark_all_read_is_idempotent(session, seed, eight_insights):
    await seed.insight("2", "someone else", datetime.now(UTC))
    service = InsightService(session)

    assert await service.mark_all_read("1") == 7
    assert await service.mark_all_read("1") == 0
    assert await service.list_insights("1", unread_only=True) == []
    assert len(await service.list_insights("2", unread_only=True)) == 1
