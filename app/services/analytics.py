from collections.abc import Iterable
from datetime import UTC, date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import INSIGHT_WINDOW_DAYS
from app.models.schemas import BudgetLimit, GoalRecord, TransactionRecord, WindowAggregate
from app.models.sql import BudgetDB, CategoryDB, GoalDB, TransactionDB

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole * 100, rounded half-up to two decimals. Caller guarantees whole > 0."""
    return (part / whole * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def window_bounds(now: datetime, days: int = INSIGHT_WINDOW_DAYS) -> tuple[date, date]:
    """Inclusive calendar-day window ending today."""
    today = now.astimezone(UTC).date()
    return today - timedelta(days=days), today


def _as_date(value: datetime | date) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.date()
    return value


def _average(total: Decimal, count: int) -> Decimal:
    if count == 0:
        return Decimal("0")
    return (total / count).quantize(CENT, rounding=ROUND_HALF_UP)


def build_window_aggregate(records: Iterable[TransactionRecord], from_date: date, to_date: date) -> WindowAggregate:
    """
    Reduces a user's window of transactions into the totals the insight rules work on.
    """
    agg = WindowAggregate(from_date=from_date, to_date=to_date)

    for tx in records:
        if tx.type == "income":
            agg.total_income += tx.amount
            continue

        agg.total_expense += tx.amount
        agg.category_totals[tx.category] = agg.category_totals.get(tx.category, Decimal("0")) + tx.amount

        # Saturday = 5, Sunday = 6
        if tx.date.weekday() >= 5:
            agg.weekend_total += tx.amount
            agg.weekend_count += 1
        else:
            agg.weekday_total += tx.amount
            agg.weekday_count += 1

    if agg.total_income > 0:
        agg.savings_rate = percent_of(agg.total_income - agg.total_expense, agg.total_income)

    agg.weekend_average = _average(agg.weekend_total, agg.weekend_count)
    agg.weekday_average = _average(agg.weekday_total, agg.weekday_count)

    return agg


class AnalyticsService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_window_transactions(
        self, user_id: str, from_date: date, to_date: date, type: str | None = None
    ) -> list[TransactionRecord]:
        """
        Returns the user's transactions dated from_date..to_date (both inclusive), newest first.
        """
        start = datetime.combine(from_date, time.min, tzinfo=UTC)
        end = datetime.combine(to_date + timedelta(days=1), time.min, tzinfo=UTC)

        stmt = (
            select(
                TransactionDB.user_id,
                TransactionDB.amount,
                TransactionDB.date,
                CategoryDB.name.label("category"),
                CategoryDB.type,
            )
            .join(CategoryDB, TransactionDB.category_id == CategoryDB.id)
            .where(TransactionDB.user_id == user_id, TransactionDB.date >= start, TransactionDB.date < end)
            .order_by(desc(TransactionDB.date), desc(TransactionDB.id))
        )
        if type:
            stmt = stmt.where(CategoryDB.type == type)

        result = await self.session.execute(stmt)

        return [
            TransactionRecord(
                user_id=row["user_id"],
                type=row["type"],
                category=row["category"],
                amount=row["amount"],
                date=_as_date(row["date"]),
            )
            for row in result.mappings().all()
        ]

    async def get_budgets(self, user_id: str) -> list[BudgetLimit]:
        stmt = select(BudgetDB).where(BudgetDB.user_id == user_id).order_by(BudgetDB.category)
        result = await self.session.execute(stmt)
        return [BudgetLimit.model_validate(b) for b in result.scalars().all()]

    async def get_goals(self, user_id: str, status: str = "active") -> list[GoalRecord]:
        stmt = select(GoalDB).where(GoalDB.user_id == user_id, GoalDB.status == status)
        result = await self.session.execute(stmt)
        return [GoalRecord.model_validate(g) for g in result.scalars().all()]

    async def get_window_aggregate(self, user_id: str, now: datetime | None = None) -> WindowAggregate:
        from_date, to_date = window_bounds(now or datetime.now(UTC))
        records = await self.get_window_transactions(user_id, from_date, to_date)
        return build_window_aggregate(records, from_date, to_date)
