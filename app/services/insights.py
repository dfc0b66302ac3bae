import logging
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError
from sqlalchemy import delete, desc, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import INSIGHT_DEDUP_HOURS, INSIGHT_LIST_LIMIT, INSIGHT_RETENTION_LIMIT
from app.models.schemas import InsightCandidate
from app.models.sql import InsightDB
from app.services.analytics import AnalyticsService
from app.services.exceptions import InsightAccessDeniedError, InsightNotFoundError
from app.services.insight_thresholds import DEFAULT_THRESHOLDS, InsightThresholds
from app.services.rules import RuleEvaluator

logger = logging.getLogger(__name__)


class InsightStore:
    """Row-level access to the insights table. Never commits; the caller owns the transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def insert(self, user_id: str, candidate: InsightCandidate, created_at: datetime) -> InsightDB:
        insight = InsightDB(
            user_id=user_id,
            message=candidate.message,
            type=candidate.type.value,
            is_read=False,
            created_at=created_at,
            updated_at=created_at,
        )
        self.session.add(insight)
        return insight

    async def get(self, insight_id: int) -> InsightDB | None:
        return await self.session.get(InsightDB, insight_id)

    async def query_by_user(self, user_id: str, unread_only: bool = False, limit: int | None = None) -> list[InsightDB]:
        stmt = (
            select(InsightDB)
            .where(InsightDB.user_id == user_id)
            .order_by(desc(InsightDB.created_at), desc(InsightDB.id))
        )
        if unread_only:
            stmt = stmt.where(InsightDB.is_read.is_(False))
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def has_recent_duplicate(self, user_id: str, message: str, since: datetime) -> bool:
        # Autoflush makes inserts from the current pass visible here
        stmt = (
            select(InsightDB.id)
            .where(InsightDB.user_id == user_id, InsightDB.message == message, InsightDB.created_at >= since)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def delete_many(self, ids: list[int]) -> int:
        if not ids:
            return 0
        result = await self.session.execute(delete(InsightDB).where(InsightDB.id.in_(ids)))
        return result.rowcount

    async def enforce_retention(self, user_id: str, keep: int = INSIGHT_RETENTION_LIMIT) -> int:
        """Deletes everything past the `keep` newest insights of the user, read or not."""
        stmt = (
            select(InsightDB.id)
            .where(InsightDB.user_id == user_id)
            .order_by(desc(InsightDB.created_at), desc(InsightDB.id))
            .offset(keep)
        )
        result = await self.session.execute(stmt)
        return await self.delete_many(list(result.scalars().all()))

    async def mark_all_read(self, user_id: str, now: datetime) -> int:
        stmt = (
            update(InsightDB)
            .where(InsightDB.user_id == user_id, InsightDB.is_read.is_(False))
            .values(is_read=True, updated_at=now)
        )
        result = await self.session.execute(stmt)
        return result.rowcount


class InsightService:
    def __init__(self, session: AsyncSession, thresholds: InsightThresholds = DEFAULT_THRESHOLDS):
        self.session = session
        self.store = InsightStore(session)
        self.analytics = AnalyticsService(session)
        self.evaluator = RuleEvaluator(thresholds)

    async def _lock_user(self, user_id: str):
        """
        Serializes passes for one user across processes on PostgreSQL.
        Released automatically at commit/rollback.
        """
        if self.session.get_bind().dialect.name != "postgresql":
            return
        await self.session.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": f"insights:{user_id}"})

    async def generate_for_user(self, user_id: str, now: datetime | None = None) -> int:
        """
        Runs one generation pass and returns the number of newly stored insights.

        Best-effort: failures are logged and reported as 0, never raised.
        """
        now = now or datetime.now(UTC)

        try:
            await self._lock_user(user_id)

            agg = await self.analytics.get_window_aggregate(user_id, now)
            budgets = await self.analytics.get_budgets(user_id)
            goals = await self.analytics.get_goals(user_id, "active")

            candidates = self.evaluator.evaluate(agg, budgets, goals)

            since = now - timedelta(hours=INSIGHT_DEDUP_HOURS)
            created = 0
            for candidate in candidates:
                if await self.store.has_recent_duplicate(user_id, candidate.message, since):
                    logger.debug("Skipping duplicate insight for user %s: %s", user_id, candidate.message)
                    continue
                self.store.insert(user_id, candidate, created_at=now)
                created += 1

            removed = await self.store.enforce_retention(user_id)
            await self.session.commit()

        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Insight generation for user {user_id} failed, store unavailable: {e}")
            return 0
        except ValidationError as e:
            await self.session.rollback()
            logger.error(f"Insight generation for user {user_id} got malformed input: {e}")
            return 0
        except Exception:
            await self.session.rollback()
            logger.exception(f"Insight generation for user {user_id} failed")
            return 0

        logger.info(
            f"Insights for user {user_id}: {len(candidates)} candidates, {created} new, {removed} trimmed"
        )
        return created

    async def list_insights(self, user_id: str, unread_only: bool = False) -> list[InsightDB]:
        if unread_only:
            return await self.store.query_by_user(user_id, unread_only=True)
        # Listing cap (6) is intentionally independent of the retention cap (5)
        return await self.store.query_by_user(user_id, limit=INSIGHT_LIST_LIMIT)

    async def mark_read(self, user_id: str, insight_id: int) -> InsightDB:
        insight = await self.store.get(insight_id)
        if insight is None:
            raise InsightNotFoundError(insight_id)
        if insight.user_id != user_id:
            raise InsightAccessDeniedError(insight_id)

        if not insight.is_read:
            insight.is_read = True
            await self.session.commit()
        return insight

    async def mark_all_read(self, user_id: str) -> int:
        count = await self.store.mark_all_read(user_id, datetime.now(UTC))
        await self.session.commit()
        return count
