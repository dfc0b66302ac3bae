import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.services.insight_thresholds import DEFAULT_THRESHOLDS, InsightThresholds
from app.services.insights import InsightService

logger = logging.getLogger(__name__)


class InsightDispatcher:
    """
    Runs insight generation passes, at most one at a time per user.

    Passes for different users run concurrently. A failed pass is logged and
    counts as 0, so neither `run_for_user` nor `schedule` raises. `schedule` is
    the fire-and-forget entry point used after transaction mutations and nothing
    waits on it. Scheduled passes for one user run in lock acquisition order,
    which is not guaranteed to match scheduling order.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        thresholds: InsightThresholds = DEFAULT_THRESHOLDS,
    ):
        self.session_maker = session_maker
        self.thresholds = thresholds
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}
        # Keep strong references so pending tasks are not garbage collected
        self._tasks: set[asyncio.Task] = set()

    async def run_for_user(self, user_id: str) -> int:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._waiters[user_id] = self._waiters.get(user_id, 0) + 1
        try:
            async with lock:
                async with self.session_maker() as session:
                    return await InsightService(session, self.thresholds).generate_for_user(user_id)
        except Exception:
            # e.g. no connection could be opened at all
            logger.exception(f"Insight generation pass for user {user_id} failed")
            return 0
        finally:
            self._waiters[user_id] -= 1
            if self._waiters[user_id] == 0:
                del self._waiters[user_id]
                del self._locks[user_id]

    def schedule(self, user_id: str) -> asyncio.Task:
        task = asyncio.create_task(self.run_for_user(user_id), name=f"insights:{user_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self):
        """Waits for every scheduled pass, including ones scheduled while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
