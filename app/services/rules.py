import logging
from collections.abc import Callable, Sequence
from decimal import ROUND_HALF_UP, Decimal

from app.models.schemas import BudgetLimit, GoalRecord, InsightCandidate, InsightType, WindowAggregate
from app.services.analytics import CENT, percent_of
from app.services.insight_thresholds import DEFAULT_THRESHOLDS, InsightThresholds

logger = logging.getLogger(__name__)


def _fmt(value: Decimal) -> str:
    # Thresholds like Decimal("20") render as "20", rates keep their two decimals
    return f"{value:f}"


class RuleEvaluator:
    """
    Runs the fixed, ordered set of insight heuristics over a window aggregate.

    Rules are independent: each may add candidates, none stops the others, and
    a rule that raises is logged and skipped.
    """

    def __init__(self, thresholds: InsightThresholds = DEFAULT_THRESHOLDS):
        self.thresholds = thresholds
        self._rules: list[tuple[str, Callable[..., list[InsightCandidate]]]] = [
            ("savings_rate", self._savings_rate),
            ("category_concentration", self._category_concentration),
            ("weekend_spending", self._weekend_spending),
            ("goals_progress", self._goals_progress),
            ("budget_overage", self._budget_overage),
        ]

    def evaluate(
        self, agg: WindowAggregate, budgets: Sequence[BudgetLimit] = (), goals: Sequence[GoalRecord] = ()
    ) -> list[InsightCandidate]:
        candidates = []
        for name, rule in self._rules:
            try:
                candidates.extend(rule(agg, budgets, goals))
            except Exception:
                logger.exception("Insight rule %s failed, skipping", name)
        return candidates

    # --- R1 ---
    def _savings_rate(self, agg, budgets, goals) -> list[InsightCandidate]:
        t = self.thresholds
        rate = agg.savings_rate
        if agg.total_income <= 0 or rate is None:
            return []

        if rate >= t.savings_success_rate:
            return [
                InsightCandidate(
                    f"Your savings rate is good! You're saving {_fmt(rate)}% of your income.",
                    InsightType.SUCCESS,
                )
            ]
        elif rate < t.savings_warning_rate:
            return [
                InsightCandidate(
                    f"Try to save at least {_fmt(t.savings_success_rate)}% of your income. "
                    f"Currently you're saving {_fmt(rate)}%.",
                    InsightType.WARNING,
                )
            ]
        elif rate < 0:
            # Shadowed by the branch above for any warning rate >= 0; kept in this order deliberately
            return [
                InsightCandidate(
                    "You're spending more than you earn. Try to reduce expenses or increase income.",
                    InsightType.WARNING,
                )
            ]
        return []

    # --- R2 ---
    def _category_concentration(self, agg, budgets, goals) -> list[InsightCandidate]:
        t = self.thresholds
        if not agg.category_totals or agg.total_expense <= 0:
            return []

        # Largest total first, ties broken alphabetically
        category, amount = sorted(agg.category_totals.items(), key=lambda kv: (-kv[1], kv[0]))[0]
        share = percent_of(amount, agg.total_expense)

        if share > t.concentration_warning_share and category in t.watched_categories:
            return [
                InsightCandidate(
                    f"You are spending too much on {category}. Consider reducing expenses in this category.",
                    InsightType.WARNING,
                )
            ]
        if share > t.concentration_tip_share and agg.total_expense > t.concentration_tip_min_expense:
            return [
                InsightCandidate(
                    f"Your spending on {category} is high ({_fmt(share)}% of total expenses).",
                    InsightType.TIP,
                )
            ]
        return []

    # --- R3 ---
    def _weekend_spending(self, agg, budgets, goals) -> list[InsightCandidate]:
        t = self.thresholds
        if agg.weekend_count == 0 or agg.weekday_count == 0 or agg.weekday_average <= 0:
            return []

        ratio = (agg.weekend_average / agg.weekday_average).quantize(CENT, rounding=ROUND_HALF_UP)
        weekend_floor = agg.total_expense * t.weekend_share / 100

        if ratio > t.weekend_ratio and agg.weekend_total > weekend_floor:
            return [
                InsightCandidate(
                    "Reduce weekend spending. Your weekend expenses are significantly higher than weekdays.",
                    InsightType.TIP,
                )
            ]
        return []

    # --- R4 ---
    def _goals_progress(self, agg, budgets, goals) -> list[InsightCandidate]:
        t = self.thresholds
        active = [g for g in goals if g.status == "active"]
        if not active:
            return []

        total_target = sum((g.target_amount for g in active), Decimal("0"))
        total_saved = sum((g.saved_amount for g in active), Decimal("0"))
        if total_target <= 0:
            return []

        progress = percent_of(total_saved, total_target)
        savings_rate = agg.savings_rate if agg.savings_rate is not None else Decimal("0")

        if progress < t.goals_progress_ceiling and savings_rate > t.goals_min_savings_rate:
            return [
                InsightCandidate(
                    "You have active goals. Consider allocating more savings towards them.",
                    InsightType.INFO,
                )
            ]
        return []

    # --- R5 ---
    def _budget_overage(self, agg, budgets, goals) -> list[InsightCandidate]:
        t = self.thresholds
        candidates = []
        for budget in budgets:
            if budget.amount <= 0:
                continue

            spent = agg.category_totals.get(budget.category, Decimal("0"))
            excess = spent - budget.amount
            if excess <= 0:
                continue

            excess_pct = percent_of(excess, budget.amount)
            if excess_pct > t.budget_overage_pct:
                candidates.append(
                    InsightCandidate(
                        f"You've exceeded your budget for {budget.category} by {_fmt(excess_pct)}%.",
                        InsightType.WARNING,
                    )
                )
        return candidates
