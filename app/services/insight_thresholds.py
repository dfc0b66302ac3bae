"""
Configurable thresholds for the insight rules.

All percentage thresholds are expressed as percent values (e.g. 20 = 20%).
Every value can be overridden through an INSIGHT_* environment variable.
"""

import os
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class InsightThresholds:
    # Savings rate (R1)
    savings_success_rate: Decimal = Decimal("20")
    savings_warning_rate: Decimal = Decimal("10")

    # Category concentration (R2)
    concentration_warning_share: Decimal = Decimal("40")
    concentration_tip_share: Decimal = Decimal("30")
    concentration_tip_min_expense: Decimal = Decimal("10000")
    watched_categories: tuple[str, ...] = ("Food", "Entertainment", "Shopping", "Transportation")

    # Weekend spending (R3)
    weekend_ratio: Decimal = Decimal("1.5")
    weekend_share: Decimal = Decimal("30")

    # Goals progress (R4)
    goals_progress_ceiling: Decimal = Decimal("50")
    goals_min_savings_rate: Decimal = Decimal("15")

    # Budget overage (R5)
    budget_overage_pct: Decimal = Decimal("10")


DEFAULT_THRESHOLDS = InsightThresholds()


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    return Decimal(raw) if raw else default


def thresholds_from_env() -> InsightThresholds:
    """
    Build thresholds from INSIGHT_* environment variables, falling back to defaults.

    INSIGHT_WATCHED_CATEGORIES is a comma-separated list of category labels.
    """
    d = DEFAULT_THRESHOLDS
    watched = os.getenv("INSIGHT_WATCHED_CATEGORIES")

    return InsightThresholds(
        savings_success_rate=_env_decimal("INSIGHT_SAVINGS_SUCCESS_RATE", d.savings_success_rate),
        savings_warning_rate=_env_decimal("INSIGHT_SAVINGS_WARNING_RATE", d.savings_warning_rate),
        concentration_warning_share=_env_decimal("INSIGHT_CONCENTRATION_WARNING_SHARE", d.concentration_warning_share),
        concentration_tip_share=_env_decimal("INSIGHT_CONCENTRATION_TIP_SHARE", d.concentration_tip_share),
        concentration_tip_min_expense=_env_decimal(
            "INSIGHT_CONCENTRATION_TIP_MIN_EXPENSE", d.concentration_tip_min_expense
        ),
        watched_categories=(
            tuple(c.strip() for c in watched.split(",") if c.strip()) if watched else d.watched_categories
        ),
        weekend_ratio=_env_decimal("INSIGHT_WEEKEND_RATIO", d.weekend_ratio),
        weekend_share=_env_decimal("INSIGHT_WEEKEND_SHARE", d.weekend_share),
        goals_progress_ceiling=_env_decimal("INSIGHT_GOALS_PROGRESS_CEILING", d.goals_progress_ceiling),
        goals_min_savings_rate=_env_decimal("INSIGHT_GOALS_MIN_SAVINGS_RATE", d.goals_min_savings_rate),
        budget_overage_pct=_env_decimal("INSIGHT_BUDGET_OVERAGE_PCT", d.budget_overage_pct),
    )
