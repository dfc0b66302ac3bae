from dataclasses import dataclass, field
from datetime import date as date_type
from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class InsightType(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    TIP = "tip"
    INFO = "info"


# --- Transaction Models ---
class TransactionCreate(BaseModel):
    amount: Decimal = Field(ge=0)
    category_id: int
    date: str | datetime | None = None
    note: str | None = None


class TransactionUpdate(BaseModel):
    amount: Decimal | None = Field(default=None, ge=0)
    category_id: int | None = None
    date: str | datetime | None = None
    note: str | None = None


class Transaction(BaseModel):
    id: int
    amount: Decimal
    category: str
    type: str
    date: datetime
    category_id: int
    note: str | None = None

    class Config:
        from_attributes = True


# --- Engine inputs (read-only views over other stores) ---
class TransactionRecord(BaseModel):
    user_id: str
    type: str = Field(pattern="^(income|expense)$")
    category: str
    amount: Decimal = Field(ge=0)
    date: date_type


class BudgetLimit(BaseModel):
    user_id: str
    category: str
    amount: Decimal = Field(ge=0)

    class Config:
        from_attributes = True


class GoalRecord(BaseModel):
    user_id: str
    title: str
    target_amount: Decimal = Field(ge=0)
    saved_amount: Decimal = Field(ge=0)
    status: str

    class Config:
        from_attributes = True


@dataclass
class WindowAggregate:
    """Totals for one user over the trailing window, computed per generation pass."""

    from_date: date_type
    to_date: date_type
    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")
    # Percent, None when there was no income
    savings_rate: Decimal | None = None
    category_totals: dict[str, Decimal] = field(default_factory=dict)
    weekend_total: Decimal = Decimal("0")
    weekend_count: int = 0
    weekend_average: Decimal = Decimal("0")
    weekday_total: Decimal = Decimal("0")
    weekday_count: int = 0
    weekday_average: Decimal = Decimal("0")


@dataclass(frozen=True)
class InsightCandidate:
    message: str
    type: InsightType


# --- Insight Models ---
class Insight(BaseModel):
    id: int
    user_id: str
    message: str
    type: InsightType
    is_read: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class InsightList(BaseModel):
    success: bool = True
    notifications: list[Insight]


class GenerateResult(BaseModel):
    success: bool = True
    message: str
    count: int
