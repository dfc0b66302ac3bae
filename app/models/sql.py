from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import false, func

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CategoryDB(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False)
    type = Column(Text, nullable=False)  # 'income' or 'expense'
    user_id = Column(Text, nullable=True)  # None for system defaults

    transactions = relationship("TransactionDB", back_populates="category")

    __table_args__ = (UniqueConstraint("name", "type", "user_id", name="uq_category_user"),)


class TransactionDB(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)

    date = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), index=True)

    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False)

    note = Column(Text, nullable=True)

    category = relationship("CategoryDB", back_populates="transactions")


class BudgetDB(Base):
    __tablename__ = "budgets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False, index=True)

    # Matched against category names exactly (case-sensitive)
    category = Column(Text, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "category", name="uq_budget_user_category"),)


class GoalDB(Base):
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False, index=True)

    title = Column(String(255), nullable=False)
    target_amount = Column(Numeric(12, 2), nullable=False)
    saved_amount = Column(Numeric(12, 2), nullable=False, default=0)

    status = Column(String(10), nullable=False, default="active")  # 'active' or 'completed'


class InsightDB(Base):
    __tablename__ = "insights"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False)

    # Fully rendered text; never rewritten after insert
    message = Column(Text, nullable=False)

    type = Column(String(10), nullable=False)  # success / warning / tip / info

    is_read = Column(Boolean, default=False, server_default=false(), nullable=False)

    # Set client-side so ordering keeps sub-second precision on every backend
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (Index("ix_insights_user_created", "user_id", "created_at"),)
