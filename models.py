from datetime import date, datetime
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class BudgetPeriod(str, Enum):
    monthly = "monthly"
    yearly = "yearly"


# Suggested categories offered to clients, with their display colours.
CATEGORY_COLORS: dict[str, str] = {
    "Food & Dining": "#EF4444",
    "Transportation": "#3B82F6",
    "Shopping": "#8B5CF6",
    "Entertainment": "#F59E0B",
    "Bills & Utilities": "#10B981",
    "Healthcare": "#EC4899",
    "Education": "#6366F1",
    "Travel": "#14B8A6",
    "Investment": "#84CC16",
    "Salary": "#22C55E",
    "Business": "#F97316",
    "Other": "#6B7280",
}
DEFAULT_CATEGORY_COLOR = "#6B7280"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="user", cascade="all, delete-orphan"
    )
    budgets: Mapped[list["Budget"]] = relationship(
        "Budget", back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_type_category", "user_id", "type", "category"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    # may go negative: deletes are never floored at zero
    spent_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    period: Mapped[BudgetPeriod] = mapped_column(SAEnum(BudgetPeriod), nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="budgets")

    __table_args__ = (
        UniqueConstraint("user_id", "category", name="uq_budget_user_category"),
        Index("ix_budgets_user_created", "user_id", "created_at"),
        CheckConstraint("limit_cents > 0", name="ck_budget_limit_positive"),
    )
