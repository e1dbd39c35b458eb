from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from amounts import cents_to_amount
from auth import check_password, hash_password
from errors import AuthenticationError, ConflictError, NotFoundError
from models import Budget, Transaction, TransactionType, User
from schemas import BudgetIn, LoginIn, RegisterIn, TransactionIn

logger = logging.getLogger(__name__)

BUDGET_WARNING_PERCENT = 80
BUDGET_OVER_PERCENT = 100


def _month_start(d: date) -> date:
    return d.replace(day=1)


def _month_end(d: date) -> date:
    if d.month == 12:
        return date(d.year + 1, 1, 1) - date.resolution
    return date(d.year, d.month + 1, 1) - date.resolution


def adjust_budget_spent(
    session: Session, user_id: int, category: str, delta_cents: int
) -> bool:
    """Add ``delta_cents`` to the user's budget for ``category``, if there is one.

    Runs as a single UPDATE so concurrent adjustments cannot lose writes. The
    caller commits, keeping the adjustment in the same database transaction as
    the transaction write that triggered it.
    """
    result = session.execute(
        update(Budget)
        .where(Budget.user_id == user_id, Budget.category == category)
        .values(
            spent_cents=Budget.spent_cents + delta_cents,
            updated_at=datetime.utcnow(),
        )
    )
    matched = (result.rowcount or 0) > 0
    if matched:
        logger.info(
            f"budget_adjusted: user_id={user_id} category={category!r} "
            f"delta_cents={delta_cents}"
        )
    return matched


def budget_status(percentage: float) -> str:
    if percentage >= BUDGET_OVER_PERCENT:
        return "over"
    if percentage >= BUDGET_WARNING_PERCENT:
        return "warning"
    return "good"


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )

    def register(self, data: RegisterIn, *, password_rounds: int = 10) -> User:
        if self.get_by_email(data.email):
            raise ConflictError("Email already in use")
        user = User(
            name=data.name,
            email=data.email.lower(),
            password_hash=hash_password(data.password, rounds=password_rounds),
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            # lost a race against a concurrent registration
            self.session.rollback()
            raise ConflictError("Email already in use") from exc
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, data: LoginIn) -> User:
        user = self.get_by_email(data.email)
        if not user or not check_password(data.password, user.password_hash):
            logger.info("login_failed")
            raise AuthenticationError("Invalid credentials")
        logger.info(f"login_succeeded: user_id={user.id}")
        return user


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list(self) -> Sequence[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.id == transaction_id,
                Transaction.user_id == self.user_id,
            )
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            category=data.category,
            description=data.description,
            type=data.type,
            date=data.date,
        )
        self.session.add(txn)
        self.session.flush()
        if txn.type == TransactionType.expense:
            adjust_budget_spent(
                self.session, self.user_id, txn.category, txn.amount_cents
            )
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        txn_type, category, amount_cents = txn.type, txn.category, txn.amount_cents
        self.session.delete(txn)
        self.session.flush()
        if txn_type == TransactionType.expense and category:
            adjust_budget_spent(self.session, self.user_id, category, -amount_cents)
        self.session.commit()


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list(self) -> Sequence[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        budget = self.session.scalar(
            select(Budget).where(
                Budget.id == budget_id, Budget.user_id == self.user_id
            )
        )
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def create(self, data: BudgetIn) -> Budget:
        existing = self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id, Budget.category == data.category
            )
        )
        if existing:
            raise ConflictError("Budget for this category already exists")
        budget = Budget(
            user_id=self.user_id,
            category=data.category,
            limit_cents=data.limit_cents,
            spent_cents=data.spent_cents,
            period=data.period,
        )
        self.session.add(budget)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Budget for this category already exists") from exc
        self.session.refresh(budget)
        return budget

    def set_spent(self, budget_id: int, spent_cents: int) -> Budget:
        budget = self.get(budget_id)
        budget.spent_cents = spent_cents
        budget.updated_at = datetime.utcnow()
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def recalculate(self, budget_id: int) -> Budget:
        """Replace the running total with the live sum of matching expenses."""
        budget = self.get(budget_id)
        since = budget.created_at.date()
        total = int(
            self.session.execute(
                select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                    Transaction.user_id == self.user_id,
                    Transaction.type == TransactionType.expense,
                    Transaction.category == budget.category,
                    Transaction.date >= since,
                )
            ).scalar_one()
            or 0
        )
        if total != budget.spent_cents:
            logger.info(
                f"budget_recalculated: budget_id={budget.id} "
                f"old_cents={budget.spent_cents} new_cents={total}"
            )
        budget.spent_cents = total
        budget.updated_at = datetime.utcnow()
        self.session.commit()
        self.session.refresh(budget)
        return budget


class MetricsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _sum(self, txn_type: TransactionType, *conditions) -> int:
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.user_id == self.user_id,
            Transaction.type == txn_type,
            *conditions,
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def category_breakdown(self) -> list[dict[str, object]]:
        total_expr = func.sum(Transaction.amount_cents)
        rows = self.session.execute(
            select(Transaction.category, total_expr.label("total"))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
            )
            .group_by(Transaction.category)
            .order_by(total_expr.desc(), Transaction.category)
        ).all()
        grand_total = sum(int(row.total) for row in rows)
        return [
            {
                "category": row.category,
                "amount": cents_to_amount(int(row.total)),
                "percentage": round(int(row.total) * 100 / grand_total, 2)
                if grand_total
                else 0.0,
            }
            for row in rows
        ]

    def budget_health(self) -> list[dict[str, object]]:
        health: list[dict[str, object]] = []
        for budget in BudgetService(self.session, self.user_id).list():
            percentage = (
                budget.spent_cents * 100 / budget.limit_cents
                if budget.limit_cents > 0
                else 0.0
            )
            health.append(
                {
                    "id": budget.id,
                    "category": budget.category,
                    "limit": cents_to_amount(budget.limit_cents),
                    "spent": cents_to_amount(budget.spent_cents),
                    "period": budget.period.value,
                    "percentage": round(percentage, 2),
                    "status": budget_status(percentage),
                }
            )
        return health

    def summary(self, today: Optional[date] = None) -> dict[str, object]:
        today = today or date.today()
        month = Transaction.date.between(_month_start(today), _month_end(today))

        income = self._sum(TransactionType.income)
        expenses = self._sum(TransactionType.expense)
        monthly_income = self._sum(TransactionType.income, month)
        monthly_expenses = self._sum(TransactionType.expense, month)
        savings_rate = (
            (monthly_income - monthly_expenses) * 100 / monthly_income
            if monthly_income > 0
            else 0.0
        )
        budgets = self.budget_health()
        return {
            "totalBalance": cents_to_amount(income - expenses),
            "totalIncome": cents_to_amount(income),
            "totalExpenses": cents_to_amount(expenses),
            "monthlyIncome": cents_to_amount(monthly_income),
            "monthlyExpenses": cents_to_amount(monthly_expenses),
            "savingsRate": round(savings_rate, 2),
            "categoryBreakdown": self.category_breakdown(),
            "budgets": budgets,
            "overBudgetCount": sum(1 for b in budgets if b["status"] == "over"),
            "warningBudgetCount": sum(1 for b in budgets if b["status"] == "warning"),
        }
