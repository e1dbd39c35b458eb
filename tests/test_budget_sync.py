from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import ConflictError, NotFoundError
from models import Budget, BudgetPeriod, TransactionType
from schemas import BudgetIn, RegisterIn, TransactionIn
from services import BudgetService, TransactionService, UserService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_user(session, email: str = "a@x.com"):
    return UserService(session).register(
        RegisterIn(name="A", email=email, password="pw1"), password_rounds=4
    )


def expense(amount_cents: int, category: str = "Food & Dining", **kwargs):
    return TransactionIn(
        amount_cents=amount_cents,
        category=category,
        description=kwargs.get("description", ""),
        type=kwargs.get("type", TransactionType.expense),
        date=kwargs.get("date", date(2024, 1, 1)),
    )


def budget_spent(session, budget_id: int) -> int:
    session.expire_all()
    return session.get(Budget, budget_id).spent_cents


def test_expense_without_budget_has_no_side_effect() -> None:
    session = make_session()
    user = make_user(session)

    txn = TransactionService(session, user.id).create(expense(5_000))

    assert txn.id is not None
    assert txn.user_id == user.id
    assert BudgetService(session, user.id).list() == []


def test_sync_rule_scenario() -> None:
    session = make_session()
    user = make_user(session)
    txns = TransactionService(session, user.id)
    budgets = BudgetService(session, user.id)

    txns.create(expense(5_000))
    budget = budgets.create(
        BudgetIn(
            category="Food & Dining",
            limit_cents=20_000,
            spent_cents=0,
            period=BudgetPeriod.monthly,
        )
    )
    # not back-filled with the earlier expense
    assert budget_spent(session, budget.id) == 0

    second = txns.create(expense(3_000))
    assert budget_spent(session, budget.id) == 3_000

    txns.delete(second.id)
    assert budget_spent(session, budget.id) == 0


def test_income_and_other_categories_leave_budget_alone() -> None:
    session = make_session()
    user = make_user(session)
    budget = BudgetService(session, user.id).create(
        BudgetIn(category="Shopping", limit_cents=10_000, period=BudgetPeriod.monthly)
    )
    txns = TransactionService(session, user.id)

    txns.create(expense(1_000, category="Shopping", type=TransactionType.income))
    txns.create(expense(2_000, category="Travel"))

    assert budget_spent(session, budget.id) == 0


def test_delete_decrements_without_floor() -> None:
    session = make_session()
    user = make_user(session)
    budgets = BudgetService(session, user.id)
    budget = budgets.create(
        BudgetIn(category="Travel", limit_cents=50_000, period=BudgetPeriod.yearly)
    )
    txn = TransactionService(session, user.id).create(expense(12_345, category="Travel"))
    assert budget_spent(session, budget.id) == 12_345

    budgets.set_spent(budget.id, 1_000)
    TransactionService(session, user.id).delete(txn.id)

    assert budget_spent(session, budget.id) == 1_000 - 12_345


def test_sync_rule_only_touches_own_budget() -> None:
    session = make_session()
    alice = make_user(session, "alice@x.com")
    bob = make_user(session, "bob@x.com")
    bob_budget = BudgetService(session, bob.id).create(
        BudgetIn(category="Food & Dining", limit_cents=10_000, period=BudgetPeriod.monthly)
    )

    TransactionService(session, alice.id).create(expense(4_000))

    assert budget_spent(session, bob_budget.id) == 0


def test_cannot_delete_other_users_transaction() -> None:
    session = make_session()
    alice = make_user(session, "alice@x.com")
    bob = make_user(session, "bob@x.com")
    budget = BudgetService(session, alice.id).create(
        BudgetIn(category="Food & Dining", limit_cents=10_000, period=BudgetPeriod.monthly)
    )
    txn = TransactionService(session, alice.id).create(expense(4_000))

    with pytest.raises(NotFoundError):
        TransactionService(session, bob.id).delete(txn.id)
    with pytest.raises(NotFoundError):
        TransactionService(session, alice.id).delete(txn.id + 100)

    assert TransactionService(session, alice.id).get(txn.id).amount_cents == 4_000
    assert budget_spent(session, budget.id) == 4_000


def test_transactions_listed_newest_date_first() -> None:
    session = make_session()
    user = make_user(session)
    txns = TransactionService(session, user.id)
    txns.create(expense(100, date=date(2024, 1, 5)))
    txns.create(expense(200, date=date(2024, 3, 1)))
    txns.create(expense(300, date=date(2023, 12, 31)))

    assert [t.amount_cents for t in txns.list()] == [200, 100, 300]


def test_duplicate_budget_category_is_rejected() -> None:
    session = make_session()
    user = make_user(session)
    budgets = BudgetService(session, user.id)
    budgets.create(
        BudgetIn(category="Shopping", limit_cents=10_000, period=BudgetPeriod.monthly)
    )

    with pytest.raises(ConflictError):
        budgets.create(
            BudgetIn(category="Shopping", limit_cents=5_000, period=BudgetPeriod.yearly)
        )

    other = make_user(session, "other@x.com")
    BudgetService(session, other.id).create(
        BudgetIn(category="Shopping", limit_cents=5_000, period=BudgetPeriod.yearly)
    )


def test_set_spent_replaces_value() -> None:
    session = make_session()
    user = make_user(session)
    budgets = BudgetService(session, user.id)
    budget = budgets.create(
        BudgetIn(
            category="Shopping",
            limit_cents=10_000,
            spent_cents=7_500,
            period=BudgetPeriod.monthly,
        )
    )

    updated = budgets.set_spent(budget.id, 2_500)

    assert updated.spent_cents == 2_500
    with pytest.raises(NotFoundError):
        BudgetService(session, make_user(session, "b@x.com").id).set_spent(
            budget.id, 0
        )


def test_recalculate_uses_live_sum_since_creation() -> None:
    session = make_session()
    user = make_user(session)
    budgets = BudgetService(session, user.id)
    budget = budgets.create(
        BudgetIn(
            category="Healthcare",
            limit_cents=10_000,
            spent_cents=99_999,
            period=BudgetPeriod.monthly,
        )
    )
    since = budget.created_at.date()
    txns = TransactionService(session, user.id)
    txns.create(expense(1_000, category="Healthcare", date=since - timedelta(days=3)))
    txns.create(expense(2_000, category="Healthcare", date=since))
    txns.create(expense(4_000, category="Healthcare", date=since + timedelta(days=1)))
    txns.create(
        expense(
            8_000,
            category="Healthcare",
            date=since,
            type=TransactionType.income,
        )
    )

    refreshed = budgets.recalculate(budget.id)

    assert refreshed.spent_cents == 6_000


def _failing_commit():
    raise OperationalError("COMMIT", {}, Exception("database is locked"))


def test_failed_commit_keeps_transaction_and_budget_together(monkeypatch) -> None:
    session = make_session()
    user = make_user(session)
    budget = BudgetService(session, user.id).create(
        BudgetIn(category="Food & Dining", limit_cents=20_000, period=BudgetPeriod.monthly)
    )

    with monkeypatch.context() as patch:
        patch.setattr(session, "commit", _failing_commit)
        with pytest.raises(OperationalError):
            TransactionService(session, user.id).create(expense(2_500))
    session.rollback()

    assert TransactionService(session, user.id).list() == []
    assert budget_spent(session, budget.id) == 0


def test_failed_commit_on_delete_restores_transaction_and_budget(monkeypatch) -> None:
    session = make_session()
    user = make_user(session)
    budget = BudgetService(session, user.id).create(
        BudgetIn(category="Food & Dining", limit_cents=20_000, period=BudgetPeriod.monthly)
    )
    txn = TransactionService(session, user.id).create(expense(2_500))

    with monkeypatch.context() as patch:
        patch.setattr(session, "commit", _failing_commit)
        with pytest.raises(OperationalError):
            TransactionService(session, user.id).delete(txn.id)
    session.rollback()

    assert [t.id for t in TransactionService(session, user.id).list()] == [txn.id]
    assert budget_spent(session, budget.id) == 2_500
