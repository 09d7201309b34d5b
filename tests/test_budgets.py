from datetime import date
from decimal import Decimal

import pytest

from models import BudgetPeriod, CategoryType
from schemas import (
    BudgetIn,
    BudgetUpdate,
    BudgetWithSpentOut,
    CategoryIn,
    TransactionIn,
    TransactionUpdate,
)
from services import (
    BudgetService,
    CategoryService,
    NotFoundError,
    SummaryService,
    TransactionService,
)

TODAY = date(2025, 2, 15)


def test_budget_for_deleted_category_keeps_numbers(repo, user, food) -> None:
    budgets = BudgetService(repo, user.id)
    budgets.create(BudgetIn(category_id=food.id, amount=Decimal("200")))
    TransactionService(repo, user.id).create(
        TransactionIn(
            amount=Decimal("50"),
            date=date(2025, 2, 3),
            description="Market",
            category_id=food.id,
        ),
        today=TODAY,
    )
    CategoryService(repo).delete(food.id)

    [row] = budgets.list_with_spent(TODAY)
    out = BudgetWithSpentOut.model_validate(row).model_dump(mode="json", by_alias=True)

    assert out["category"] is None
    assert out["categoryId"] == food.id
    assert out["amount"] == 200.0
    assert out["spent"] == 50.0
    assert out["percentage"] == 25.0


def test_budget_requires_existing_category(repo, user) -> None:
    with pytest.raises(NotFoundError):
        BudgetService(repo, user.id).create(BudgetIn(category_id=999, amount=Decimal("1")))


def test_budget_update_and_delete_are_owner_scoped(repo, user, food) -> None:
    other = repo.create_user(
        username="bob", password_hash="x", email="bob@example.com", full_name="Bob"
    )
    budget = BudgetService(repo, user.id).create(
        BudgetIn(category_id=food.id, amount=Decimal("100"))
    )

    with pytest.raises(NotFoundError):
        BudgetService(repo, other.id).update(budget.id, BudgetUpdate(amount=Decimal("5")))
    with pytest.raises(NotFoundError):
        BudgetService(repo, other.id).delete(budget.id)

    updated = BudgetService(repo, user.id).update(
        budget.id, BudgetUpdate(amount=Decimal("150"), period=BudgetPeriod.weekly)
    )
    assert updated.amount == Decimal("150")
    assert updated.period == BudgetPeriod.weekly

    BudgetService(repo, user.id).delete(budget.id)
    assert repo.get_budget(budget.id) is None


def test_transaction_crud_is_owner_scoped(repo, user, food) -> None:
    other = repo.create_user(
        username="bob", password_hash="x", email="bob@example.com", full_name="Bob"
    )
    txn = TransactionService(repo, user.id).create(
        TransactionIn(
            amount=Decimal("12.50"),
            date=date(2025, 2, 1),
            description="  Lunch  ",
            category_id=food.id,
        ),
        today=TODAY,
    )
    assert txn.description == "Lunch"

    with pytest.raises(NotFoundError):
        TransactionService(repo, other.id).get(txn.id)
    assert TransactionService(repo, other.id).list() == []

    updated = TransactionService(repo, user.id).update(
        txn.id, TransactionUpdate(amount=Decimal("13"), date=date(2025, 2, 2))
    )
    assert updated.amount == Decimal("13")
    assert updated.date == date(2025, 2, 2)

    [listed] = TransactionService(repo, user.id).list()
    assert listed.category.name == "Food"

    TransactionService(repo, user.id).delete(txn.id)
    assert TransactionService(repo, user.id).list() == []


def test_transaction_requires_existing_category(repo, user) -> None:
    with pytest.raises(NotFoundError):
        TransactionService(repo, user.id).create(
            TransactionIn(
                amount=Decimal("1"),
                date=date(2025, 2, 1),
                description="Ghost",
                category_id=42,
            )
        )


def test_summary_reports_next_income(repo, user) -> None:
    income = repo.create_category(
        name="Income", type=CategoryType.income, color="#8BC34A"
    )
    service = TransactionService(repo, user.id)
    for day in (date(2025, 1, 1), date(2025, 2, 1)):
        service.create(
            TransactionIn(
                amount=Decimal("1000"),
                date=day,
                description="Salary",
                category_id=income.id,
                is_income=True,
            ),
            today=TODAY,
        )

    summary = SummaryService(repo, user.id).summary(TODAY)

    assert summary.next_income_date == date(2025, 3, 1)
    assert summary.next_income_amount == Decimal("1000")
    assert summary.monthly_income == Decimal("1000")
    assert summary.balance == Decimal("2000")


def test_default_categories_are_seeded_once(repo) -> None:
    categories = CategoryService(repo)

    first = categories.list_all()
    second = categories.list_all()

    assert len(first) == 8
    assert [c.id for c in first] == [c.id for c in second]


def test_duplicate_category_rejected(repo, food) -> None:
    with pytest.raises(ValueError):
        CategoryService(repo).create(
            CategoryIn(name="food", type=CategoryType.variable, color="#000000")
        )
