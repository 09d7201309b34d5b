"""Aggregations over a user's transactions and budgets.

Everything here is pure: callers fetch full per-user collections from the
repository and pass them in together with the date that counts as "today".
Nothing is cached; every call recomputes from its inputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from models import AlertType, Budget, BudgetPeriod, Category, Transaction
from periods import Period, add_months, month_period

ZERO = Decimal("0")
HUNDRED = Decimal("100")
WARNING_THRESHOLD = Decimal("90")
UNKNOWN_CATEGORY_LABEL = "this category"


@dataclass(frozen=True)
class FinancialSummary:
    balance: Decimal
    monthly_income: Decimal
    monthly_expenses: Decimal
    next_income_date: Optional[date]
    next_income_amount: Decimal
    budget_difference: Decimal


@dataclass(frozen=True)
class BudgetWithSpent:
    id: int
    user_id: int
    category_id: int
    amount: Decimal
    period: BudgetPeriod
    category: Optional[Category]
    spent: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class AlertDraft:
    title: str
    message: str
    type: AlertType
    percentage: Decimal


def _amount(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _sum(transactions: Iterable[Transaction]) -> Decimal:
    return sum((_amount(t.amount) for t in transactions), ZERO)


def in_period(transactions: Iterable[Transaction], period: Period) -> list[Transaction]:
    return [t for t in transactions if period.contains(t.date)]


def budget_percentage(spent: Decimal, limit: Decimal) -> Decimal:
    limit = _amount(limit)
    if limit <= 0:
        return ZERO
    return _amount(spent) / limit * HUNDRED


def category_spent(
    transactions: Iterable[Transaction], category_id: int, period: Period
) -> Decimal:
    return _sum(
        t
        for t in transactions
        if t.category_id == category_id and not t.is_income and period.contains(t.date)
    )


def signed_balance(transactions: Iterable[Transaction]) -> Decimal:
    total = ZERO
    for t in transactions:
        total += _amount(t.amount) if t.is_income else -_amount(t.amount)
    return total


def forecast_next_income(
    transactions: Iterable[Transaction],
) -> tuple[Optional[date], Decimal]:
    # Income is assumed monthly: the latest payment repeats one month later.
    incomes = sorted(
        (t for t in transactions if t.is_income), key=lambda t: t.date, reverse=True
    )
    if not incomes:
        return None, ZERO
    latest = incomes[0]
    return add_months(latest.date, 1), _amount(latest.amount)


def financial_summary(
    transactions: Sequence[Transaction],
    budgets: Sequence[Budget],
    today: date,
) -> FinancialSummary:
    month = in_period(transactions, month_period(today))
    monthly_income = _sum(t for t in month if t.is_income)
    monthly_expenses = _sum(t for t in month if not t.is_income)
    next_date, next_amount = forecast_next_income(transactions)

    total_budgeted = sum((_amount(b.amount) for b in budgets), ZERO)
    if total_budgeted > 0:
        budget_difference = (monthly_expenses / total_budgeted - 1) * HUNDRED
    else:
        budget_difference = ZERO

    return FinancialSummary(
        balance=signed_balance(transactions),
        monthly_income=monthly_income,
        monthly_expenses=monthly_expenses,
        next_income_date=next_date,
        next_income_amount=next_amount,
        budget_difference=budget_difference,
    )


def budgets_with_spent(
    budgets: Sequence[Budget],
    transactions: Sequence[Transaction],
    categories: Sequence[Category],
    today: date,
) -> list[BudgetWithSpent]:
    period = month_period(today)
    categories_by_id = {c.id: c for c in categories}
    result: list[BudgetWithSpent] = []
    for budget in budgets:
        spent = category_spent(transactions, budget.category_id, period)
        result.append(
            BudgetWithSpent(
                id=budget.id,
                user_id=budget.user_id,
                category_id=budget.category_id,
                amount=_amount(budget.amount),
                period=budget.period,
                category=categories_by_id.get(budget.category_id),
                spent=spent,
                percentage=budget_percentage(spent, budget.amount),
            )
        )
    return result


def find_budget(budgets: Iterable[Budget], category_id: int) -> Optional[Budget]:
    for budget in budgets:
        if budget.category_id == category_id:
            return budget
    return None


def classify_percentage(percentage: Decimal) -> Optional[AlertType]:
    if percentage > HUNDRED:
        return AlertType.error
    if percentage > WARNING_THRESHOLD:
        return AlertType.warning
    return None


def _round(value: Decimal, places: str) -> Decimal:
    return value.quantize(Decimal(places), rounding=ROUND_HALF_UP)


def evaluate_budget_alert(
    budget: Budget,
    transactions: Sequence[Transaction],
    category: Optional[Category],
    today: date,
) -> Optional[AlertDraft]:
    """Decide whether the month's spend in ``budget``'s category warrants an alert.

    ``transactions`` must already contain the transaction that triggered the
    evaluation; its amount is not added a second time.
    """
    limit = _amount(budget.amount)
    spent = category_spent(transactions, budget.category_id, month_period(today))
    percentage = budget_percentage(spent, limit)
    severity = classify_percentage(percentage)
    if severity is None:
        return None

    name = category.name if category else UNKNOWN_CATEGORY_LABEL
    if severity == AlertType.error:
        overage = _round(spent - limit, "0.01")
        over_pct = _round(percentage - HUNDRED, "1")
        return AlertDraft(
            title=f"Budget Alert: {name}",
            message=(
                f"You've exceeded your {name} budget by ${overage} ({over_pct}%)"
            ),
            type=AlertType.error,
            percentage=percentage,
        )
    return AlertDraft(
        title=f"Budget Warning: {name}",
        message=(
            f"You've reached {_round(percentage, '1')}% of your {name} budget "
            "for this month"
        ),
        type=AlertType.warning,
        percentage=percentage,
    )
