import csv
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest

from csv_utils import parse_amount, parse_csv, sanitize_csv_value
from services import TransactionService


def test_parse_csv_collects_row_errors() -> None:
    content = (
        "amount,date,description,categoryId,isIncome\n"
        "12.50,2025-02-01,Lunch,1,false\n"
        "abc,2025-02-02,Broken,1,false\n"
        ",,,,\n"
        "1000,01.02.2025,Salary,8,true\n"
    )

    rows, errors = parse_csv(content)

    assert [idx for idx, _ in rows] == [1, 4]
    assert [r.amount for _, r in rows] == [Decimal("12.50"), Decimal("1000.00")]
    assert rows[1][1].date == date(2025, 2, 1)
    assert rows[1][1].is_income is True
    assert errors == ["Row 2: Invalid amount"]


def test_parse_csv_requires_columns() -> None:
    with pytest.raises(ValueError, match="Missing required columns: categoryId"):
        parse_csv("amount,date,description,isIncome\n1,2025-01-01,x,false\n")


def test_parse_csv_rejects_empty_file() -> None:
    with pytest.raises(ValueError, match="empty or invalid"):
        parse_csv("")


def test_negative_amount_rejected() -> None:
    with pytest.raises(ValueError, match="Amount must be positive"):
        parse_amount("-3")


def test_sub_cent_amount_rejected() -> None:
    assert parse_amount("$4.5") == Decimal("4.50")
    assert parse_amount("4.500") == Decimal("4.50")
    with pytest.raises(ValueError, match="at most 2 decimal places"):
        parse_amount("4.005")


def test_formula_values_are_neutralised() -> None:
    assert sanitize_csv_value("=SUM(A1)") == "\t=SUM(A1)"
    assert sanitize_csv_value("Groceries") == "Groceries"


def test_import_skips_unknown_categories_and_exports(repo, user, food) -> None:
    service = TransactionService(repo, user.id)
    content = (
        "amount,date,description,categoryId,isIncome\n"
        f"20,2025-02-01,Market,{food.id},false\n"
        "5,2025-02-02,Nowhere,999,false\n"
    )

    created, errors = service.import_csv(content)

    assert created == 1
    assert errors == ["Row 2: Category 999 not found"]

    exported = list(csv.reader(StringIO(service.export_csv())))
    assert exported[0] == [
        "date",
        "amount",
        "description",
        "category",
        "categoryId",
        "isIncome",
    ]
    assert exported[1] == ["2025-02-01", "20.00", "Market", "Food", str(food.id), "false"]


def test_import_errors_name_the_source_row(repo, user, food) -> None:
    content = (
        "amount,date,description,categoryId,isIncome\n"
        f"abc,2025-02-01,Broken,{food.id},false\n"
        "5,2025-02-01,Ghost,999,false\n"
        f"1.234,2025-02-03,Precise,{food.id},false\n"
        f"7,2025-02-04,Market,{food.id},false\n"
    )

    created, errors = TransactionService(repo, user.id).import_csv(content)

    assert created == 1
    assert errors == [
        "Row 1: Invalid amount",
        "Row 3: Amount must have at most 2 decimal places",
        "Row 2: Category 999 not found",
    ]
