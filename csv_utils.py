import csv
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Mapping, Sequence

from pydantic import ValidationError

from models import Category, Transaction
from schemas import CSVRow

REQUIRED_COLUMNS = ("amount", "date", "description", "categoryId", "isIncome")
TRUE_VALUES = {"1", "true", "yes", "y", "on"}


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_date(value: str) -> date:
    value = value.strip()
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return datetime.strptime(value, "%d.%m.%Y").date()


def parse_amount(value: str) -> Decimal:
    clean = value.strip().replace("$", "").replace(" ", "")
    if not re.fullmatch(r"-?\d*\.?\d+", clean):
        raise ValueError("Invalid amount")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if amount < 0:
        raise ValueError("Amount must be positive")
    cents = amount.quantize(Decimal("0.01"))
    if cents != amount:
        raise ValueError("Amount must have at most 2 decimal places")
    return cents


def parse_csv(content: str) -> tuple[list[tuple[int, CSVRow]], list[str]]:
    """Parse uploaded CSV text into ``(row number, row)`` pairs and per-row errors.

    Row numbers count data rows from 1, blank rows included.
    """
    reader = csv.DictReader(StringIO(content), skipinitialspace=True)
    columns = [c.strip() for c in (reader.fieldnames or [])]
    if not columns:
        raise ValueError("CSV file is empty or invalid")
    missing = [c for c in REQUIRED_COLUMNS if c not in columns]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    rows: list[tuple[int, CSVRow]] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        raw = {(k or "").strip(): (v or "").strip() for k, v in raw.items()}
        if not any(raw.values()):
            continue
        try:
            row = CSVRow(
                amount=parse_amount(raw["amount"]),
                date=parse_date(raw["date"]),
                description=raw["description"],
                category_id=int(raw["categoryId"]),
                is_income=raw["isIncome"].lower() in TRUE_VALUES,
            )
        except (ValueError, ValidationError) as exc:
            errors.append(f"Row {idx}: {exc}")
            continue
        rows.append((idx, row))
    if not rows and not errors:
        raise ValueError("CSV file is empty or invalid")
    return rows, errors


def export_transactions(
    transactions: Sequence[Transaction], categories: Mapping[int, Category]
) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["date", "amount", "description", "category", "categoryId", "isIncome"])
    for txn in transactions:
        category = categories.get(txn.category_id)
        writer.writerow(
            [
                txn.date.isoformat(),
                f"{txn.amount:.2f}",
                sanitize_csv_value(txn.description or ""),
                sanitize_csv_value(category.name if category else ""),
                txn.category_id,
                "true" if txn.is_income else "false",
            ]
        )
    return output.getvalue()
