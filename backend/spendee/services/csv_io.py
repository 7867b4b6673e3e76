"""CSV export and import of transactions.

The file format is a header row ``date,description,amount,category,type,notes``
followed by one row per transaction. ``category`` holds the category name and
is resolved back to a category id on import by ``(name, type)``.
"""

import csv
import io
from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from pydantic import ValidationError

from ..schemas import CsvRowError, TransactionForm, TransactionType

CSV_COLUMNS = ["date", "description", "amount", "category", "type", "notes"]
REQUIRED_COLUMNS = ["date", "description", "amount", "category", "type"]
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d.%m.%Y")


def export_transactions_csv(rows: Iterable[dict[str, Any]], categories: dict[UUID, dict[str, Any]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for row in rows:
        category = categories.get(row["category_id"])
        writer.writerow(
            [
                row["transaction_date"].isoformat(),
                row["description"],
                str(row["amount"]),
                category["name"] if category else "",
                row["type"],
                row.get("notes") or "",
            ]
        )
    return output.getvalue()


def _parse_date(value: str) -> date:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return datetime.fromisoformat(value).date()


def _parse_amount(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation as exc:
        raise ValueError("Amount must be a number") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValueError("Amount must be greater than 0")
    return amount


def parse_transactions_csv(
    content: str,
    categories: Iterable[dict[str, Any]],
    max_rows: int = 5000,
) -> tuple[list[TransactionForm], list[CsvRowError]]:
    """Validate every row and return the parsed forms together with per-row errors.

    Row numbers count data rows from 1. Row 0 is used for file-level problems
    such as a missing header column.
    """
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    try:
        fieldnames = reader.fieldnames
    except csv.Error as exc:
        return [], [CsvRowError(row=0, field="file", message=f"Unreadable CSV header: {exc}")]
    if not fieldnames:
        return [], [CsvRowError(row=0, field="file", message="CSV is empty")]
    headers = {name.strip().lower() for name in fieldnames if name}
    missing = [col for col in REQUIRED_COLUMNS if col not in headers]
    if missing:
        return [], [CsvRowError(row=0, field=col, message="Missing required column") for col in missing]

    lookup = {(c["name"].strip().lower(), c["type"]): c["id"] for c in categories}
    forms: list[TransactionForm] = []
    errors: list[CsvRowError] = []
    index = 0
    while True:
        try:
            raw = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            errors.append(CsvRowError(row=index + 1, field="file", message=f"Unreadable CSV row: {exc}"))
            break
        index += 1
        # extra cells land under the None key; missing trailing cells are None
        values = {key.strip().lower(): (value or "").strip() for key, value in raw.items() if key is not None}
        if not any(values.values()):
            continue
        if index > max_rows:
            errors.append(CsvRowError(row=index, field="file", message=f"Too many rows (limit {max_rows})"))
            break
        row_errors: list[CsvRowError] = []

        tx_date: date | None = None
        try:
            tx_date = _parse_date(values.get("date", ""))
        except ValueError:
            row_errors.append(CsvRowError(row=index, field="date", message="Invalid date"))

        description = values.get("description", "")
        if not description:
            row_errors.append(CsvRowError(row=index, field="description", message="Description is required"))

        amount: Decimal | None = None
        try:
            amount = _parse_amount(values.get("amount", ""))
        except ValueError as exc:
            row_errors.append(CsvRowError(row=index, field="amount", message=str(exc)))

        tx_type = values.get("type", "").upper()
        if tx_type not in {t.value for t in TransactionType}:
            row_errors.append(CsvRowError(row=index, field="type", message="Type must be INCOME or EXPENSE"))
            category_id = None
        else:
            category_name = values.get("category", "")
            category_id = lookup.get((category_name.lower(), tx_type))
            if category_id is None:
                row_errors.append(
                    CsvRowError(row=index, field="category", message=f"Unknown {tx_type} category: {category_name}")
                )

        if row_errors:
            errors.extend(row_errors)
            continue
        try:
            forms.append(
                TransactionForm(
                    description=description,
                    amount=amount,
                    date=tx_date,
                    categoryId=category_id,
                    type=tx_type,
                    notes=values.get("notes") or None,
                )
            )
        except ValidationError as exc:
            for err in exc.errors():
                field = ".".join(str(part) for part in err.get("loc", [])) or "row"
                errors.append(CsvRowError(row=index, field=field, message=err.get("msg", "invalid value")))
    return forms, errors
