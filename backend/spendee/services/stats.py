import re
from collections.abc import Iterable
from datetime import date, datetime, timezone
from decimal import Decimal

MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")
ZERO = Decimal("0")


def current_month() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m")


def month_of(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def parse_month(month: str) -> tuple[int, int]:
    value = (month or "").strip()
    if not MONTH_PATTERN.match(value):
        raise ValueError("Invalid month format (YYYY-MM)")
    year, mon = (int(part) for part in value.split("-"))
    if not 1 <= mon <= 12:
        raise ValueError("Invalid month format (YYYY-MM)")
    return year, mon


def month_bounds(month: str) -> tuple[date, date]:
    """Return ``[first day, first day of next month)`` for a ``YYYY-MM`` string."""
    year, mon = parse_month(month)
    start = date(year, mon, 1)
    end = date(year + 1, 1, 1) if mon == 12 else date(year, mon + 1, 1)
    return start, end


def calculate_spent(amounts: Iterable[Decimal]) -> Decimal:
    return sum((abs(Decimal(a)) for a in amounts), ZERO)


def calculate_progress(amount: Decimal, spent: Decimal) -> float:
    if amount is None or amount <= 0:
        return 0.0
    return float(spent / amount * 100)


def budget_stats(amount: Decimal, spent: Decimal) -> tuple[Decimal, float]:
    """Remaining amount and percentage used for one budget-month."""
    return amount - spent, calculate_progress(amount, spent)


def budget_status(progress: float) -> str:
    if progress > 100:
        return "danger"
    if progress == 100:
        return "completed"
    if 95 < progress < 100:
        return "warning"
    return "good"


def calculate_average(values: Iterable[Decimal]) -> Decimal:
    items = [Decimal(v) for v in values]
    if not items:
        return ZERO
    return sum(items, ZERO) / len(items)
