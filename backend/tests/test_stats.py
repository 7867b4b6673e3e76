from datetime import date
from decimal import Decimal

import pytest

from spendee.services.stats import (
    budget_stats,
    budget_status,
    calculate_average,
    calculate_progress,
    calculate_spent,
    month_bounds,
    month_of,
    parse_month,
)


def test_spent_sums_absolute_amounts() -> None:
    assert calculate_spent([Decimal("10.50"), Decimal("-4.50"), Decimal("5")]) == Decimal("20.00")
    assert calculate_spent([]) == Decimal("0")


@pytest.mark.parametrize(
    ("amount", "spent", "remaining", "progress"),
    [
        (Decimal("100"), Decimal("40"), Decimal("60"), 40.0),
        (Decimal("100"), Decimal("150"), Decimal("-50"), 150.0),
        (Decimal("0"), Decimal("10"), Decimal("-10"), 0.0),
    ],
)
def test_budget_stats(amount: Decimal, spent: Decimal, remaining: Decimal, progress: float) -> None:
    assert budget_stats(amount, spent) == (remaining, progress)


def test_progress_for_non_positive_budget_is_zero() -> None:
    assert calculate_progress(Decimal("-5"), Decimal("3")) == 0.0


@pytest.mark.parametrize(
    ("progress", "status"),
    [(0.0, "good"), (95.0, "good"), (96.5, "warning"), (100.0, "completed"), (100.01, "danger")],
)
def test_budget_status_thresholds(progress: float, status: str) -> None:
    assert budget_status(progress) == status


def test_month_bounds_wrap_year() -> None:
    assert month_bounds("2025-12") == (date(2025, 12, 1), date(2026, 1, 1))
    assert month_bounds("2026-02") == (date(2026, 2, 1), date(2026, 3, 1))
    assert month_of(date(2026, 2, 28)) == "2026-02"
    assert month_of(date(2026, 3, 1)) != "2026-02"
    assert month_of(date(2026, 7, 4)) == "2026-07"


@pytest.mark.parametrize("value", ["2026-13", "2026-1", "26-01", "", "2026/01"])
def test_parse_month_rejects_bad_values(value: str) -> None:
    with pytest.raises(ValueError, match="YYYY-MM"):
        parse_month(value)


def test_average_growth() -> None:
    assert calculate_average([]) == Decimal("0")
    assert calculate_average([Decimal("5"), Decimal("7")]) == Decimal("6")
