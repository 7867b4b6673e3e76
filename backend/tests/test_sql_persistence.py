from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import text

from spendee import actions
from spendee.persistence import SqlPersistence
from spendee.services.stats import current_month


@pytest.fixture()
def sql(tmp_path) -> SqlPersistence:
    return SqlPersistence(f"sqlite:///{tmp_path / 'spendee.db'}")


@pytest.fixture()
def user_id(sql: SqlPersistence):
    return sql.register_user("sql@example.com", "Secret123!", "Sql User")["id"]


def _category(sql: SqlPersistence, user_id, name: str, type_: str = "EXPENSE"):
    result = actions.create_category(sql, user_id, {"name": name, "type": type_})
    assert result.success, result.error
    return result.data.id


def test_users_round_trip(sql: SqlPersistence, user_id) -> None:
    assert sql.authenticate_user("SQL@example.com", "Secret123!")["id"] == user_id
    assert sql.authenticate_user("sql@example.com", "wrong-password") is None
    assert sql.get_user_by_id(user_id)["email"] == "sql@example.com"


def test_transactions_and_budget_stats(sql: SqlPersistence, user_id) -> None:
    food = _category(sql, user_id, "Food")
    today = datetime.now(timezone.utc).date().isoformat()
    for amount in ("12.50", "7.50"):
        result = actions.create_transaction(
            sql,
            user_id,
            {"description": "Lunch", "amount": amount, "date": today, "categoryId": str(food), "type": "EXPENSE"},
        )
        assert result.success, result.error
        assert result.status_code == 201

    budget = actions.create_budget(sql, user_id, {"categoryId": str(food), "amount": "40"})
    assert budget.success, budget.error
    assert budget.data.month == current_month()

    budgets = actions.get_budgets(sql, user_id).data
    assert len(budgets) == 1
    assert budgets[0].spent == Decimal("20")
    assert budgets[0].remaining == Decimal("20")
    assert budgets[0].progress == 50.0

    listed = actions.get_transactions(sql, user_id, month=current_month()).data
    assert sorted(tx.amount for tx in listed) == [Decimal("7.5"), Decimal("12.5")]
    assert all(isinstance(tx.date, date) and tx.category.name == "Food" for tx in listed)


def test_category_soft_delete_cascades(sql: SqlPersistence, user_id) -> None:
    food = _category(sql, user_id, "Food")
    salary = _category(sql, user_id, "Salary", "INCOME")
    assert actions.create_budget(sql, user_id, {"categoryId": str(food), "amount": "10"}).success
    assert actions.create_transaction(
        sql,
        user_id,
        {"description": "Snack", "amount": "3", "date": "2026-01-02", "categoryId": str(food), "type": "EXPENSE"},
    ).success
    assert actions.create_savings(
        sql,
        user_id,
        {"accountName": "Pot", "categoryId": str(salary), "initialBalance": "5", "interestRate": "1"},
    ).success

    assert actions.delete_categories(sql, user_id, [food, salary]).success
    assert sql.list_categories(user_id) == []
    assert sql.list_budgets(user_id) == []
    assert sql.list_transactions(user_id) == []
    assert sql.list_savings(user_id) == []

    with sql.engine.connect() as conn:
        remaining = conn.execute(text("select count(*) from transactions where deleted_at is not null")).scalar_one()
    assert remaining == 1


def test_bulk_delete_rejects_foreign_ids(sql: SqlPersistence, user_id) -> None:
    other = sql.register_user("other@example.com", "Secret123!", None)["id"]
    mine = _category(sql, user_id, "Mine")
    theirs = _category(sql, other, "Theirs")

    result = actions.delete_categories(sql, user_id, [mine, theirs])
    assert not result.success
    assert result.status_code == 404
    assert result.error == "Some categories not found or access denied"
    assert [c["name"] for c in sql.list_categories(user_id)] == ["Mine"]
    assert [c["name"] for c in sql.list_categories(other)] == ["Theirs"]


def test_csv_import_is_atomic(sql: SqlPersistence, user_id) -> None:
    _category(sql, user_id, "Food")
    content = "date,description,amount,category,type\n2026-02-01,Bread,2,Food,EXPENSE\n2026-02-02,Milk,1.25,Food,EXPENSE\n"
    result = actions.import_transactions(sql, user_id, content)
    assert result.success
    assert result.data.imported == 2

    exported = actions.export_transactions(sql, user_id).data
    assert exported.splitlines()[1:] == [
        "2026-02-02,Milk,1.25,Food,EXPENSE,",
        "2026-02-01,Bread,2,Food,EXPENSE,",
    ]
