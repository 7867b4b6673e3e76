from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from fastapi import HTTPException
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .auth_utils import hash_password, verify_password
from .config import settings
from .schemas import BudgetForm, CategoryForm, SavingsCreateForm, SavingsUpdateForm, TransactionForm
from .store import store

UUID_KEYS = {"id", "user_id", "category_id"}
DECIMAL_KEYS = {"amount", "balance", "initial_balance", "interest_rate", "growth"}
DATETIME_KEYS = {"created_at", "updated_at", "deleted_at"}


def _to_float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _not_found(label: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{label} not found or access denied")


def _some_not_found(plural: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Some {plural} not found or access denied")


def _unique(ids: list[UUID]) -> list[UUID]:
    return list(dict.fromkeys(ids))


def _tx_sort_key(row: dict[str, Any]) -> tuple[date, datetime]:
    return row["transaction_date"], row["created_at"]


class Persistence:
    def register_user(self, email: str, password: str, full_name: str | None) -> dict[str, Any]:
        raise NotImplementedError

    def authenticate_user(self, email: str, password: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def get_user_by_id(self, user_id: UUID) -> dict[str, Any] | None:
        raise NotImplementedError

    def create_category(self, user_id: UUID, form: CategoryForm) -> dict[str, Any]:
        raise NotImplementedError

    def get_category(self, user_id: UUID, category_id: UUID) -> dict[str, Any] | None:
        raise NotImplementedError

    def list_categories(self, user_id: UUID) -> list[dict[str, Any]]:
        raise NotImplementedError

    def update_category(self, user_id: UUID, category_id: UUID, form: CategoryForm) -> dict[str, Any]:
        raise NotImplementedError

    def soft_delete_categories(self, user_id: UUID, category_ids: list[UUID]) -> None:
        raise NotImplementedError

    def create_budget(self, user_id: UUID, form: BudgetForm, month: str) -> dict[str, Any]:
        raise NotImplementedError

    def get_budget(self, user_id: UUID, budget_id: UUID) -> dict[str, Any] | None:
        raise NotImplementedError

    def find_budget(self, user_id: UUID, category_id: UUID, month: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def list_budgets(self, user_id: UUID) -> list[dict[str, Any]]:
        raise NotImplementedError

    def update_budget(self, user_id: UUID, budget_id: UUID, form: BudgetForm) -> dict[str, Any]:
        raise NotImplementedError

    def delete_budgets(self, user_id: UUID, budget_ids: list[UUID]) -> None:
        raise NotImplementedError

    def create_transactions(self, user_id: UUID, forms: list[TransactionForm]) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get_transaction(self, user_id: UUID, transaction_id: UUID) -> dict[str, Any] | None:
        raise NotImplementedError

    def list_transactions(
        self,
        user_id: UUID,
        start: date | None = None,
        end: date | None = None,
        tx_type: str | None = None,
        category_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    def update_transaction(self, user_id: UUID, transaction_id: UUID, form: TransactionForm) -> dict[str, Any]:
        raise NotImplementedError

    def delete_transactions(self, user_id: UUID, transaction_ids: list[UUID]) -> None:
        raise NotImplementedError

    def create_savings(self, user_id: UUID, form: SavingsCreateForm) -> dict[str, Any]:
        raise NotImplementedError

    def get_savings(self, user_id: UUID, savings_id: UUID) -> dict[str, Any] | None:
        raise NotImplementedError

    def list_savings(self, user_id: UUID) -> list[dict[str, Any]]:
        raise NotImplementedError

    def update_savings(self, user_id: UUID, savings_id: UUID, form: SavingsUpdateForm) -> dict[str, Any]:
        raise NotImplementedError

    def delete_savings(self, user_id: UUID, savings_ids: list[UUID]) -> None:
        raise NotImplementedError

    def create_transaction(self, user_id: UUID, form: TransactionForm) -> dict[str, Any]:
        return self.create_transactions(user_id, [form])[0]


class InMemoryPersistence(Persistence):
    def register_user(self, email: str, password: str, full_name: str | None) -> dict[str, Any]:
        for row in store.users.values():
            if row["email"] == email.lower():
                raise HTTPException(status_code=409, detail="email already registered")
        user_id = store.make_id()
        user_row = {"id": user_id, "email": email.lower(), "full_name": full_name, "created_at": store.now()}
        store.users[user_id] = user_row
        store.user_credentials[user_id] = hash_password(password)
        return user_row

    def authenticate_user(self, email: str, password: str) -> dict[str, Any] | None:
        for user_id, row in store.users.items():
            if row["email"] == email.lower():
                stored_hash = store.user_credentials.get(user_id)
                if stored_hash and verify_password(password, stored_hash):
                    return row
                return None
        return None

    def get_user_by_id(self, user_id: UUID) -> dict[str, Any] | None:
        return store.users.get(user_id)

    def create_category(self, user_id: UUID, form: CategoryForm) -> dict[str, Any]:
        entity_id = store.make_id()
        row = {
            "id": entity_id,
            "user_id": user_id,
            "name": form.name,
            "description": form.description,
            "type": form.type.value,
            "icon": form.icon,
            "created_at": store.now(),
            "deleted_at": None,
        }
        store.categories[entity_id] = row
        return row

    def get_category(self, user_id: UUID, category_id: UUID) -> dict[str, Any] | None:
        return store.owned(store.categories, user_id, category_id)

    def list_categories(self, user_id: UUID) -> list[dict[str, Any]]:
        return sorted(store.live(store.categories, user_id), key=lambda c: c["name"].lower())

    def update_category(self, user_id: UUID, category_id: UUID, form: CategoryForm) -> dict[str, Any]:
        row = store.owned(store.categories, user_id, category_id)
        if row is None:
            raise _not_found("Category")
        row.update({"name": form.name, "description": form.description, "type": form.type.value, "icon": form.icon})
        return row

    def soft_delete_categories(self, user_id: UUID, category_ids: list[UUID]) -> None:
        ids = _unique(category_ids)
        rows = [store.owned(store.categories, user_id, cid) for cid in ids]
        if any(row is None for row in rows):
            raise _some_not_found("categories")
        now = store.now()
        targets = set(ids)
        for row in rows:
            row["deleted_at"] = now
        for table in (store.budgets, store.transactions, store.savings):
            for row in table.values():
                if row["user_id"] == user_id and row["category_id"] in targets and row.get("deleted_at") is None:
                    row["deleted_at"] = now

    def create_budget(self, user_id: UUID, form: BudgetForm, month: str) -> dict[str, Any]:
        entity_id = store.make_id()
        row = {
            "id": entity_id,
            "user_id": user_id,
            "category_id": form.categoryId,
            "name": form.name,
            "amount": form.amount,
            "description": form.description,
            "month": month,
            "created_at": store.now(),
            "deleted_at": None,
        }
        store.budgets[entity_id] = row
        return row

    def get_budget(self, user_id: UUID, budget_id: UUID) -> dict[str, Any] | None:
        return store.owned(store.budgets, user_id, budget_id)

    def find_budget(self, user_id: UUID, category_id: UUID, month: str) -> dict[str, Any] | None:
        for row in store.live(store.budgets, user_id):
            if row["category_id"] == category_id and row["month"] == month:
                return row
        return None

    def list_budgets(self, user_id: UUID) -> list[dict[str, Any]]:
        return sorted(store.live(store.budgets, user_id), key=lambda b: b["created_at"], reverse=True)

    def update_budget(self, user_id: UUID, budget_id: UUID, form: BudgetForm) -> dict[str, Any]:
        row = store.owned(store.budgets, user_id, budget_id)
        if row is None:
            raise _not_found("Budget")
        row.update(
            {
                "category_id": form.categoryId,
                "name": form.name,
                "amount": form.amount,
                "description": form.description,
            }
        )
        return row

    def delete_budgets(self, user_id: UUID, budget_ids: list[UUID]) -> None:
        ids = _unique(budget_ids)
        if any(store.owned(store.budgets, user_id, bid) is None for bid in ids):
            raise _some_not_found("budgets")
        for bid in ids:
            del store.budgets[bid]

    def create_transactions(self, user_id: UUID, forms: list[TransactionForm]) -> list[dict[str, Any]]:
        created: list[dict[str, Any]] = []
        for form in forms:
            entity_id = store.make_id()
            now = store.now()
            row = {
                "id": entity_id,
                "user_id": user_id,
                "category_id": form.categoryId,
                "description": form.description,
                "amount": form.amount,
                "transaction_date": form.date,
                "type": form.type.value,
                "notes": form.notes,
                "created_at": now,
                "updated_at": now,
                "deleted_at": None,
            }
            store.transactions[entity_id] = row
            created.append(row)
        return created

    def get_transaction(self, user_id: UUID, transaction_id: UUID) -> dict[str, Any] | None:
        return store.owned(store.transactions, user_id, transaction_id)

    def list_transactions(
        self,
        user_id: UUID,
        start: date | None = None,
        end: date | None = None,
        tx_type: str | None = None,
        category_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        rows = store.live(store.transactions, user_id)
        if start is not None:
            rows = [t for t in rows if t["transaction_date"] >= start]
        if end is not None:
            rows = [t for t in rows if t["transaction_date"] < end]
        if tx_type is not None:
            rows = [t for t in rows if t["type"] == tx_type]
        if category_id is not None:
            rows = [t for t in rows if t["category_id"] == category_id]
        return sorted(rows, key=_tx_sort_key, reverse=True)

    def update_transaction(self, user_id: UUID, transaction_id: UUID, form: TransactionForm) -> dict[str, Any]:
        row = store.owned(store.transactions, user_id, transaction_id)
        if row is None:
            raise _not_found("Transaction")
        row.update(
            {
                "category_id": form.categoryId,
                "description": form.description,
                "amount": form.amount,
                "transaction_date": form.date,
                "type": form.type.value,
                "notes": form.notes,
                "updated_at": store.now(),
            }
        )
        return row

    def delete_transactions(self, user_id: UUID, transaction_ids: list[UUID]) -> None:
        ids = _unique(transaction_ids)
        if any(store.owned(store.transactions, user_id, tid) is None for tid in ids):
            raise _some_not_found("transactions")
        for tid in ids:
            del store.transactions[tid]

    def create_savings(self, user_id: UUID, form: SavingsCreateForm) -> dict[str, Any]:
        entity_id = store.make_id()
        now = store.now()
        row = {
            "id": entity_id,
            "user_id": user_id,
            "category_id": form.categoryId,
            "account_name": form.accountName,
            "balance": form.balance if form.balance is not None else form.initialBalance,
            "initial_balance": form.initialBalance,
            "interest_rate": form.interestRate,
            "growth": form.growth,
            "account_type": form.accountType.value,
            "institution": form.institution,
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }
        store.savings[entity_id] = row
        return row

    def get_savings(self, user_id: UUID, savings_id: UUID) -> dict[str, Any] | None:
        return store.owned(store.savings, user_id, savings_id)

    def list_savings(self, user_id: UUID) -> list[dict[str, Any]]:
        return sorted(store.live(store.savings, user_id), key=lambda s: s["account_name"].lower())

    def update_savings(self, user_id: UUID, savings_id: UUID, form: SavingsUpdateForm) -> dict[str, Any]:
        row = store.owned(store.savings, user_id, savings_id)
        if row is None:
            raise _not_found("Savings")
        row.update(
            {
                "category_id": form.categoryId,
                "account_name": form.accountName,
                "balance": form.balance,
                "interest_rate": form.interestRate,
                "growth": form.growth,
                "account_type": form.accountType.value,
                "institution": form.institution,
                "updated_at": store.now(),
            }
        )
        return row

    def delete_savings(self, user_id: UUID, savings_ids: list[UUID]) -> None:
        ids = _unique(savings_ids)
        if any(store.owned(store.savings, user_id, sid) is None for sid in ids):
            raise _some_not_found("savings")
        for sid in ids:
            del store.savings[sid]


def _as_uuid(value: Any) -> UUID | None:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


def _as_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _as_date(value: Any) -> date | None:
    if value is None or (isinstance(value, date) and not isinstance(value, datetime)):
        return value
    if isinstance(value, datetime):
        return value.date()
    return date.fromisoformat(str(value)[:10])


def _as_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _normalize(row: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in row.items():
        if key in UUID_KEYS:
            out[key] = _as_uuid(value)
        elif key in DECIMAL_KEYS:
            out[key] = _as_decimal(value)
        elif key in DATETIME_KEYS:
            out[key] = _as_datetime(value)
        elif key == "transaction_date":
            out[key] = _as_date(value)
        else:
            out[key] = value
    return out


def _in_clause(prefix: str, ids: list[UUID]) -> tuple[str, dict[str, str]]:
    params = {f"{prefix}{idx}": str(value) for idx, value in enumerate(ids)}
    return ", ".join(f":{name}" for name in params), params


CATEGORY_COLUMNS = "id, user_id, name, description, type, icon, created_at, deleted_at"
BUDGET_COLUMNS = "id, user_id, category_id, name, amount, description, month, created_at, deleted_at"
TRANSACTION_COLUMNS = (
    "id, user_id, category_id, description, amount, transaction_date, type, notes, created_at, updated_at, deleted_at"
)
SAVINGS_COLUMNS = (
    "id, user_id, category_id, account_name, balance, initial_balance, interest_rate, growth, "
    "account_type, institution, created_at, updated_at, deleted_at"
)

SCHEMA_STATEMENTS = [
    """
    create table if not exists users (
      id varchar(36) primary key,
      email text not null unique,
      full_name text,
      password_hash text not null,
      created_at timestamptz not null
    )
    """,
    """
    create table if not exists categories (
      id varchar(36) primary key,
      user_id varchar(36) not null references users(id) on delete cascade,
      name text not null,
      description text,
      type varchar(16) not null default 'EXPENSE',
      icon text not null default 'Package',
      created_at timestamptz not null,
      deleted_at timestamptz
    )
    """,
    """
    create table if not exists budgets (
      id varchar(36) primary key,
      user_id varchar(36) not null references users(id) on delete cascade,
      category_id varchar(36) not null references categories(id),
      name text not null,
      amount numeric(14,2) not null,
      description text,
      month char(7) not null,
      created_at timestamptz not null,
      deleted_at timestamptz
    )
    """,
    """
    create table if not exists transactions (
      id varchar(36) primary key,
      user_id varchar(36) not null references users(id) on delete cascade,
      category_id varchar(36) not null references categories(id),
      description text not null,
      amount numeric(14,2) not null,
      transaction_date date not null,
      type varchar(16) not null,
      notes text,
      created_at timestamptz not null,
      updated_at timestamptz not null,
      deleted_at timestamptz
    )
    """,
    """
    create table if not exists savings (
      id varchar(36) primary key,
      user_id varchar(36) not null references users(id) on delete cascade,
      category_id varchar(36) not null references categories(id),
      account_name text not null,
      balance numeric(14,2) not null default 0,
      initial_balance numeric(14,2) not null default 0,
      interest_rate numeric(8,3) not null default 0,
      growth numeric(9,3) not null default 0,
      account_type varchar(16) not null default 'SAVINGS',
      institution text,
      created_at timestamptz not null,
      updated_at timestamptz not null,
      deleted_at timestamptz
    )
    """,
    "create index if not exists idx_categories_user on categories(user_id, name)",
    "create index if not exists idx_budgets_user on budgets(user_id, category_id, month)",
    "create index if not exists idx_transactions_user on transactions(user_id, transaction_date)",
    "create index if not exists idx_savings_user on savings(user_id, account_name)",
]


class SqlPersistence(Persistence):
    def __init__(self, database_url: str) -> None:
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            self.engine: Engine = create_engine(
                database_url, future=True, connect_args={"check_same_thread": False}, poolclass=StaticPool
            )
        else:
            self.engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._schema_ready = False

    def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        with self.engine.begin() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(text(statement))
        self._schema_ready = True

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        try:
            self._ensure_schema()
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            raise HTTPException(status_code=500, detail=f"database error: {exc.__class__.__name__}") from exc

    @staticmethod
    def _execute(conn: Connection, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        result = conn.execute(text(sql), params or {})
        if result.returns_rows:
            return [_normalize(dict(row._mapping)) for row in result.fetchall()]
        return []

    def _run(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        with self._begin() as conn:
            return self._execute(conn, sql, params)

    def _first(self, sql: str, params: dict[str, Any]) -> dict[str, Any] | None:
        rows = self._run(sql, params)
        return rows[0] if rows else None

    def _owned_count(self, conn: Connection, table: str, user_id: UUID, ids: list[UUID]) -> int:
        placeholders, params = _in_clause("id", ids)
        rows = self._execute(
            conn,
            f"select id from {table} where user_id = :user_id and deleted_at is null and id in ({placeholders})",
            {"user_id": str(user_id), **params},
        )
        return len(rows)

    def register_user(self, email: str, password: str, full_name: str | None) -> dict[str, Any]:
        email = email.lower()
        exists = self._run("select id from users where lower(email) = lower(:email) limit 1", {"email": email})
        if exists:
            raise HTTPException(status_code=409, detail="email already registered")
        user_id = uuid4()
        created_at = _utcnow()
        self._run(
            """
            insert into users (id, email, full_name, password_hash, created_at)
            values (:id, :email, :full_name, :password_hash, :created_at)
            """,
            {
                "id": str(user_id),
                "email": email,
                "full_name": full_name,
                "password_hash": hash_password(password),
                "created_at": created_at.isoformat(),
            },
        )
        return {"id": user_id, "email": email, "full_name": full_name, "created_at": created_at}

    def authenticate_user(self, email: str, password: str) -> dict[str, Any] | None:
        row = self._first(
            "select id, email, full_name, password_hash from users where lower(email) = lower(:email) limit 1",
            {"email": email},
        )
        if row is None or not verify_password(password, row["password_hash"]):
            return None
        return {"id": row["id"], "email": row["email"], "full_name": row["full_name"]}

    def get_user_by_id(self, user_id: UUID) -> dict[str, Any] | None:
        return self._first("select id, email, full_name from users where id = :id limit 1", {"id": str(user_id)})

    def create_category(self, user_id: UUID, form: CategoryForm) -> dict[str, Any]:
        row = {
            "id": str(uuid4()),
            "user_id": str(user_id),
            "name": form.name,
            "description": form.description,
            "type": form.type.value,
            "icon": form.icon,
            "created_at": _utcnow().isoformat(),
        }
        self._run(
            """
            insert into categories (id, user_id, name, description, type, icon, created_at)
            values (:id, :user_id, :name, :description, :type, :icon, :created_at)
            """,
            row,
        )
        return _normalize({**row, "deleted_at": None})

    def get_category(self, user_id: UUID, category_id: UUID) -> dict[str, Any] | None:
        return self._first(
            f"select {CATEGORY_COLUMNS} from categories where id = :id and user_id = :user_id and deleted_at is null",
            {"id": str(category_id), "user_id": str(user_id)},
        )

    def list_categories(self, user_id: UUID) -> list[dict[str, Any]]:
        return self._run(
            f"""
            select {CATEGORY_COLUMNS}
            from categories
            where user_id = :user_id and deleted_at is null
            order by lower(name) asc
            """,
            {"user_id": str(user_id)},
        )

    def update_category(self, user_id: UUID, category_id: UUID, form: CategoryForm) -> dict[str, Any]:
        with self._begin() as conn:
            self._execute(
                conn,
                """
                update categories
                set name = :name, description = :description, type = :type, icon = :icon
                where id = :id and user_id = :user_id and deleted_at is null
                """,
                {
                    "id": str(category_id),
                    "user_id": str(user_id),
                    "name": form.name,
                    "description": form.description,
                    "type": form.type.value,
                    "icon": form.icon,
                },
            )
            rows = self._execute(
                conn,
                f"select {CATEGORY_COLUMNS} from categories where id = :id and user_id = :user_id and deleted_at is null",
                {"id": str(category_id), "user_id": str(user_id)},
            )
            if not rows:
                raise _not_found("Category")
            return rows[0]

    def soft_delete_categories(self, user_id: UUID, category_ids: list[UUID]) -> None:
        ids = _unique(category_ids)
        if not ids:
            return
        placeholders, params = _in_clause("id", ids)
        cascade_params = {"user_id": str(user_id), "now": _utcnow().isoformat(), **params}
        with self._begin() as conn:
            if self._owned_count(conn, "categories", user_id, ids) != len(ids):
                raise _some_not_found("categories")
            self._execute(
                conn,
                f"update categories set deleted_at = :now where user_id = :user_id and id in ({placeholders})",
                cascade_params,
            )
            for table in ("budgets", "transactions", "savings"):
                self._execute(
                    conn,
                    f"""
                    update {table} set deleted_at = :now
                    where user_id = :user_id and deleted_at is null and category_id in ({placeholders})
                    """,
                    cascade_params,
                )

    def create_budget(self, user_id: UUID, form: BudgetForm, month: str) -> dict[str, Any]:
        row = {
            "id": str(uuid4()),
            "user_id": str(user_id),
            "category_id": str(form.categoryId),
            "name": form.name,
            "amount": _to_float(form.amount),
            "description": form.description,
            "month": month,
            "created_at": _utcnow().isoformat(),
        }
        self._run(
            """
            insert into budgets (id, user_id, category_id, name, amount, description, month, created_at)
            values (:id, :user_id, :category_id, :name, :amount, :description, :month, :created_at)
            """,
            row,
        )
        return _normalize({**row, "amount": form.amount, "deleted_at": None})

    def get_budget(self, user_id: UUID, budget_id: UUID) -> dict[str, Any] | None:
        return self._first(
            f"select {BUDGET_COLUMNS} from budgets where id = :id and user_id = :user_id and deleted_at is null",
            {"id": str(budget_id), "user_id": str(user_id)},
        )

    def find_budget(self, user_id: UUID, category_id: UUID, month: str) -> dict[str, Any] | None:
        return self._first(
            f"""
            select {BUDGET_COLUMNS} from budgets
            where user_id = :user_id and category_id = :category_id and month = :month and deleted_at is null
            limit 1
            """,
            {"user_id": str(user_id), "category_id": str(category_id), "month": month},
        )

    def list_budgets(self, user_id: UUID) -> list[dict[str, Any]]:
        return self._run(
            f"""
            select {BUDGET_COLUMNS}
            from budgets
            where user_id = :user_id and deleted_at is null
            order by created_at desc
            """,
            {"user_id": str(user_id)},
        )

    def update_budget(self, user_id: UUID, budget_id: UUID, form: BudgetForm) -> dict[str, Any]:
        with self._begin() as conn:
            self._execute(
                conn,
                """
                update budgets
                set category_id = :category_id, name = :name, amount = :amount, description = :description
                where id = :id and user_id = :user_id and deleted_at is null
                """,
                {
                    "id": str(budget_id),
                    "user_id": str(user_id),
                    "category_id": str(form.categoryId),
                    "name": form.name,
                    "amount": _to_float(form.amount),
                    "description": form.description,
                },
            )
            rows = self._execute(
                conn,
                f"select {BUDGET_COLUMNS} from budgets where id = :id and user_id = :user_id and deleted_at is null",
                {"id": str(budget_id), "user_id": str(user_id)},
            )
            if not rows:
                raise _not_found("Budget")
            return rows[0]

    def _hard_delete(self, table: str, plural: str, user_id: UUID, ids: list[UUID]) -> None:
        ids = _unique(ids)
        if not ids:
            return
        placeholders, params = _in_clause("id", ids)
        with self._begin() as conn:
            if self._owned_count(conn, table, user_id, ids) != len(ids):
                raise _some_not_found(plural)
            self._execute(
                conn,
                f"delete from {table} where user_id = :user_id and id in ({placeholders})",
                {"user_id": str(user_id), **params},
            )

    def delete_budgets(self, user_id: UUID, budget_ids: list[UUID]) -> None:
        self._hard_delete("budgets", "budgets", user_id, budget_ids)

    def create_transactions(self, user_id: UUID, forms: list[TransactionForm]) -> list[dict[str, Any]]:
        created: list[dict[str, Any]] = []
        with self._begin() as conn:
            for form in forms:
                now = _utcnow().isoformat()
                row = {
                    "id": str(uuid4()),
                    "user_id": str(user_id),
                    "category_id": str(form.categoryId),
                    "description": form.description,
                    "amount": _to_float(form.amount),
                    "transaction_date": form.date.isoformat(),
                    "type": form.type.value,
                    "notes": form.notes,
                    "created_at": now,
                    "updated_at": now,
                }
                self._execute(
                    conn,
                    """
                    insert into transactions (
                      id, user_id, category_id, description, amount, transaction_date, type, notes, created_at, updated_at
                    )
                    values (
                      :id, :user_id, :category_id, :description, :amount, :transaction_date, :type, :notes, :created_at, :updated_at
                    )
                    """,
                    row,
                )
                created.append(_normalize({**row, "amount": form.amount, "deleted_at": None}))
        return created

    def get_transaction(self, user_id: UUID, transaction_id: UUID) -> dict[str, Any] | None:
        return self._first(
            f"select {TRANSACTION_COLUMNS} from transactions where id = :id and user_id = :user_id and deleted_at is null",
            {"id": str(transaction_id), "user_id": str(user_id)},
        )

    def list_transactions(
        self,
        user_id: UUID,
        start: date | None = None,
        end: date | None = None,
        tx_type: str | None = None,
        category_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        clauses = ["user_id = :user_id", "deleted_at is null"]
        params: dict[str, Any] = {"user_id": str(user_id)}
        if start is not None:
            clauses.append("transaction_date >= :start")
            params["start"] = start.isoformat()
        if end is not None:
            clauses.append("transaction_date < :end")
            params["end"] = end.isoformat()
        if tx_type is not None:
            clauses.append("type = :type")
            params["type"] = tx_type
        if category_id is not None:
            clauses.append("category_id = :category_id")
            params["category_id"] = str(category_id)
        return self._run(
            f"""
            select {TRANSACTION_COLUMNS}
            from transactions
            where {" and ".join(clauses)}
            order by transaction_date desc, created_at desc
            """,
            params,
        )

    def update_transaction(self, user_id: UUID, transaction_id: UUID, form: TransactionForm) -> dict[str, Any]:
        with self._begin() as conn:
            self._execute(
                conn,
                """
                update transactions
                set category_id = :category_id, description = :description, amount = :amount,
                    transaction_date = :transaction_date, type = :type, notes = :notes, updated_at = :updated_at
                where id = :id and user_id = :user_id and deleted_at is null
                """,
                {
                    "id": str(transaction_id),
                    "user_id": str(user_id),
                    "category_id": str(form.categoryId),
                    "description": form.description,
                    "amount": _to_float(form.amount),
                    "transaction_date": form.date.isoformat(),
                    "type": form.type.value,
                    "notes": form.notes,
                    "updated_at": _utcnow().isoformat(),
                },
            )
            rows = self._execute(
                conn,
                f"select {TRANSACTION_COLUMNS} from transactions where id = :id and user_id = :user_id and deleted_at is null",
                {"id": str(transaction_id), "user_id": str(user_id)},
            )
            if not rows:
                raise _not_found("Transaction")
            return rows[0]

    def delete_transactions(self, user_id: UUID, transaction_ids: list[UUID]) -> None:
        self._hard_delete("transactions", "transactions", user_id, transaction_ids)

    def create_savings(self, user_id: UUID, form: SavingsCreateForm) -> dict[str, Any]:
        now = _utcnow().isoformat()
        balance = form.balance if form.balance is not None else form.initialBalance
        row = {
            "id": str(uuid4()),
            "user_id": str(user_id),
            "category_id": str(form.categoryId),
            "account_name": form.accountName,
            "balance": _to_float(balance),
            "initial_balance": _to_float(form.initialBalance),
            "interest_rate": _to_float(form.interestRate),
            "growth": _to_float(form.growth),
            "account_type": form.accountType.value,
            "institution": form.institution,
            "created_at": now,
            "updated_at": now,
        }
        self._run(
            """
            insert into savings (
              id, user_id, category_id, account_name, balance, initial_balance, interest_rate, growth,
              account_type, institution, created_at, updated_at
            )
            values (
              :id, :user_id, :category_id, :account_name, :balance, :initial_balance, :interest_rate, :growth,
              :account_type, :institution, :created_at, :updated_at
            )
            """,
            row,
        )
        return _normalize(
            {
                **row,
                "balance": balance,
                "initial_balance": form.initialBalance,
                "interest_rate": form.interestRate,
                "growth": form.growth,
                "deleted_at": None,
            }
        )

    def get_savings(self, user_id: UUID, savings_id: UUID) -> dict[str, Any] | None:
        return self._first(
            f"select {SAVINGS_COLUMNS} from savings where id = :id and user_id = :user_id and deleted_at is null",
            {"id": str(savings_id), "user_id": str(user_id)},
        )

    def list_savings(self, user_id: UUID) -> list[dict[str, Any]]:
        return self._run(
            f"""
            select {SAVINGS_COLUMNS}
            from savings
            where user_id = :user_id and deleted_at is null
            order by lower(account_name) asc
            """,
            {"user_id": str(user_id)},
        )

    def update_savings(self, user_id: UUID, savings_id: UUID, form: SavingsUpdateForm) -> dict[str, Any]:
        with self._begin() as conn:
            self._execute(
                conn,
                """
                update savings
                set category_id = :category_id, account_name = :account_name, balance = :balance,
                    interest_rate = :interest_rate, growth = :growth, account_type = :account_type,
                    institution = :institution, updated_at = :updated_at
                where id = :id and user_id = :user_id and deleted_at is null
                """,
                {
                    "id": str(savings_id),
                    "user_id": str(user_id),
                    "category_id": str(form.categoryId),
                    "account_name": form.accountName,
                    "balance": _to_float(form.balance),
                    "interest_rate": _to_float(form.interestRate),
                    "growth": _to_float(form.growth),
                    "account_type": form.accountType.value,
                    "institution": form.institution,
                    "updated_at": _utcnow().isoformat(),
                },
            )
            rows = self._execute(
                conn,
                f"select {SAVINGS_COLUMNS} from savings where id = :id and user_id = :user_id and deleted_at is null",
                {"id": str(savings_id), "user_id": str(user_id)},
            )
            if not rows:
                raise _not_found("Savings")
            return rows[0]

    def delete_savings(self, user_id: UUID, savings_ids: list[UUID]) -> None:
        self._hard_delete("savings", "savings", user_id, savings_ids)


def get_persistence() -> Persistence:
    if settings.storage_backend in {"sql", "postgres"}:
        return SqlPersistence(settings.database_url)
    return InMemoryPersistence()
