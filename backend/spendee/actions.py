"""Server actions: one function per mutation and per list query.

Every action returns an :class:`ActionResult`. Failures are logged and turned
into ``ActionResult(success=False, error=...)``; nothing is raised to the caller.
"""

import functools
import logging
from collections import defaultdict
from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from fastapi import HTTPException
from pydantic import BaseModel, ValidationError

from .config import settings
from .persistence import Persistence
from .schemas import (
    ActionResult,
    BudgetForm,
    BudgetWithStats,
    CategoryForm,
    CategorySummary,
    CategoryTotal,
    CategoryType,
    CategoryWithStats,
    CsvImportReport,
    MonthlySummary,
    SavingsCreateForm,
    SavingsResponse,
    SavingsUpdateForm,
    TransactionForm,
    TransactionResponse,
    TransactionType,
)
from .services.csv_io import export_transactions_csv, parse_transactions_csv
from .services.stats import (
    budget_stats,
    budget_status,
    calculate_average,
    calculate_spent,
    current_month,
    month_bounds,
    month_of,
)

logger = logging.getLogger(__name__)

FormT = TypeVar("FormT", bound=BaseModel)
ZERO = Decimal("0")


def action(verb: str, entity: str, status_code: int = 200) -> Callable[[Callable[..., Any]], Callable[..., ActionResult]]:
    def decorator(func: Callable[..., Any]) -> Callable[..., ActionResult]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> ActionResult:
            try:
                data = func(*args, **kwargs)
            except HTTPException as exc:
                logger.warning("Error trying to %s %s: %s", verb, entity, exc.detail)
                return ActionResult.fail(str(exc.detail), status_code=exc.status_code)
            except ValueError as exc:
                logger.warning("Error trying to %s %s: %s", verb, entity, exc)
                return ActionResult.fail(str(exc), status_code=400)
            except Exception:
                logger.exception("Unexpected error trying to %s %s", verb, entity)
                return ActionResult.fail(f"Failed to {verb} {entity}", status_code=500)
            if isinstance(data, ActionResult):
                return data
            if verb not in {"fetch", "export"}:
                logger.info("%s %s: ok", verb, entity)
            return ActionResult.ok(data, status_code=status_code)

        return wrapper

    return decorator


def clean_form(raw: Mapping[str, Any], nullable: tuple[str, ...] = (), defaulted: tuple[str, ...] = ()) -> dict[str, Any]:
    """Blank optional fields become ``None``; blank defaulted fields fall back to the schema default."""
    cleaned = dict(raw)
    for key in nullable:
        if isinstance(cleaned.get(key), str) and not cleaned[key].strip():
            cleaned[key] = None
    for key in defaulted:
        if key in cleaned and (cleaned[key] is None or (isinstance(cleaned[key], str) and not cleaned[key].strip())):
            del cleaned[key]
    return cleaned


def validate_form(schema: type[FormT], data: Mapping[str, Any]) -> FormT:
    try:
        return schema.model_validate(dict(data))
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', [])) or 'form'}: {err.get('msg')}" for err in exc.errors()
        )
        raise ValueError(f"Validation failed: {details}") from exc


def _require_category(
    persistence: Persistence,
    user_id: UUID,
    category_id: UUID,
    expected_type: str | None = None,
    message: str | None = None,
) -> dict[str, Any]:
    category = persistence.get_category(user_id, category_id)
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found or access denied")
    if expected_type is not None and category["type"] != expected_type:
        raise ValueError(message or f"Category must be of type {expected_type}")
    return category


def _categories_by_id(persistence: Persistence, user_id: UUID) -> dict[UUID, dict[str, Any]]:
    return {c["id"]: c for c in persistence.list_categories(user_id)}


def _summary(category: dict[str, Any] | None) -> CategorySummary | None:
    if category is None:
        return None
    return CategorySummary(id=category["id"], name=category["name"], type=category["type"], icon=category["icon"])


def _transaction_response(row: dict[str, Any], categories: dict[UUID, dict[str, Any]]) -> TransactionResponse:
    return TransactionResponse(
        id=row["id"],
        description=row["description"],
        amount=row["amount"],
        date=row["transaction_date"],
        type=row["type"],
        notes=row.get("notes"),
        categoryId=row["category_id"],
        createdAt=row["created_at"],
        updatedAt=row["updated_at"],
        category=_summary(categories.get(row["category_id"])),
    )


def _savings_response(row: dict[str, Any], categories: dict[UUID, dict[str, Any]]) -> SavingsResponse:
    return SavingsResponse(
        id=row["id"],
        accountName=row["account_name"],
        categoryId=row["category_id"],
        balance=row["balance"],
        initialBalance=row["initial_balance"],
        interestRate=row["interest_rate"],
        growth=row["growth"],
        accountType=row["account_type"],
        institution=row.get("institution"),
        createdAt=row["created_at"],
        updatedAt=row["updated_at"],
        category=_summary(categories.get(row["category_id"])),
    )


def _budget_with_stats(
    persistence: Persistence, user_id: UUID, row: dict[str, Any], categories: dict[UUID, dict[str, Any]]
) -> BudgetWithStats:
    start, end = month_bounds(row["month"])
    transactions = persistence.list_transactions(user_id, start=start, end=end, category_id=row["category_id"])
    spent = calculate_spent(t["amount"] for t in transactions)
    remaining, progress = budget_stats(row["amount"], spent)
    return BudgetWithStats(
        id=row["id"],
        name=row["name"],
        categoryId=row["category_id"],
        amount=row["amount"],
        description=row.get("description"),
        month=row["month"],
        createdAt=row["created_at"],
        category=_summary(categories.get(row["category_id"])),
        spent=spent,
        remaining=remaining,
        progress=progress,
        status=budget_status(progress),
    )


def _category_response(row: dict[str, Any]) -> CategoryWithStats:
    return CategoryWithStats(
        id=row["id"],
        name=row["name"],
        description=row.get("description"),
        type=row["type"],
        icon=row["icon"],
        createdAt=row["created_at"],
    )


# categories


@action("create", "category", status_code=201)
def create_category(persistence: Persistence, user_id: UUID, raw: Mapping[str, Any]) -> CategoryWithStats:
    form = validate_form(CategoryForm, clean_form(raw, nullable=("description",), defaulted=("type", "icon")))
    return _category_response(persistence.create_category(user_id, form))


@action("update", "category")
def update_category(persistence: Persistence, user_id: UUID, category_id: UUID, raw: Mapping[str, Any]) -> CategoryWithStats:
    form = validate_form(CategoryForm, clean_form(raw, nullable=("description",), defaulted=("type", "icon")))
    existing = _require_category(persistence, user_id, category_id)
    if existing["type"] != form.type.value and _category_in_use(persistence, user_id, category_id):
        raise ValueError("Cannot change the type of a category that has transactions, budgets or savings")
    return _category_response(persistence.update_category(user_id, category_id, form))


def _category_in_use(persistence: Persistence, user_id: UUID, category_id: UUID) -> bool:
    if persistence.list_transactions(user_id, category_id=category_id):
        return True
    if any(b["category_id"] == category_id for b in persistence.list_budgets(user_id)):
        return True
    return any(s["category_id"] == category_id for s in persistence.list_savings(user_id))


@action("delete", "category")
def delete_category(persistence: Persistence, user_id: UUID, category_id: UUID) -> None:
    _require_category(persistence, user_id, category_id)
    persistence.soft_delete_categories(user_id, [category_id])


@action("delete", "categories")
def delete_categories(persistence: Persistence, user_id: UUID, category_ids: list[UUID]) -> None:
    if not category_ids:
        raise ValueError("Category IDs are required")
    persistence.soft_delete_categories(user_id, category_ids)


@action("fetch", "categories")
def get_categories(persistence: Persistence, user_id: UUID) -> list[CategoryWithStats]:
    month = current_month()
    transactions = persistence.list_transactions(user_id)
    budgets = persistence.list_budgets(user_id)
    savings = persistence.list_savings(user_id)

    tx_by_category: dict[UUID, list[dict[str, Any]]] = defaultdict(list)
    for tx in transactions:
        tx_by_category[tx["category_id"]].append(tx)
    current_budget: dict[UUID, dict[str, Any]] = {}
    for budget in budgets:
        if budget["month"] == month:
            current_budget.setdefault(budget["category_id"], budget)
    savings_by_category: dict[UUID, list[dict[str, Any]]] = defaultdict(list)
    for account in savings:
        savings_by_category[account["category_id"]].append(account)

    out: list[CategoryWithStats] = []
    for category in persistence.list_categories(user_id):
        item = _category_response(category)
        category_txs = tx_by_category.get(category["id"], [])
        accounts = savings_by_category.get(category["id"], [])
        budget = current_budget.get(category["id"])
        if budget is not None:
            item.budgetName = budget["name"]
            item.budgetAmount = budget["amount"]
        if category["type"] == CategoryType.EXPENSE.value:
            item.transactions = len(category_txs)
            item.spent = calculate_spent(t["amount"] for t in category_txs if month_of(t["transaction_date"]) == month)
            if budget is not None:
                item.remaining = budget["amount"] - item.spent
        else:
            item.accounts = len(accounts)
            item.balance = sum((t["amount"] for t in category_txs), ZERO)
        item.averageGrowth = calculate_average(a["growth"] for a in accounts)
        out.append(item)
    return out


@action("fetch", "categories")
def get_categories_for_form(persistence: Persistence, user_id: UUID) -> list[CategorySummary]:
    return [_summary(c) for c in persistence.list_categories(user_id)]


# budgets


@action("create", "budget", status_code=201)
def create_budget(persistence: Persistence, user_id: UUID, raw: Mapping[str, Any]) -> BudgetWithStats:
    form = validate_form(BudgetForm, clean_form(raw, nullable=("description", "month"), defaulted=("name",)))
    _require_category(
        persistence, user_id, form.categoryId, CategoryType.EXPENSE.value, "Budgets require an EXPENSE category"
    )
    month = form.month or current_month()
    if persistence.find_budget(user_id, form.categoryId, month) is not None:
        raise HTTPException(status_code=409, detail="A budget for this category and month already exists")
    row = persistence.create_budget(user_id, form, month)
    return _budget_with_stats(persistence, user_id, row, _categories_by_id(persistence, user_id))


@action("update", "budget")
def update_budget(persistence: Persistence, user_id: UUID, budget_id: UUID, raw: Mapping[str, Any]) -> BudgetWithStats:
    form = validate_form(BudgetForm, clean_form(raw, nullable=("description", "month"), defaulted=("name",)))
    existing = persistence.get_budget(user_id, budget_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Budget not found or access denied")
    _require_category(
        persistence, user_id, form.categoryId, CategoryType.EXPENSE.value, "Budgets require an EXPENSE category"
    )
    clash = persistence.find_budget(user_id, form.categoryId, existing["month"])
    if clash is not None and clash["id"] != budget_id:
        raise HTTPException(status_code=409, detail="A budget for this category and month already exists")
    row = persistence.update_budget(user_id, budget_id, form)
    return _budget_with_stats(persistence, user_id, row, _categories_by_id(persistence, user_id))


@action("delete", "budget")
def delete_budget(persistence: Persistence, user_id: UUID, budget_id: UUID) -> None:
    if persistence.get_budget(user_id, budget_id) is None:
        raise HTTPException(status_code=404, detail="Budget not found or access denied")
    persistence.delete_budgets(user_id, [budget_id])


@action("delete", "budgets")
def delete_budgets(persistence: Persistence, user_id: UUID, budget_ids: list[UUID]) -> None:
    if not budget_ids:
        raise ValueError("Budget IDs are required")
    persistence.delete_budgets(user_id, budget_ids)


@action("fetch", "budgets")
def get_budgets(persistence: Persistence, user_id: UUID) -> list[BudgetWithStats]:
    categories = _categories_by_id(persistence, user_id)
    return [_budget_with_stats(persistence, user_id, row, categories) for row in persistence.list_budgets(user_id)]


# transactions


def _checked_transaction_form(persistence: Persistence, user_id: UUID, raw: Mapping[str, Any]) -> TransactionForm:
    form = validate_form(TransactionForm, clean_form(raw, nullable=("notes",)))
    category = _require_category(persistence, user_id, form.categoryId)
    if form.type.value != category["type"]:
        raise ValueError(f"Transaction type must match category type ({category['type']})")
    return form


@action("create", "transaction", status_code=201)
def create_transaction(persistence: Persistence, user_id: UUID, raw: Mapping[str, Any]) -> TransactionResponse:
    form = _checked_transaction_form(persistence, user_id, raw)
    row = persistence.create_transaction(user_id, form)
    return _transaction_response(row, _categories_by_id(persistence, user_id))


@action("update", "transaction")
def update_transaction(
    persistence: Persistence, user_id: UUID, transaction_id: UUID, raw: Mapping[str, Any]
) -> TransactionResponse:
    if persistence.get_transaction(user_id, transaction_id) is None:
        raise HTTPException(status_code=404, detail="Transaction not found or access denied")
    form = _checked_transaction_form(persistence, user_id, raw)
    row = persistence.update_transaction(user_id, transaction_id, form)
    return _transaction_response(row, _categories_by_id(persistence, user_id))


@action("delete", "transaction")
def delete_transaction(persistence: Persistence, user_id: UUID, transaction_id: UUID) -> None:
    if persistence.get_transaction(user_id, transaction_id) is None:
        raise HTTPException(status_code=404, detail="Transaction not found or access denied")
    persistence.delete_transactions(user_id, [transaction_id])


@action("delete", "transactions")
def delete_transactions(persistence: Persistence, user_id: UUID, transaction_ids: list[UUID]) -> None:
    if not transaction_ids:
        raise ValueError("Transaction IDs are required")
    persistence.delete_transactions(user_id, transaction_ids)


@action("fetch", "transactions")
def get_transactions(
    persistence: Persistence,
    user_id: UUID,
    month: str | None = None,
    tx_type: str | None = None,
    category_id: UUID | None = None,
) -> list[TransactionResponse]:
    start = end = None
    if month:
        start, end = month_bounds(month)
    if tx_type is not None:
        tx_type = TransactionType(tx_type.strip().upper()).value
    rows = persistence.list_transactions(user_id, start=start, end=end, tx_type=tx_type, category_id=category_id)
    categories = _categories_by_id(persistence, user_id)
    return [_transaction_response(row, categories) for row in rows]


@action("export", "transactions")
def export_transactions(persistence: Persistence, user_id: UUID, transaction_ids: list[UUID] | None = None) -> str:
    if transaction_ids:
        rows = [persistence.get_transaction(user_id, tid) for tid in dict.fromkeys(transaction_ids)]
        if any(row is None for row in rows):
            raise HTTPException(status_code=404, detail="Some transactions not found or access denied")
    else:
        rows = persistence.list_transactions(user_id)
    return export_transactions_csv(rows, _categories_by_id(persistence, user_id))


@action("import", "transactions")
def import_transactions(persistence: Persistence, user_id: UUID, content: str, dry_run: bool = False) -> ActionResult:
    forms, errors = parse_transactions_csv(content, persistence.list_categories(user_id), settings.csv_max_rows)
    if errors:
        report = CsvImportReport(validRows=len(forms), imported=0, dryRun=dry_run, errors=errors)
        logger.warning("CSV import rejected: %d error(s)", len(errors))
        return ActionResult(
            success=False,
            data=report,
            error=f"CSV validation failed: {len({e.row for e in errors})} row(s) with errors",
            status_code=400,
        )
    if dry_run:
        return ActionResult.ok(CsvImportReport(validRows=len(forms), imported=0, dryRun=True))
    created = persistence.create_transactions(user_id, forms) if forms else []
    logger.info("Imported %d transaction(s) for user %s", len(created), user_id)
    return ActionResult.ok(CsvImportReport(validRows=len(forms), imported=len(created), dryRun=False), status_code=201)


# savings


@action("create", "savings", status_code=201)
def create_savings(persistence: Persistence, user_id: UUID, raw: Mapping[str, Any]) -> SavingsResponse:
    form = validate_form(
        SavingsCreateForm,
        clean_form(raw, nullable=("institution", "balance"), defaulted=("growth", "accountType")),
    )
    _require_category(
        persistence, user_id, form.categoryId, CategoryType.INCOME.value, "Savings accounts require an INCOME category"
    )
    row = persistence.create_savings(user_id, form)
    return _savings_response(row, _categories_by_id(persistence, user_id))


@action("update", "savings")
def update_savings(persistence: Persistence, user_id: UUID, savings_id: UUID, raw: Mapping[str, Any]) -> SavingsResponse:
    form = validate_form(
        SavingsUpdateForm,
        clean_form(raw, nullable=("institution",), defaulted=("growth", "accountType")),
    )
    if persistence.get_savings(user_id, savings_id) is None:
        raise HTTPException(status_code=404, detail="Savings not found or access denied")
    _require_category(
        persistence, user_id, form.categoryId, CategoryType.INCOME.value, "Savings accounts require an INCOME category"
    )
    row = persistence.update_savings(user_id, savings_id, form)
    return _savings_response(row, _categories_by_id(persistence, user_id))


@action("delete", "savings")
def delete_saving(persistence: Persistence, user_id: UUID, savings_id: UUID) -> None:
    if persistence.get_savings(user_id, savings_id) is None:
        raise HTTPException(status_code=404, detail="Savings not found or access denied")
    persistence.delete_savings(user_id, [savings_id])


@action("delete", "savings")
def delete_savings(persistence: Persistence, user_id: UUID, savings_ids: list[UUID]) -> None:
    if not savings_ids:
        raise ValueError("Savings IDs are required")
    persistence.delete_savings(user_id, savings_ids)


@action("fetch", "savings")
def get_savings(persistence: Persistence, user_id: UUID) -> list[SavingsResponse]:
    categories = _categories_by_id(persistence, user_id)
    return [_savings_response(row, categories) for row in persistence.list_savings(user_id)]


# summary


@action("fetch", "summary")
def get_monthly_summary(persistence: Persistence, user_id: UUID, month: str | None = None) -> MonthlySummary:
    month = month or current_month()
    start, end = month_bounds(month)
    categories = _categories_by_id(persistence, user_id)
    totals: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
    income = expense = ZERO
    for tx in persistence.list_transactions(user_id, start=start, end=end):
        amount = abs(tx["amount"])
        if tx["type"] == TransactionType.INCOME.value:
            income += amount
        else:
            expense += amount
        totals[tx["category_id"]] += amount
    rows = [
        CategoryTotal(categoryId=cid, name=categories[cid]["name"], type=categories[cid]["type"], total=total)
        for cid, total in totals.items()
        if cid in categories
    ]
    rows.sort(key=lambda item: (-item.total, item.name.lower()))
    return MonthlySummary(month=month, income=income, expense=expense, net=income - expense, categories=rows)
