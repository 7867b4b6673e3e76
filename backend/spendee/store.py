from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4


class InMemoryStore:
    def __init__(self) -> None:
        self.users: dict[UUID, dict[str, Any]] = {}
        self.user_credentials: dict[UUID, str] = {}
        self.categories: dict[UUID, dict[str, Any]] = {}
        self.budgets: dict[UUID, dict[str, Any]] = {}
        self.transactions: dict[UUID, dict[str, Any]] = {}
        self.savings: dict[UUID, dict[str, Any]] = {}

    def live(self, table: dict[UUID, dict[str, Any]], user_id: UUID) -> list[dict[str, Any]]:
        return [row for row in table.values() if row["user_id"] == user_id and row.get("deleted_at") is None]

    def owned(self, table: dict[UUID, dict[str, Any]], user_id: UUID, entity_id: UUID) -> dict[str, Any] | None:
        row = table.get(entity_id)
        if row is None or row["user_id"] != user_id or row.get("deleted_at") is not None:
            return None
        return row

    @staticmethod
    def make_id() -> UUID:
        return uuid4()

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)


store = InMemoryStore()
