from decimal import Decimal

from fastapi.testclient import TestClient

from helpers import create_category, create_transaction
from spendee.config import settings


def _import(client: TestClient, headers: dict[str, str], content: str, dry_run: bool = False):
    return client.post(
        "/api/v1/transactions/import",
        params={"dryRun": str(dry_run).lower()},
        files={"file": ("transactions.csv", content.encode("utf-8"), "text/csv")},
        headers=headers,
    )


def test_export_then_import_round_trip(
    client: TestClient, headers: dict[str, str], other_headers: dict[str, str]
) -> None:
    food = create_category(client, headers, "Food")
    salary = create_category(client, headers, "Salary", "INCOME")
    create_transaction(client, headers, food, "12.30", "2026-02-03", description='Pizza "Margherita", large', notes="friday")
    create_transaction(client, headers, salary, "2500", "2026-02-01", type_="INCOME", description="Pay")

    res = client.get("/api/v1/transactions/export", headers=headers)
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/csv")
    content = res.text
    assert content.splitlines()[0] == "date,description,amount,category,type,notes"

    create_category(client, other_headers, "food")
    create_category(client, other_headers, "Salary", "INCOME")
    res = _import(client, other_headers, content)
    assert res.status_code == 201
    assert res.json()["data"] == {"validRows": 2, "imported": 2, "dryRun": False, "errors": []}

    def _snapshot(h: dict[str, str]) -> list[tuple]:
        rows = client.get("/api/v1/transactions", headers=h).json()["data"]
        return [(r["description"], Decimal(r["amount"]), r["date"], r["type"], r["notes"]) for r in rows]

    assert _snapshot(other_headers) == _snapshot(headers)


def test_export_selected_ids(client: TestClient, headers: dict[str, str], other_headers: dict[str, str]) -> None:
    food = create_category(client, headers, "Food")
    keep = create_transaction(client, headers, food, "1", "2026-01-01", description="keep")
    create_transaction(client, headers, food, "2", "2026-01-02", description="skip")

    res = client.get("/api/v1/transactions/export", params={"ids": [keep]}, headers=headers)
    assert res.status_code == 200
    lines = res.text.splitlines()
    assert len(lines) == 2
    assert lines[1].startswith("2026-01-01,keep,1,Food,EXPENSE")

    res = client.get("/api/v1/transactions/export", params={"ids": [keep]}, headers=other_headers)
    assert res.status_code == 404
    assert res.json()["error"] == "Some transactions not found or access denied"


def test_import_dry_run_commits_nothing(client: TestClient, headers: dict[str, str]) -> None:
    create_category(client, headers, "Food")
    content = "date,description,amount,category,type\n2026-01-05,Bread,2.10,Food,EXPENSE\n"
    res = _import(client, headers, content, dry_run=True)
    assert res.status_code == 200
    assert res.json() == {
        "success": True,
        "data": {"validRows": 1, "imported": 0, "dryRun": True, "errors": []},
        "error": None,
    }
    assert client.get("/api/v1/transactions", headers=headers).json()["data"] == []


def test_import_with_errors_is_rejected_whole(client: TestClient, headers: dict[str, str]) -> None:
    create_category(client, headers, "Food")
    content = (
        "date,description,amount,category,type,notes\n"
        "2026-01-05,Bread,2.10,Food,EXPENSE,\n"
        "2026-01-06,Milk,-3,Food,EXPENSE,\n"
        "2026-01-07,Gift,5,Presents,INCOME,\n"
    )
    res = _import(client, headers, content)
    assert res.status_code == 400
    body = res.json()
    assert body["success"] is False
    assert body["error"] == "CSV validation failed: 2 row(s) with errors"
    assert body["data"]["validRows"] == 1
    assert body["data"]["imported"] == 0
    assert [(e["row"], e["field"]) for e in body["data"]["errors"]] == [(2, "amount"), (3, "category")]
    assert client.get("/api/v1/transactions", headers=headers).json()["data"] == []


def test_import_rejects_non_utf8(client: TestClient, headers: dict[str, str]) -> None:
    res = client.post(
        "/api/v1/transactions/import",
        files={"file": ("t.csv", b"\xff\xfe\x00bad", "text/csv")},
        headers=headers,
    )
    assert res.status_code == 400
    assert res.json()["error"] == "CSV file must be UTF-8 encoded"


def test_import_row_limit_uses_settings(client: TestClient, headers: dict[str, str]) -> None:
    create_category(client, headers, "Food")
    rows = "2026-01-01,x,1,Food,EXPENSE\n" * (settings.csv_max_rows + 1)
    res = _import(client, headers, "date,description,amount,category,type\n" + rows, dry_run=True)
    assert res.status_code == 400
    assert res.json()["data"]["errors"][-1]["message"] == f"Too many rows (limit {settings.csv_max_rows})"


def test_import_oversized_cell_returns_row_report(client: TestClient, headers: dict[str, str]) -> None:
    create_category(client, headers, "Food")
    content = "date,description,amount,category,type\n2026-01-01," + "x" * 200_000 + ",1,Food,EXPENSE\n"
    res = _import(client, headers, content)
    assert res.status_code == 400
    body = res.json()
    assert body["success"] is False
    assert [(e["row"], e["field"]) for e in body["data"]["errors"]] == [(1, "file")]
    assert client.get("/api/v1/transactions", headers=headers).json()["data"] == []
