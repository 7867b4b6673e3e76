from decimal import Decimal

from fastapi.testclient import TestClient

from helpers import create_category


def test_create_savings_defaults_balance_to_initial(client: TestClient, headers: dict[str, str]) -> None:
    salary = create_category(client, headers, "Salary", "INCOME")
    res = client.post(
        "/api/v1/savings",
        json={
            "accountName": "Emergency fund",
            "categoryId": salary,
            "initialBalance": "1000",
            "interestRate": "3.5",
            "accountType": "investment",
            "institution": "",
        },
        headers=headers,
    )
    assert res.status_code == 201
    data = res.json()["data"]
    assert Decimal(data["balance"]) == Decimal("1000")
    assert Decimal(data["initialBalance"]) == Decimal("1000")
    assert Decimal(data["growth"]) == Decimal("0")
    assert data["accountType"] == "INVESTMENT"
    assert data["institution"] is None
    assert data["category"]["name"] == "Salary"


def test_savings_require_income_category(client: TestClient, headers: dict[str, str]) -> None:
    food = create_category(client, headers, "Food")
    res = client.post(
        "/api/v1/savings",
        json={"accountName": "Jar", "categoryId": food, "initialBalance": "10", "interestRate": "0"},
        headers=headers,
    )
    assert res.status_code == 400
    assert res.json()["error"] == "Savings accounts require an INCOME category"


def test_update_savings_keeps_initial_balance(client: TestClient, headers: dict[str, str]) -> None:
    salary = create_category(client, headers, "Salary", "INCOME")
    savings_id = client.post(
        "/api/v1/savings",
        json={"accountName": "Jar", "categoryId": salary, "initialBalance": "10", "interestRate": "1"},
        headers=headers,
    ).json()["data"]["id"]

    res = client.put(
        f"/api/v1/savings/{savings_id}",
        json={"accountName": "Big jar", "categoryId": salary, "balance": "25", "interestRate": "1.5", "growth": "2"},
        headers=headers,
    )
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["accountName"] == "Big jar"
    assert Decimal(data["balance"]) == Decimal("25")
    assert Decimal(data["initialBalance"]) == Decimal("10")

    res = client.put(
        f"/api/v1/savings/{savings_id}",
        json={"accountName": "Big jar", "categoryId": salary, "interestRate": "1.5"},
        headers=headers,
    )
    assert res.status_code == 400


def test_savings_listing_and_deletes(
    client: TestClient, headers: dict[str, str], other_headers: dict[str, str]
) -> None:
    salary = create_category(client, headers, "Salary", "INCOME")
    ids = []
    for name in ("zeta", "Alpha", "beta"):
        res = client.post(
            "/api/v1/savings",
            json={"accountName": name, "categoryId": salary, "initialBalance": "1", "interestRate": "0"},
            headers=headers,
        )
        ids.append(res.json()["data"]["id"])

    listed = client.get("/api/v1/savings", headers=headers).json()["data"]
    assert [s["accountName"] for s in listed] == ["Alpha", "beta", "zeta"]
    assert client.get("/api/v1/savings", headers=other_headers).json()["data"] == []

    res = client.delete(f"/api/v1/savings/{ids[0]}", headers=other_headers)
    assert res.status_code == 404
    assert res.json()["error"] == "Savings not found or access denied"

    assert client.delete(f"/api/v1/savings/{ids[0]}", headers=headers).status_code == 200
    res = client.post("/api/v1/savings/bulk-delete", json={"ids": ids[1:]}, headers=headers)
    assert res.status_code == 200
    assert client.get("/api/v1/savings", headers=headers).json()["data"] == []


def test_savings_precision_matches_storage(client: TestClient, headers: dict[str, str]) -> None:
    salary = create_category(client, headers, "Salary", "INCOME")
    base = {"accountName": "Jar", "categoryId": salary, "initialBalance": "10", "interestRate": "1"}
    for override in ({"initialBalance": "0.001"}, {"balance": "1e20"}, {"interestRate": "1.0001"}, {"growth": "1234567.5"}):
        res = client.post("/api/v1/savings", json={**base, **override}, headers=headers)
        assert res.status_code == 400, override
    assert client.get("/api/v1/savings", headers=headers).json()["data"] == []


def test_update_other_users_savings_is_denied(
    client: TestClient, headers: dict[str, str], other_headers: dict[str, str]
) -> None:
    salary = create_category(client, headers, "Salary", "INCOME")
    their_salary = create_category(client, other_headers, "Salary", "INCOME")
    savings_id = client.post(
        "/api/v1/savings",
        json={"accountName": "Jar", "categoryId": salary, "initialBalance": "10", "interestRate": "1"},
        headers=headers,
    ).json()["data"]["id"]

    for category_id in (their_salary, salary):
        res = client.put(
            f"/api/v1/savings/{savings_id}",
            json={"accountName": "Stolen", "categoryId": category_id, "balance": "0", "interestRate": "0"},
            headers=other_headers,
        )
        assert res.status_code == 404
        assert res.json()["success"] is False
        assert res.json()["error"] == "Savings not found or access denied"

    listed = client.get("/api/v1/savings", headers=headers).json()["data"]
    assert [(s["accountName"], Decimal(s["balance"])) for s in listed] == [("Jar", Decimal("10"))]
