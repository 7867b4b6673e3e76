from uuid import uuid4

from fastapi.testclient import TestClient


def register(client: TestClient) -> dict[str, str]:
    res = client.post(
        "/api/v1/auth/register",
        json={"email": f"user-{uuid4().hex[:12]}@example.com", "password": "Secret123!", "fullName": "Test User"},
    )
    assert res.status_code == 201
    return {"Authorization": f"Bearer {res.json()['token']}"}


def create_category(client: TestClient, headers: dict[str, str], name: str, type_: str = "EXPENSE") -> str:
    res = client.post("/api/v1/categories", json={"name": name, "type": type_}, headers=headers)
    assert res.status_code == 201, res.json()
    return res.json()["data"]["id"]


def create_transaction(
    client: TestClient,
    headers: dict[str, str],
    category_id: str,
    amount: str,
    day: str,
    type_: str = "EXPENSE",
    description: str = "Groceries",
    notes: str | None = None,
) -> str:
    res = client.post(
        "/api/v1/transactions",
        json={
            "description": description,
            "amount": amount,
            "date": day,
            "categoryId": category_id,
            "type": type_,
            "notes": notes,
        },
        headers=headers,
    )
    assert res.status_code == 201, res.json()
    return res.json()["data"]["id"]
