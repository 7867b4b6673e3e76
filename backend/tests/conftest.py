from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from helpers import register
from spendee.main import app


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture()
def headers(client: TestClient) -> dict[str, str]:
    return register(client)


@pytest.fixture()
def other_headers(client: TestClient) -> dict[str, str]:
    return register(client)


@pytest.fixture()
def today() -> str:
    return datetime.now(timezone.utc).date().isoformat()
