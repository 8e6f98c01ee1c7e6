import pytest
from fastapi.testclient import TestClient

from database import Base, build_engine, build_session_factory
from main import app, get_db


@pytest.fixture
def client():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    factory = build_session_factory(engine)

    def override_get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        engine.dispose()


def create_account(client, name: str, amount: int) -> int:
    res = client.post(
        "/api/accounts",
        json={"name": name, "type": "bank", "initial_amount": amount},
    )
    assert res.status_code == 201
    return res.json()["id"]


def test_transfer_lifecycle_over_http(client) -> None:
    acc1 = create_account(client, "acc1", 10_000)
    acc2 = create_account(client, "acc2", 20_000)

    res = client.post(
        "/api/transactions",
        json={
            "type": "transfer",
            "amount": 3_000,
            "transaction_at": "2025-01-05T12:00:00",
            "source_account_id": acc1,
            "target_account_id": acc2,
            "description": "Savings",
        },
    )
    assert res.status_code == 201
    txn_id = res.json()["id"]

    assert client.get(f"/api/accounts/{acc1}").json()["current_amount"] == 7_000
    assert client.get(f"/api/accounts/{acc2}").json()["current_amount"] == 23_000
    assert client.get("/api/accounts/total-balance").json() == {"total_balance": 30_000}

    listed = client.get(
        "/api/transactions", params={"year": 2025, "month": 1, "account": acc2}
    ).json()
    assert [t["id"] for t in listed] == [txn_id]

    res = client.put(
        f"/api/transactions/{txn_id}",
        json={
            "type": "expense",
            "amount": 1_000,
            "transaction_at": "2025-01-05T12:00:00",
            "source_account_id": acc1,
        },
    )
    assert res.status_code == 200
    assert res.json()["target_account_id"] is None
    assert client.get(f"/api/accounts/{acc1}").json()["current_amount"] == 9_000
    assert client.get(f"/api/accounts/{acc2}").json()["current_amount"] == 20_000

    assert client.delete(f"/api/transactions/{txn_id}").status_code == 204
    assert client.delete(f"/api/transactions/{txn_id}").status_code == 404
    assert client.get(f"/api/accounts/{acc1}").json()["current_amount"] == 10_000


def test_error_mapping(client) -> None:
    acc1 = create_account(client, "acc1", 10_000)
    base = {"transaction_at": "2025-01-05T12:00:00", "source_account_id": acc1}

    same = client.post(
        "/api/transactions",
        json={**base, "type": "transfer", "amount": 100, "target_account_id": acc1},
    )
    assert same.status_code == 400

    negative = client.post(
        "/api/transactions", json={**base, "type": "expense", "amount": -1}
    )
    assert negative.status_code == 422

    huge = client.post(
        "/api/transactions", json={**base, "type": "income", "amount": 2**63}
    )
    assert huge.status_code == 422

    dangling = client.post(
        "/api/transactions",
        json={**base, "type": "expense", "amount": 100, "category_id": 404},
    )
    assert dangling.status_code == 409

    assert client.get("/api/transactions/404").status_code == 404
    assert client.get(f"/api/accounts/{acc1}").json()["current_amount"] == 10_000


def test_account_in_use_is_a_conflict(client) -> None:
    acc1 = create_account(client, "acc1", 0)
    client.post(
        "/api/transactions",
        json={
            "type": "income",
            "amount": 100,
            "transaction_at": "2025-01-05T12:00:00",
            "source_account_id": acc1,
        },
    )

    assert client.delete(f"/api/accounts/{acc1}").status_code == 409


def test_category_endpoints(client) -> None:
    res = client.post("/api/categories", json={"name": "Essentials", "type": "expense"})
    assert res.status_code == 201
    essentials = res.json()["id"]
    res = client.post(
        "/api/categories",
        json={"name": "Groceries", "type": "expense", "parent_id": essentials},
    )
    assert res.json()["parent"] == {"id": essentials, "name": "Essentials"}
    groceries = res.json()["id"]

    nested = client.post(
        "/api/categories",
        json={"name": "Food", "type": "expense", "parent_id": groceries},
    )
    assert nested.status_code == 400

    subs = client.get(f"/api/categories/{essentials}/subcategories").json()
    assert [c["name"] for c in subs] == ["Groceries"]
    roots = client.get("/api/categories", params={"roots_only": True}).json()
    assert [c["name"] for c in roots] == ["Essentials"]

    assert client.delete(f"/api/categories/{essentials}").status_code == 204
    assert client.get(f"/api/categories/{groceries}").json()["parent"] is None


def test_metrics_endpoints(client) -> None:
    acc1 = create_account(client, "acc1", 0)
    food = client.post(
        "/api/categories", json={"name": "Food", "type": "expense"}
    ).json()["id"]
    for kind, amount, category in [("income", 5_000, None), ("expense", 1_200, food)]:
        client.post(
            "/api/transactions",
            json={
                "type": kind,
                "amount": amount,
                "transaction_at": "2025-03-02T08:00:00",
                "source_account_id": acc1,
                "category_id": category,
            },
        )

    totals = client.get("/api/metrics/totals", params={"year": 2025, "month": 3})
    assert totals.json() == {"income": 5_000, "expense": 1_200, "net": 3_800}

    breakdown = client.get(
        "/api/metrics/category-breakdown",
        params={"year": 2025, "month": 3, "type": "expense"},
    ).json()
    assert breakdown == [{"category_id": food, "name": "Food", "amount": 1_200}]

    bad = client.get("/api/metrics/totals", params={"year": 2025, "month": 13})
    assert bad.status_code == 400
    zero = client.get("/api/transactions", params={"year": 2025, "month": 0})
    assert zero.status_code == 400
