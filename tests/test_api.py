from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

import main
from database import Base, create_db_engine, make_session_factory
from invalidation import InvalidationBus
from store import SqlTransactionStore
from viewmodels import SummaryRegistry


@pytest.fixture
def client(tmp_path, monkeypatch):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'api.db'}")
    Base.metadata.create_all(engine)
    factory = make_session_factory(engine)
    bus = InvalidationBus()
    registry = SummaryRegistry(
        bus, SqlTransactionStore(factory), today=lambda: date(2026, 1, 7)
    )

    def override_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[main.get_db] = override_db
    main.app.dependency_overrides[main.get_bus] = lambda: bus
    main.app.dependency_overrides[main.get_summaries] = lambda: registry
    monkeypatch.setattr(main.scheduler_manager, "start", lambda: None)
    monkeypatch.setattr(main.scheduler_manager, "stop", lambda: None)

    with TestClient(main.app) as test_client:
        yield test_client

    registry.close()
    main.app.dependency_overrides.clear()


def test_lookup_crud(client) -> None:
    created = client.post("/api/categories", json={"name": "Food", "icon": "F"})
    assert created.status_code == 201
    category_id = created.json()["id"]

    assert client.post("/api/categories", json={"name": "food"}).status_code == 400
    assert client.post("/api/categories", json={"name": ""}).status_code == 422

    renamed = client.put(f"/api/categories/{category_id}", json={"name": "Groceries"})
    assert renamed.json()["name"] == "Groceries"
    assert client.put("/api/categories/999", json={"name": "X"}).status_code == 404

    assert client.post("/api/payment-methods", json={"name": "Card"}).status_code == 201
    assert [m["name"] for m in client.get("/api/payment-methods").json()] == ["Card"]

    assert client.delete(f"/api/categories/{category_id}").status_code == 204
    assert client.get("/api/categories").json() == []


def test_transaction_crud(client) -> None:
    establishment = client.post("/api/establishments", json={"name": "Bakery"}).json()

    created = client.post(
        "/api/transactions",
        json={
            "amount": "4.20",
            "description": "Bread",
            "occurred_at": "2026-01-07T08:15:00",
            "establishment_id": establishment["id"],
        },
    )
    assert created.status_code == 201
    body = created.json()
    assert body["amount"] == "4.20"
    assert body["date"] == "2026-01-07"
    assert body["establishment"]["name"] == "Bakery"
    assert body["category"] is None

    updated = client.put(
        f"/api/transactions/{body['id']}",
        json={"amount": "5.00", "occurred_at": "2026-01-07T08:15:00"},
    )
    assert updated.json()["amount"] == "5.00"
    assert updated.json()["establishment"] is None

    listed = client.get(
        "/api/transactions",
        params={"period": "custom", "start": "2026-01-01", "end": "2026-01-31"},
    ).json()
    assert [item["id"] for item in listed["items"]] == [body["id"]]
    assert listed["has_more"] is False

    assert client.delete(f"/api/transactions/{body['id']}").status_code == 204
    assert client.get(f"/api/transactions/{body['id']}").status_code == 404


def test_invalid_transaction_input(client) -> None:
    missing_ref = client.post(
        "/api/transactions",
        json={"amount": "1.00", "occurred_at": "2026-01-07T08:00:00", "category_id": 42},
    )
    assert missing_ref.status_code == 400

    negative = client.post(
        "/api/transactions",
        json={"amount": "-1.00", "occurred_at": "2026-01-07T08:00:00"},
    )
    assert negative.status_code == 422

    bad_period = client.get("/api/transactions", params={"period": "custom"})
    assert bad_period.status_code == 400


def test_daily_summary_follows_writes(client) -> None:
    empty = client.get("/api/summaries/daily").json()
    assert empty["status"] == "ready"
    assert len(empty["report"]["series"]) == 7
    assert Decimal(empty["report"]["period"]["total"]) == 0

    created = client.post(
        "/api/transactions",
        json={"amount": "12.50", "occurred_at": "2026-01-07T09:30:00"},
    ).json()

    report = client.get("/api/summaries/daily").json()["report"]
    assert report["period"]["total"] == "12.50"
    assert report["series"][-1]["bucket"]["label"] == "today"
    assert report["series"][-1]["average"] == "12.50"
    assert report["delta"]["kind"] == "new"
    assert report["largest"]["id"] == created["id"]

    client.delete(f"/api/transactions/{created['id']}")

    after = client.get("/api/summaries/daily").json()["report"]
    assert Decimal(after["period"]["total"]) == 0
    assert after["largest"] is None


def test_monthly_and_annual_summaries(client) -> None:
    food = client.post("/api/categories", json={"name": "Food"}).json()
    for day, amount in ((5, "30.00"), (6, "10.00")):
        client.post(
            "/api/transactions",
            json={
                "amount": amount,
                "occurred_at": f"2026-01-0{day}T12:00:00",
                "category_id": food["id"],
            },
        )

    monthly = client.get("/api/summaries/monthly/2026/1").json()["report"]
    assert monthly["period"]["total"] == "40.00"
    assert len(monthly["series"]) == 31
    assert monthly["categories"]["items"][0]["name"] == "Food"
    assert Decimal(monthly["categories"]["items"][0]["percentage"]) == 100

    annual = client.get("/api/summaries/annual/2026", params={"refresh": True}).json()
    assert annual["status"] == "ready"
    assert len(annual["report"]["series"]) == 12
    assert annual["report"]["series"][0]["total"] == "40.00"

    assert client.get("/api/summaries/monthly/2026/13").status_code == 400
    assert client.get("/api/summaries/daily", params={"days": 0}).status_code == 422


def test_calendar(client) -> None:
    body = client.get("/api/calendar/2025").json()

    assert body["year"] == 2025
    assert [month["label"] for month in body["months"]][:2] == ["Jan", "Feb"]
    assert body["months"][1]["end"] == "2025-02-28"
    assert client.get("/api/calendar/0").status_code == 400
