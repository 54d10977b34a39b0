import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
import main
from main import app, get_db

AS_OF = "2024-03-15T10:00:00+11:00"


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: the lifespan (scheduler, file database) stays off.
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_cycle(client: TestClient) -> dict:
    response = client.post(
        "/api/cycles",
        json={
            "start_date": "2024-03-15",
            "end_date": "2024-04-14",
            "starting_balance_cents": 100000,
            "income_planned_cents": 300000,
            "target_end_balance_cents": 50000,
        },
    )
    assert response.status_code == 201
    return response.json()


def _create_lunch(client: TestClient) -> dict:
    response = client.post(
        "/api/recurring",
        json={
            "name": "Lunch",
            "amount_cents": 5000,
            "frequency": "weekly",
            "day_of_week": 5,
        },
    )
    assert response.status_code == 201
    return response.json()


def test_current_cycle_dates_endpoint(client: TestClient) -> None:
    response = client.get(
        "/api/cycles/current-dates", params={"as_of": "2024-03-14T14:00:00+00:00"}
    )
    assert response.json() == {"start_date": "2024-03-15", "end_date": "2024-04-14"}


def test_metrics_flow(client: TestClient) -> None:
    cycle = _create_cycle(client)
    lunch = _create_lunch(client)
    assert lunch["schedule"] == "Every Friday"

    metrics = client.get(f"/api/cycles/{cycle['id']}/metrics", params={"as_of": AS_OF})
    body = metrics.json()
    assert body["ready"] is True
    assert body["planned_source"] == "templates"
    assert body["planned_expenses_cents"] == 25000
    assert body["remaining_discretionary_cents"] == 375000
    assert body["start_date"] == "2024-03-15"

    spend = client.post(
        "/api/transactions",
        json={
            "cycle_id": cycle["id"],
            "date": "2024-03-20",
            "description": "Groceries",
            "amount_cents": -12000,
        },
    )
    assert spend.status_code == 201
    assert spend.json()["origin"] == {"kind": "manual"}

    body = client.get("/api/metrics", params={"as_of": AS_OF}).json()
    assert body["current_balance_cents"] == 388000
    assert body["target_variance_cents"] == 338000


def test_generate_planned_twice(client: TestClient) -> None:
    cycle = _create_cycle(client)
    lunch = _create_lunch(client)

    preview = client.get(f"/api/cycles/{cycle['id']}/planned/preview").json()
    assert len(preview) == 5
    assert preview[0]["origin"] == {
        "kind": "recurring",
        "recurring_transaction_id": lunch["id"],
    }

    assert client.post(f"/api/cycles/{cycle['id']}/planned").json() == {"created": 5}
    assert client.post(f"/api/cycles/{cycle['id']}/planned").json() == {"created": 0}

    planned = client.get(
        f"/api/cycles/{cycle['id']}/transactions", params={"is_planned": "true"}
    ).json()
    assert len(planned) == 5
    assert all(t["amount_cents"] == -5000 for t in planned)

    paid = client.post(f"/api/transactions/{planned[0]['id']}/paid").json()
    assert paid["is_planned"] is False


def test_invalid_recurring_template_is_a_bad_request(client: TestClient) -> None:
    response = client.post(
        "/api/recurring",
        json={"name": "Rent", "amount_cents": 180000, "frequency": "monthly"},
    )
    assert response.status_code == 400
    assert client.get("/api/recurring").json() == []


def test_recurring_occurrences_default_to_open_cycle(client: TestClient) -> None:
    _create_cycle(client)
    lunch = _create_lunch(client)
    client.put("/api/settings/payday", json={"payday_date": "2024-03-29"})

    body = client.get(f"/api/recurring/{lunch['id']}/occurrences").json()
    assert body["start"] == "2024-03-15"
    assert body["dates"] == ["2024-03-15", "2024-03-22", "2024-04-05", "2024-04-12"]


def test_missing_resources_are_404(client: TestClient) -> None:
    assert client.get("/api/cycles/current").status_code == 404
    assert client.get("/api/cycles/99/metrics").status_code == 404
    assert client.delete("/api/transactions/99").status_code == 404
    assert client.get("/api/metrics").json() == {"ready": False}


def test_second_open_cycle_is_rejected(client: TestClient) -> None:
    _create_cycle(client)
    response = client.post(
        "/api/cycles", json={"start_date": "2024-04-15", "end_date": "2024-05-14"}
    )
    assert response.status_code == 400


def test_close_cycle_rolls_over(client: TestClient) -> None:
    cycle = _create_cycle(client)
    response = client.post(
        f"/api/cycles/{cycle['id']}/close", json={"starting_balance_cents": 123400}
    )
    assert response.status_code == 201
    body = response.json()
    assert body["start_date"] == "2024-04-15"
    assert body["end_date"] == "2024-05-14"
    assert body["starting_balance_cents"] == 123400
    assert client.get("/api/cycles/current").json()["id"] == body["id"]


def test_quick_add_and_merchant_rules(client: TestClient) -> None:
    _create_cycle(client)
    category = client.post(
        "/api/categories", json={"name": "Transport", "type": "need"}
    ).json()
    client.post(
        "/api/merchant-rules",
        json={"merchant_match": "opal", "default_category_id": category["id"]},
    )

    match = client.get("/api/merchant-rules/match", params={"merchant": "Opal Card"})
    assert match.json()["category"]["id"] == category["id"]

    created = client.post(
        "/api/transactions/quick-add",
        json={
            "amount_cents": 4000,
            "description": "Top up",
            "merchant": "Opal Card",
            "date": "2024-03-18",
        },
    )
    assert created.status_code == 201
    assert created.json()["category_id"] == category["id"]
    assert created.json()["amount_cents"] == -4000

    in_use = client.delete(f"/api/categories/{category['id']}")
    assert in_use.status_code == 400


def test_duplicate_recurring_occurrence_is_a_bad_request(client: TestClient) -> None:
    cycle = _create_cycle(client)
    lunch = _create_lunch(client)
    assert client.post(f"/api/cycles/{cycle['id']}/planned").json() == {"created": 5}

    response = client.post(
        "/api/transactions",
        json={
            "cycle_id": cycle["id"],
            "date": "2024-03-15",
            "description": "Lunch",
            "amount_cents": -5000,
            "origin": {"kind": "recurring", "recurring_transaction_id": lunch["id"]},
        },
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "This recurring occurrence already exists"


def test_lifespan_creates_tables_and_runs_scheduler(monkeypatch) -> None:
    calls = []

    class RecordingScheduler:
        def start(self) -> None:
            calls.append("start")

        def stop(self) -> None:
            calls.append("stop")

    monkeypatch.setattr(main, "init_db", lambda: calls.append("init_db"))
    monkeypatch.setattr(main, "scheduler_manager", RecordingScheduler())

    with TestClient(app):
        assert calls == ["init_db", "start"]
    assert calls == ["init_db", "start", "stop"]
