from datetime import date

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from database import Base
from main import app, get_db, get_notifier


class RecordingNotifier:
    def __init__(self) -> None:
        self.events = []

    def ledger_event(self, event, payload):
        self.events.append((event, payload))
        return True


def make_client():
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

    notifier = RecordingNotifier()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    return TestClient(app), notifier


def signup(client: TestClient, email: str = "ana@example.com") -> dict:
    resp = client.post(
        "/users",
        json={"name": "Ana", "email": email, "password": "correct-horse"},
    )
    assert resp.status_code == 201
    token = client.post(
        "/auth/token", json={"email": email, "password": "correct-horse"}
    ).json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def test_auth_flow_and_errors() -> None:
    client, _ = make_client()
    headers = signup(client)

    dup = client.post(
        "/users",
        json={"name": "Ana", "email": "ANA@example.com", "password": "correct-horse"},
    )
    assert dup.status_code == 409
    assert dup.json()["error"] == "conflict"

    bad = client.post(
        "/auth/token", json={"email": "ana@example.com", "password": "wrong-pass"}
    )
    assert bad.status_code == 401

    assert client.get("/accounts/me").status_code == 401
    assert (
        client.get("/accounts/me", headers={"Authorization": "Bearer nope"}).status_code
        == 401
    )
    missing = client.get("/accounts/me", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"

    me = client.get("/users/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == "ana@example.com"
    assert "password_hash" not in me.json()


def test_transaction_lifecycle_over_http() -> None:
    client, notifier = make_client()
    headers = signup(client)

    account = client.post(
        "/accounts", json={"current_value_cents": 100_067}, headers=headers
    )
    assert account.status_code == 201
    account_id = account.json()["id"]
    assert account.json()["currency"] == "BRL"

    category = client.post(
        "/categories", json={"name": "Food", "account_id": account_id}, headers=headers
    )
    assert category.status_code == 201

    created = client.post(
        "/transactions",
        json={
            "account_id": account_id,
            "category_id": category.json()["id"],
            "value_cents": 12_067,
            "type": "output",
            "destination": "Market",
            "occurred_at": "2025-03-10T12:00:00",
        },
        headers=headers,
    )
    assert created.status_code == 201
    txn_id = created.json()["id"]
    assert client.get("/accounts/me", headers=headers).json()[
        "current_value_cents"
    ] == 88_000
    assert notifier.events[-1][0] == "transaction.created"

    listed = client.get(
        "/transactions",
        params={"period": "month", "month": "2025-03"},
        headers=headers,
    )
    assert listed.status_code == 200
    assert [t["id"] for t in listed.json()] == [txn_id]

    stats = client.get(
        "/transactions/statistics",
        params={"period": "month", "month": "2025-03"},
        headers=headers,
    )
    assert stats.json()["expense_cents"] == 12_067

    patched = client.patch(
        f"/transactions/{txn_id}", json={"value_cents": 2_067}, headers=headers
    )
    assert patched.status_code == 200
    assert client.get("/accounts/me", headers=headers).json()[
        "current_value_cents"
    ] == 98_000

    deleted = client.delete(f"/transactions/{txn_id}", headers=headers)
    assert deleted.status_code == 204
    assert client.get("/accounts/me", headers=headers).json()[
        "current_value_cents"
    ] == 100_067
    assert client.get(f"/transactions/{txn_id}", headers=headers).status_code == 404
    assert [event for event, _ in notifier.events] == [
        "transaction.created",
        "transaction.updated",
        "transaction.deleted",
    ]


def test_validation_errors_use_400() -> None:
    client, _ = make_client()
    headers = signup(client)
    account_id = client.post("/accounts", json={}, headers=headers).json()["id"]
    category_id = client.post(
        "/categories", json={"name": "Food", "account_id": account_id}, headers=headers
    ).json()["id"]

    zero = client.post(
        "/transactions",
        json={
            "account_id": account_id,
            "category_id": category_id,
            "value_cents": 0,
            "type": "output",
        },
        headers=headers,
    )
    assert zero.status_code == 400
    assert zero.json()["error"] == "validation_error"
    assert zero.json()["errors"]

    bad_period = client.get(
        "/transactions", params={"period": "month", "month": "March"}, headers=headers
    )
    assert bad_period.status_code == 400

    card = client.post(
        "/credit-cards",
        json={
            "account_id": account_id,
            "company": "Nubank",
            "limit_cents": 500_000,
            "close_day": 10,
            "expire_day": 20,
        },
        headers=headers,
    )
    assert card.status_code == 201
    direct = client.patch(
        f"/credit-cards/{card.json()['id']}",
        json={"available_limit_cents": 1},
        headers=headers,
    )
    assert direct.status_code == 400

    bad_type = client.get(
        "/transactions", params={"type": "refund"}, headers=headers
    )
    assert bad_type.status_code == 400
    assert bad_type.json()["detail"] == "Invalid transaction type"


def test_invoice_routes() -> None:
    client, notifier = make_client()
    headers = signup(client)
    account_id = client.post(
        "/accounts", json={"current_value_cents": 50_000}, headers=headers
    ).json()["id"]
    category_id = client.post(
        "/categories", json={"name": "Food", "account_id": account_id}, headers=headers
    ).json()["id"]
    card_id = client.post(
        "/credit-cards",
        json={
            "account_id": account_id,
            "company": "Nubank",
            "limit_cents": 500_000,
            "close_day": 10,
            "expire_day": 20,
        },
        headers=headers,
    ).json()["id"]

    txn = client.post(
        "/transactions",
        json={
            "account_id": account_id,
            "category_id": category_id,
            "value_cents": 10_000,
            "type": "output",
            "credit_card_id": card_id,
            "occurred_at": "2025-03-05T09:00:00",
        },
        headers=headers,
    ).json()
    invoice_id = txn["invoice_id"]

    detail = client.get(f"/invoices/{invoice_id}", headers=headers)
    assert detail.status_code == 200
    assert detail.json()["invoice"]["closing_date"] == "2025-03-10"
    assert detail.json()["total_value_cents"] == 10_000

    duplicate = client.post(
        "/invoices",
        json={
            "credit_card_id": card_id,
            "closing_date": "2025-03-10",
            "due_date": "2025-04-20",
        },
        headers=headers,
    )
    assert duplicate.status_code == 409

    assert client.delete(f"/invoices/{invoice_id}", headers=headers).status_code == 409
    assert client.delete(f"/credit-cards/{card_id}", headers=headers).status_code == 409

    paid = client.post(f"/invoices/{invoice_id}/pay", headers=headers)
    assert paid.status_code == 200
    assert paid.json()["paid_value_cents"] == 10_000
    assert notifier.events[-1][0] == "invoice.paid"

    card = client.get(f"/credit-cards/{card_id}", headers=headers).json()
    assert card["available_limit_cents"] == 500_000
    assert client.get("/accounts/me", headers=headers).json()[
        "current_value_cents"
    ] == 40_000

    invoices = client.get("/invoices", headers=headers).json()
    assert [i["is_open"] for i in invoices] == [False]
    assert [i["total_value_cents"] for i in invoices] == [10_000]

    stats = client.get(f"/invoices/statistics/{card_id}", headers=headers)
    assert stats.status_code == 200
    assert stats.json()["total_invoices"] == 1
    assert stats.json()["highest_value_cents"] == 10_000
    assert stats.json()["monthly_breakdown"] == [
        {"month": "2025-04", "value_cents": 10_000, "count": 1}
    ]
    ranged = client.get(
        f"/invoices/statistics/{card_id}",
        params={"start": "2025-05-01", "end": "2025-05-31"},
        headers=headers,
    )
    assert ranged.json()["total_invoices"] == 0
    bad_start = client.get(
        f"/invoices/statistics/{card_id}", params={"start": "May"}, headers=headers
    )
    assert bad_start.status_code == 400


def test_other_users_resources_are_hidden() -> None:
    client, _ = make_client()
    ana = signup(client)
    bia = signup(client, email="bia@example.com")
    ana_account = client.post("/accounts", json={}, headers=ana).json()["id"]
    client.post("/accounts", json={}, headers=bia)

    stolen = client.post(
        "/categories", json={"name": "Food", "account_id": ana_account}, headers=bia
    )
    assert stolen.status_code == 404


def test_holding_and_moviment_routes() -> None:
    client, _ = make_client()
    headers = signup(client)
    account_id = client.post(
        "/accounts", json={"current_value_cents": 100_000}, headers=headers
    ).json()["id"]
    holding_id = client.post(
        "/holdings", json={"account_id": account_id, "name": "CDB"}, headers=headers
    ).json()["id"]

    moviment = client.post(
        "/moviment",
        json={
            "account_id": account_id,
            "holding_id": holding_id,
            "value_cents": 30_000,
            "type": "input",
        },
        headers=headers,
    )
    assert moviment.status_code == 201

    holdings = client.get("/holdings", headers=headers).json()
    assert holdings[0]["total_cents"] == 30_000
    assert len(holdings[0]["moviments"]) == 1

    removed = client.delete(f"/moviment/{moviment.json()['id']}", headers=headers)
    assert removed.status_code == 204
    assert client.get("/accounts/me", headers=headers).json()[
        "current_value_cents"
    ] == 100_000


def test_planning_by_month_route() -> None:
    client, _ = make_client()
    headers = signup(client)
    account_id = client.post("/accounts", json={}, headers=headers).json()["id"]
    category_id = client.post(
        "/categories", json={"name": "Food", "account_id": account_id}, headers=headers
    ).json()["id"]
    created = client.post(
        "/planning",
        json={
            "account_id": account_id,
            "title": "March",
            "month": "2025-03-15",
            "limit_cents": 100_000,
            "categories": [{"category_id": category_id, "limit_cents": 40_000}],
        },
        headers=headers,
    )
    assert created.status_code == 201

    found = client.get("/planning/month/2025/3", headers=headers)
    assert found.status_code == 200
    assert found.json()["planning"]["id"] == created.json()["id"]
    assert found.json()["statistics"]["total_category_limits_cents"] == 40_000
    assert found.json()["statistics"]["usage_percentage"] == 0.0

    assert client.get("/planning/month/2025/13", headers=headers).status_code == 400
    missing = client.get("/planning/month/2025/4", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"


def test_update_and_delete_current_user() -> None:
    client, _ = make_client()
    headers = signup(client)
    account_id = client.post(
        "/accounts", json={"current_value_cents": 10_000}, headers=headers
    ).json()["id"]
    category_id = client.post(
        "/categories", json={"name": "Food", "account_id": account_id}, headers=headers
    ).json()["id"]
    client.post(
        "/transactions",
        json={
            "account_id": account_id,
            "category_id": category_id,
            "value_cents": 1_000,
            "type": "output",
        },
        headers=headers,
    )

    updated = client.patch(
        "/users/me",
        json={
            "name": "Ana Maria",
            "phone": "+55 11 99999-0000",
            "password": "new-horse-1",
        },
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["name"] == "Ana Maria"
    assert updated.json()["phone"] == "+55 11 99999-0000"
    assert client.patch(
        "/users/me", json={"email": "other@example.com"}, headers=headers
    ).status_code == 400

    relogin = client.post(
        "/auth/token", json={"email": "ana@example.com", "password": "new-horse-1"}
    )
    assert relogin.status_code == 200

    assert client.delete("/users/me", headers=headers).status_code == 204
    assert client.get("/users/me", headers=headers).status_code == 404
    assert client.get("/accounts/me", headers=headers).status_code == 404
    gone = client.post(
        "/auth/token", json={"email": "ana@example.com", "password": "new-horse-1"}
    )
    assert gone.status_code == 401


def test_default_period_uses_local_today(monkeypatch) -> None:
    client, _ = make_client()
    headers = signup(client)
    account_id = client.post("/accounts", json={}, headers=headers).json()["id"]
    category_id = client.post(
        "/categories", json={"name": "Food", "account_id": account_id}, headers=headers
    ).json()["id"]
    txn_id = client.post(
        "/transactions",
        json={
            "account_id": account_id,
            "category_id": category_id,
            "value_cents": 1_000,
            "type": "input",
            "occurred_at": "2025-03-10T12:00:00",
        },
        headers=headers,
    ).json()["id"]

    monkeypatch.setattr(main, "local_today", lambda: date(2025, 3, 20))
    march = client.get("/transactions", headers=headers)
    assert [t["id"] for t in march.json()] == [txn_id]

    monkeypatch.setattr(main, "local_today", lambda: date(2025, 4, 2))
    assert client.get("/transactions", headers=headers).json() == []
