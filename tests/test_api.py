import base64
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import get_db
from database import Base
from main import app


@pytest.fixture
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
    yield TestClient(app)
    app.dependency_overrides.clear()
    engine.dispose()


def _register(client, username="alice"):
    resp = client.post(
        "/api/register",
        json={
            "username": username,
            "password": "secret123",
            "email": f"{username}@example.com",
            "fullName": username.title(),
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _headers(session):
    return {"X-CSRF-Token": session["csrfToken"]}


def test_requires_login(client) -> None:
    assert client.get("/api/transactions").status_code == 401
    assert client.get("/api/summary").status_code == 401


def test_register_login_logout(client) -> None:
    session = _register(client)
    assert session["user"]["isAdmin"] is True
    assert "passwordHash" not in session["user"]

    assert client.get("/api/user").json()["user"]["username"] == "alice"

    assert client.post("/api/logout").status_code == 204
    assert client.get("/api/user").status_code == 401

    bad = client.post("/api/login", json={"username": "alice", "password": "nope"})
    assert bad.status_code == 401
    ok = client.post("/api/login", json={"username": "alice", "password": "secret123"})
    assert ok.status_code == 200
    assert ok.json()["user"]["lastLogin"] is not None


def test_mutations_require_csrf_token(client) -> None:
    _register(client)
    food = client.get("/api/categories").json()[1]

    resp = client.post(
        "/api/transactions",
        json={
            "amount": 10,
            "date": "2025-02-01",
            "description": "Lunch",
            "categoryId": food["id"],
        },
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid CSRF token"


def test_transaction_triggers_budget_alert(client) -> None:
    session = _register(client)
    headers = _headers(session)
    food = next(c for c in client.get("/api/categories").json() if c["name"] == "Food")
    today = date.today().isoformat()

    budget = client.post(
        "/api/budgets",
        json={"categoryId": food["id"], "amount": 100, "period": "monthly"},
        headers=headers,
    )
    assert budget.status_code == 201

    txn = client.post(
        "/api/transactions",
        json={
            "amount": 95,
            "date": today,
            "description": "Groceries",
            "categoryId": food["id"],
            "isIncome": False,
        },
        headers=headers,
    )
    assert txn.status_code == 201
    assert txn.json()["amount"] == 95.0

    [alert] = client.get("/api/alerts").json()
    assert alert["type"] == "warning"
    assert "95%" in alert["message"]

    read = client.post(f"/api/alerts/{alert['id']}/read", headers=headers)
    assert read.json()["read"] is True

    [row] = client.get("/api/budgets").json()
    assert row["spent"] == 95.0
    assert row["percentage"] == 95.0
    assert row["category"]["name"] == "Food"

    summary = client.get("/api/summary").json()
    assert summary["monthlyExpenses"] == 95.0
    assert summary["balance"] == -95.0
    assert summary["budgetDifference"] == pytest.approx(-5.0)
    assert summary["nextIncomeDate"] is None


def test_validation_and_foreign_rows(client) -> None:
    alice = _register(client)
    food = client.get("/api/categories").json()[1]
    negative = client.post(
        "/api/transactions",
        json={
            "amount": -1,
            "date": "2025-02-01",
            "description": "Refund",
            "categoryId": food["id"],
        },
        headers=_headers(alice),
    )
    assert negative.status_code in (400, 422)

    created = client.post(
        "/api/transactions",
        json={
            "amount": 3,
            "date": "2025-02-01",
            "description": "Coffee",
            "categoryId": food["id"],
        },
        headers=_headers(alice),
    ).json()

    client.post("/api/logout")
    bob = _register(client, "bob")
    resp = client.delete(f"/api/transactions/{created['id']}", headers=_headers(bob))
    assert resp.status_code == 404
    assert client.get("/api/admin/users").status_code == 403


def test_csv_upload_and_export(client) -> None:
    session = _register(client)
    food = client.get("/api/categories").json()[1]
    content = (
        "amount,date,description,categoryId,isIncome\n"
        f"12.5,2025-02-01,Lunch,{food['id']},false\n"
        "oops,2025-02-02,Broken,1,false\n"
    )

    resp = client.post(
        "/api/transactions/upload-csv",
        json={"csvData": base64.b64encode(content.encode()).decode()},
        headers=_headers(session),
    )
    assert resp.status_code == 201
    assert resp.json()["created"] == 1
    assert resp.json()["errors"] == ["Row 2: Invalid amount"]

    bad = client.post(
        "/api/transactions/upload-csv",
        json={"csvData": "not base64!"},
        headers=_headers(session),
    )
    assert bad.status_code == 400

    exported = client.get("/api/transactions/export.csv")
    assert exported.headers["content-type"].startswith("text/csv")
    assert "2025-02-01,12.50,Lunch,Food" in exported.text


def test_forum_and_deals(client) -> None:
    session = _register(client)
    headers = _headers(session)

    topic = client.post(
        "/api/forum", json={"title": "Tips", "content": "Go"}, headers=headers
    ).json()
    client.post(f"/api/forum/{topic['id']}/replies", json={"content": "Yes"}, headers=headers)
    liked = client.post(f"/api/forum/{topic['id']}/like", headers=headers).json()
    assert liked["likes"] == 1

    detail = client.get(f"/api/forum/{topic['id']}").json()
    assert detail["views"] == 1
    assert detail["replies"][0]["user"]["username"] == "alice"
    assert client.get("/api/forum/999").status_code == 404

    deal = client.post(
        "/api/deals",
        json={"title": "10% off", "description": "Groceries", "company": "Shop"},
        headers=headers,
    )
    assert deal.status_code == 201
    [listed] = client.get("/api/deals").json()
    assert listed["user"]["username"] == "alice"


def test_admin_settings_and_backup(client) -> None:
    session = _register(client)
    headers = _headers(session)

    settings = client.put(
        "/api/admin/settings",
        json={"allowRegistration": False, "appName": "Spend"},
        headers=headers,
    )
    assert settings.status_code == 200
    assert settings.json()["appName"] == "Spend"

    snapshot = client.get("/api/admin/database/backup").json()
    assert snapshot["users"][0]["username"] == "alice"

    restored = client.post(
        "/api/admin/database/restore", json=snapshot, headers=headers
    )
    assert restored.status_code == 200

    client.post("/api/logout")
    blocked = client.post(
        "/api/register",
        json={
            "username": "bob",
            "password": "secret123",
            "email": "bob@example.com",
            "fullName": "Bob",
        },
    )
    assert blocked.status_code == 403


def test_conflicting_backup_is_rejected(client) -> None:
    session = _register(client)
    headers = _headers(session)
    snapshot = client.get("/api/admin/database/backup").json()
    snapshot["users"].append({**snapshot["users"][0], "id": 99})

    resp = client.post("/api/admin/database/restore", json=snapshot, headers=headers)

    assert resp.status_code == 400
    [user] = client.get("/api/admin/users").json()
    assert user["username"] == "alice"
