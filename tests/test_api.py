from __future__ import annotations

import csv
import io
from datetime import date

import budget_monitor
import main
from database import Notification


def _category(client, headers, name="Groceries"):
    resp = client.post("/api/categories", json={"name": name}, headers=headers)
    assert resp.status_code == 201
    return resp.json()


def _expense(client, headers, category_id, amount, on=None, description="Lunch"):
    resp = client.post(
        "/api/expenses",
        json={
            "description": description,
            "amount": amount,
            "date": (on or date.today()).isoformat(),
            "category_id": category_id,
        },
        headers=headers,
    )
    assert resp.status_code == 201
    return resp.json()


def test_healthcheck(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_api_requires_token(client):
    assert client.get("/api/expenses").status_code == 401
    resp = client.get("/api/expenses", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_category_names_are_lowercased_and_unique(client, auth_headers):
    created = _category(client, auth_headers, "Groceries")
    assert created["name"] == "groceries"

    dup = client.post("/api/categories", json={"name": "GROCERIES"}, headers=auth_headers)
    assert dup.status_code == 400

    other = _category(client, auth_headers, "Pets")
    rename = client.put(
        f"/api/categories/{other['id']}", json={"name": "groceries"}, headers=auth_headers
    )
    assert rename.status_code == 400


def test_expense_crud_and_pagination(client, auth_headers):
    category = _category(client, auth_headers)
    for day in range(1, 4):
        _expense(client, auth_headers, category["id"], 10.0 * day, date(2026, 3, day))

    page = client.get("/api/expenses?page=1&limit=2", headers=auth_headers).json()
    assert page["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
    assert [e["date"] for e in page["expenses"]] == ["2026-03-03", "2026-03-02"]
    assert page["expenses"][0]["category"]["name"] == "groceries"

    ranged = client.get(
        "/api/expenses?start_date=2026-03-02&end_date=2026-03-02", headers=auth_headers
    ).json()
    assert ranged["pagination"]["total"] == 1

    expense_id = page["expenses"][0]["id"]
    updated = client.put(
        f"/api/expenses/{expense_id}",
        json={
            "description": "Dinner",
            "amount": 42.5,
            "date": "2026-03-03",
            "category_id": category["id"],
        },
        headers=auth_headers,
    )
    assert updated.status_code == 200
    assert updated.json()["amount"] == 42.5

    deleted = client.delete(f"/api/expenses/{expense_id}", headers=auth_headers)
    assert deleted.status_code == 200
    assert client.get(f"/api/expenses/{expense_id}", headers=auth_headers).status_code == 404


def test_expense_rejects_invalid_amount(client, auth_headers):
    category = _category(client, auth_headers)
    resp = client.post(
        "/api/expenses",
        json={"description": "x", "amount": 0, "date": "2026-03-01", "category_id": category["id"]},
        headers=auth_headers,
    )
    assert resp.status_code == 422


def test_rows_of_other_users_are_not_found(client, auth_headers, make_user, login_as):
    category = _category(client, auth_headers)
    expense = _expense(client, auth_headers, category["id"], 12.0)
    intruder = login_as(make_user(email="mallory@example.com"))

    assert client.get(f"/api/expenses/{expense['id']}", headers=intruder).status_code == 404
    assert client.get(f"/api/categories/{category['id']}", headers=intruder).status_code == 404
    resp = client.post(
        "/api/expenses",
        json={"description": "x", "amount": 1, "date": "2026-03-01", "category_id": category["id"]},
        headers=intruder,
    )
    assert resp.status_code == 404


def test_one_budget_per_category(client, auth_headers):
    category = _category(client, auth_headers)
    first = client.post(
        "/api/budgets", json={"category_id": category["id"], "amount": 300}, headers=auth_headers
    )
    assert first.status_code == 201
    assert first.json()["period"] == "monthly"
    assert first.json()["category"]["id"] == category["id"]

    second = client.post(
        "/api/budgets", json={"category_id": category["id"], "amount": 100}, headers=auth_headers
    )
    assert second.status_code == 400

    bad_period = client.post(
        "/api/budgets",
        json={"category_id": category["id"], "amount": 100, "period": "daily"},
        headers=auth_headers,
    )
    assert bad_period.status_code == 422


def test_threshold_validation(client, auth_headers):
    category = _category(client, auth_headers)
    budget = client.post(
        "/api/budgets", json={"category_id": category["id"], "amount": 300}, headers=auth_headers
    ).json()

    out_of_range = client.post(
        "/api/notification-thresholds",
        json={"budget_id": budget["id"], "threshold": 120},
        headers=auth_headers,
    )
    assert out_of_range.status_code == 400

    wrong_type = client.post(
        "/api/notification-thresholds",
        json={"budget_id": budget["id"], "threshold": 80, "type": "sms"},
        headers=auth_headers,
    )
    assert wrong_type.status_code == 400

    created = client.post(
        "/api/notification-thresholds",
        json={"budget_id": budget["id"], "threshold": 80},
        headers=auth_headers,
    )
    assert created.status_code == 201
    assert created.json()["budget"]["id"] == budget["id"]

    duplicate = client.post(
        "/api/notification-thresholds",
        json={"budget_id": budget["id"], "threshold": 80},
        headers=auth_headers,
    )
    assert duplicate.status_code == 400

    toggled = client.put(
        f"/api/notification-thresholds/{created.json()['id']}",
        json={"enabled": False},
        headers=auth_headers,
    )
    assert toggled.status_code == 200
    assert toggled.json()["enabled"] is False
    assert toggled.json()["threshold"] == 80


def test_budget_progress_endpoint(client, auth_headers):
    category = _category(client, auth_headers)
    budget = client.post(
        "/api/budgets",
        json={"category_id": category["id"], "amount": 200, "name": "Food"},
        headers=auth_headers,
    ).json()
    _expense(client, auth_headers, category["id"], 50.0)

    progress = client.get(f"/api/budgets/{budget['id']}/progress", headers=auth_headers)

    assert progress.status_code == 200
    assert progress.json()["percentage"] == 25
    assert progress.json()["budget"]["name"] == "Food"
    assert client.get("/api/budgets/9999/progress", headers=auth_headers).status_code == 404


def test_cron_check_sends_once_per_day(client, auth_headers, monkeypatch, sender, db_session):
    monkeypatch.setattr(budget_monitor, "send_budget_notification", sender)
    category = _category(client, auth_headers)
    budget = client.post(
        "/api/budgets", json={"category_id": category["id"], "amount": 100}, headers=auth_headers
    ).json()
    client.post(
        "/api/notification-thresholds",
        json={"budget_id": budget["id"], "threshold": 80},
        headers=auth_headers,
    )
    _expense(client, auth_headers, category["id"], 81.0)

    first = client.get("/api/cron/check-budgets")
    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["checked"] == 1
    assert body["notifications_sent"] == 1
    assert body["notifications"][0]["threshold"] == 80
    assert body["notifications"][0]["percentage"] == 81

    second = client.post("/api/cron/check-budgets")
    assert second.json()["notifications_sent"] == 0
    assert len(sender.calls) == 1
    assert db_session.query(Notification).count() == 1


def test_cron_secret_is_enforced(client, monkeypatch):
    monkeypatch.setattr(main.settings, "cron_secret", "s3cret")

    assert client.get("/api/cron/check-budgets").status_code == 401
    ok = client.get("/api/cron/check-budgets", headers={"X-Cron-Secret": "s3cret"})
    assert ok.status_code == 200


def test_cron_failure_returns_500(client, monkeypatch):
    def explode(db):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(main, "run_budget_check", explode)

    resp = client.post("/api/cron/check-budgets")

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error", "details": "database unavailable"}


def test_goal_lifecycle(client, auth_headers):
    created = client.post(
        "/api/goals",
        json={"title": "Emergency fund", "target_amount": 1000, "target_date": "2027-01-01"},
        headers=auth_headers,
    )
    assert created.status_code == 201
    goal = created.json()
    assert goal["status"] == "active"
    assert goal["priority"] == "medium"
    assert goal["current_amount"] == 0

    updated = client.put(
        f"/api/goals/{goal['id']}",
        json={
            "title": "Emergency fund",
            "target_amount": 1000,
            "target_date": "2027-01-01",
            "current_amount": 1000,
            "status": "completed",
        },
        headers=auth_headers,
    )
    assert updated.status_code == 200
    assert updated.json()["status"] == "completed"
    assert updated.json()["priority"] == "medium"

    assert client.delete(f"/api/goals/{goal['id']}", headers=auth_headers).status_code == 200
    assert client.get("/api/goals", headers=auth_headers).json() == []


def test_category_trends_and_exports(client, auth_headers):
    food = _category(client, auth_headers, "Food")
    rent = _category(client, auth_headers, "Rent")
    _expense(client, auth_headers, food["id"], 10.0, date(2026, 1, 5))
    _expense(client, auth_headers, food["id"], 15.0, date(2026, 1, 20))
    _expense(client, auth_headers, rent["id"], 900.0, date(2026, 2, 1))

    trends = client.get("/api/analytics/category-trends", headers=auth_headers).json()
    assert trends == [
        {"category": "food", "month": "2026-01", "total": 25.0},
        {"category": "rent", "month": "2026-02", "total": 900.0},
    ]

    export = client.get("/api/user/export", headers=auth_headers)
    assert export.status_code == 200
    assert "attachment" in export.headers["content-disposition"]
    data = export.json()
    assert data["statistics"]["total_expenses"] == 3
    assert data["statistics"]["total_expenses_value"] == 925.0
    assert data["user"]["email"] == "alice@example.com"

    report = client.get("/api/export-report", headers=auth_headers)
    assert report.status_code == 200
    rows = list(csv.reader(io.StringIO(report.text)))
    assert rows[0] == ["Date", "Category", "Description", "Amount"]
    assert ["food", "25.0"] in rows
