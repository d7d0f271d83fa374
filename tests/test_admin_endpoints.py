import pytest

from models.users_db import create_user
from services import fiscal_calendar
from tests.utils import login_user


def _january(tenant):
    return next(p for p in fiscal_calendar.list_periods(tenant, 2025) if p["period"] == 1)


@pytest.mark.db
def test_admin_period_lifecycle(client, admin_user, tenant):
    resp = client.post("/admin/periods/initialize", json={"year": 2025})
    assert resp.status_code == 201
    assert resp.get_json() == {"year": 2025, "created": 12}

    jan = _january(tenant)
    resp = client.post(f"/admin/periods/{jan['id']}/close")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "closed"
    assert resp.get_json()["closed_by"] == "admin"

    resp = client.post(f"/admin/periods/{jan['id']}/reopen")
    assert resp.get_json()["status"] == "open"

    # lock needs a closed period
    resp = client.post(f"/admin/periods/{jan['id']}/lock")
    assert resp.status_code == 400

    client.post(f"/admin/periods/{jan['id']}/close")
    resp = client.post(f"/admin/periods/{jan['id']}/lock")
    assert resp.get_json()["status"] == "locked"

    resp = client.post(f"/admin/periods/{jan['id']}/reopen")
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "period_locked"


@pytest.mark.db
def test_admin_creates_single_period(client, admin_user):
    resp = client.post("/admin/periods", json={"year": 2026, "period": 3,
                                               "start_date": "2026-03-01",
                                               "end_date": "2026-03-31"})
    assert resp.status_code == 201
    assert resp.get_json()["name"] == "2026-P03"

    resp = client.post("/admin/periods", json={"year": 2026, "period": 4,
                                               "start_date": "2026-03-15",
                                               "end_date": "2026-04-30"})
    assert resp.status_code == 400


@pytest.mark.db
def test_regular_user_gets_403(client, regular_user, tenant, fiscal_year):
    jan = _january(tenant)
    for path in ("/admin/periods/initialize", f"/admin/periods/{jan['id']}/close",
                 "/admin/accounts/seed"):
        resp = client.post(path, json={"year": 2025})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "permission_denied"
    assert client.get("/admin/audit").status_code == 403
    assert fiscal_calendar.get_period(tenant, jan["id"])["status"] == "open"


@pytest.mark.db
def test_anonymous_gets_401(client):
    assert client.get("/admin/audit").status_code == 401


@pytest.mark.db
def test_seed_accounts(client, admin_user):
    resp = client.post("/admin/accounts/seed")
    assert resp.status_code == 200
    assert resp.get_json()["created"] > 0
    assert client.post("/admin/accounts/seed").get_json()["created"] == 0


@pytest.mark.db
def test_manage_users(client, admin_user, tenant):
    resp = client.post("/admin/users", json={"username": "dana", "password": "dana-pass"})
    assert resp.status_code == 201
    assert resp.get_json() == {"username": "dana", "tenant_id": tenant}

    users = client.get("/admin/users").get_json()
    assert {u["username"] for u in users} == {"admin", "dana"}

    resp = client.post("/admin/users", json={"username": "dana", "password": "x"})
    assert resp.status_code == 400


@pytest.mark.db
def test_resolve_alert_endpoint(client, admin_user, chart):
    client.post("/api/invoices", json={"number": "INV-1", "customer": "Initech",
                                       "issue_date": "2025-03-01", "total_amount": "20",
                                       "status": "sent"})
    client.post("/api/reconciliation/run", json={})
    alert = client.get("/api/reconciliation/alerts").get_json()[0]

    resp = client.post(f"/admin/alerts/{alert['id']}/resolve", json={"notes": "booked"})
    assert resp.status_code == 200
    assert resp.get_json()["resolved_by"] == "admin"
    assert client.get("/api/reconciliation/alerts").get_json() == []

    resp = client.post(f"/admin/alerts/{alert['id']}/resolve", json={})
    assert resp.status_code == 400


@pytest.mark.db
def test_audit_views(client, admin_user, tenant):
    rows = client.get("/admin/audit").get_json()
    assert any(r["action"] == "auth.login.success" for r in rows)

    body = client.get("/admin/audit/verify").get_json()
    assert body["ok"] is True
    assert body["checked"] >= 1

    resp = client.get("/admin/audit.csv")
    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"
    assert "attachment" in resp.headers["Content-Disposition"]
    assert resp.get_data(as_text=True).startswith("id,ts,tenant_id")


@pytest.mark.db
def test_other_tenant_admin_cannot_touch_periods(client, tenant, fiscal_year):
    create_user("root2", "root2-pass", role="admin", tenant_id="globex")
    login_user(client, "root2", "root2-pass")
    jan = _january(tenant)
    resp = client.post(f"/admin/periods/{jan['id']}/close")
    assert resp.status_code == 404
    assert fiscal_calendar.get_period(tenant, jan["id"])["status"] == "open"
