import uuid
from unittest.mock import MagicMock, patch


def new_subscription():
    return f"sub_{uuid.uuid4().hex[:8]}"


def create_domain(client, subscription_id=None, domain="https://example.com"):
    response = client.post("/api/v1/assurance/domains", json={
        "subscription_id": subscription_id or new_subscription(),
        "domain": domain,
        "frequency": "biweekly",
        "day_of_week": 2,
        "time_of_day": "06:30",
        "email_recipients": ["owner@example.com"],
    })
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_domain_lifecycle(client):
    subscription_id = new_subscription()
    domain = create_domain(client, subscription_id)

    assert domain["active"] is True
    assert domain["frequency"] == "biweekly"
    assert domain["next_run_at"] is not None

    listed = client.get("/api/v1/assurance/domains", params={"subscription_id": subscription_id}).json()["data"]
    assert [d["id"] for d in listed] == [domain["id"]]

    duplicate = client.post("/api/v1/assurance/domains", json={"subscription_id": subscription_id, "domain": "example.com"})
    assert duplicate.status_code == 409

    stopped = client.delete(f"/api/v1/assurance/domains/{domain['id']}")
    assert stopped.json()["data"]["active"] is False
    assert client.get(f"/api/v1/assurance/domains/{domain['id']}").json()["data"]["next_run_at"] is None


def test_invalid_schedule_is_rejected(client):
    response = client.post("/api/v1/assurance/domains", json={
        "subscription_id": new_subscription(),
        "domain": "https://example.com",
        "time_of_day": "24:00",
    })
    assert response.status_code == 422


def test_empty_history_views(client):
    domain = create_domain(client)

    scans = client.get(f"/api/v1/assurance/domains/{domain['id']}/scans")
    trend = client.get(f"/api/v1/assurance/domains/{domain['id']}/trend")
    stats = client.get(f"/api/v1/assurance/domains/{domain['id']}/statistics")

    assert scans.json()["data"] == []
    assert trend.json()["data"] == []
    assert stats.json()["data"]["total_scans"] == 0
    assert stats.json()["data"]["trend"] == "stable"
    assert client.get("/api/v1/assurance/domains/missing/statistics").status_code == 404


@patch("app.features.assurance.routes.domains.run_assurance_scan")
def test_manual_scan_is_queued(mock_task, client):
    mock_task.delay.return_value = MagicMock(id="task-assurance-1")
    domain = create_domain(client)

    response = client.post(f"/api/v1/assurance/domains/{domain['id']}/scan")

    assert response.status_code == 202
    assert response.json()["data"]["task_id"] == "task-assurance-1"
    mock_task.delay.assert_called_once_with(domain["id"], "manual")


@patch("app.features.assurance.routes.domains.run_assurance_scan")
def test_manual_scan_of_inactive_domain(mock_task, client):
    domain = create_domain(client)
    client.delete(f"/api/v1/assurance/domains/{domain['id']}")

    response = client.post(f"/api/v1/assurance/domains/{domain['id']}/scan")

    assert response.status_code == 409
    mock_task.delay.assert_not_called()


def test_alert_endpoints_for_quiet_domain(client):
    domain = create_domain(client)

    alerts = client.get("/api/v1/assurance/alerts", params={"domain_id": domain["id"], "severity": "critical"})
    summary = client.get("/api/v1/assurance/alerts/summary", params={"domain_id": domain["id"]})

    assert alerts.json()["data"]["total"] == 0
    assert summary.json()["data"]["by_severity"] == {"low": 0, "moderate": 0, "high": 0, "critical": 0}
    assert client.post("/api/v1/assurance/alerts/missing/resolve", json={"resolved_by": "ops"}).status_code == 404
    assert client.get("/api/v1/assurance/alerts", params={"severity": "apocalyptic"}).status_code == 422


def test_alert_rule_crud(client):
    domain = create_domain(client)

    created = client.post("/api/v1/assurance/alert-rules", json={
        "name": "Big drops",
        "domain_id": domain["id"],
        "score_drop_threshold": 10,
        "severity_levels": ["high", "critical"],
    })
    assert created.status_code == 201
    rule = created.json()["data"]
    assert rule["severity_levels"] == ["high", "critical"]
    assert rule["cooldown_minutes"] == 60

    updated = client.patch(f"/api/v1/assurance/alert-rules/{rule['id']}", json={"enabled": False})
    assert updated.json()["data"]["enabled"] is False

    listed = client.get("/api/v1/assurance/alert-rules", params={"domain_id": domain["id"]}).json()["data"]
    assert [r["id"] for r in listed] == [rule["id"]]

    assert client.delete(f"/api/v1/assurance/alert-rules/{rule['id']}").status_code == 200
    assert client.get(f"/api/v1/assurance/alert-rules/{rule['id']}").status_code == 404


def test_alert_rule_webhook_needs_url(client):
    response = client.post("/api/v1/assurance/alert-rules", json={"name": "Hook", "notify_webhook": True})
    assert response.status_code == 409
