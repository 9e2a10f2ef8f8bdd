"""Tests for /health endpoint."""


def test_health_endpoint_ok(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data == {
        "status": "ok",
        "version": "0.1.0",
        "active_fetches": 0,
        "max_concurrent_fetches": 20,
    }
    assert "x-request-id" in resp.headers


def test_health_reports_active_fetches(client, app):
    app.state.governor.fetch_gate._active = 3
    data = client.get("/health").json()
    assert data["active_fetches"] == 3


def test_health_not_rate_limited(client):
    for _ in range(70):
        assert client.get("/health").status_code == 200
