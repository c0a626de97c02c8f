from __future__ import annotations


def test_health_ok(app_client):
    _app, client = app_client
    res = client.get("/health")
    assert res.status_code == 200
    data = res.get_json()
    assert data["status"] == "ok"
    assert data["db"] == "ok"
    assert data["time"].endswith("Z")
    assert "version" in data


def test_health_degraded_when_db_unreachable(app_client, monkeypatch):
    _app, client = app_client
    import db as dbmod

    monkeypatch.setattr(dbmod, "engine", None)
    res = client.get("/health")
    assert res.status_code == 503
    assert res.get_json()["db"] == "error"


def test_version_and_request_id(app_client):
    _app, client = app_client
    res = client.get("/version", headers={"X-Request-ID": "abc-123"})
    assert res.status_code == 200
    data = res.get_json()
    assert data["env"] == "test"
    assert "version" in data
    assert res.headers["X-Request-ID"] == "abc-123"
    assert res.headers["X-Content-Type-Options"] == "nosniff"


def test_invalid_request_id_is_replaced(app_client):
    _app, client = app_client
    res = client.get("/version", headers={"X-Request-ID": "bad id with spaces"})
    assert res.headers["X-Request-ID"] != "bad id with spaces"
    assert len(res.headers["X-Request-ID"]) == 36
