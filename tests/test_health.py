def test_health_reports_dependencies(test_context):
    client, _ = test_context

    for path in ("/api/health", "/health"):
        res = client.get(path)
        assert res.status_code == 200
        body = res.json()
        assert body["success"] is True
        data = body["data"]
        assert data["status"] == "healthy"
        assert data["database"] is True
        assert data["cache"] is True
        assert data["ai"] is False
        assert data["mapping"] is False
        assert data["realtimeConnections"] == 0
        assert data["environment"] == "test"


def test_root_lists_entry_points(test_context):
    client, _ = test_context

    body = client.get("/").json()
    assert body["health"] == "/api/health"
    assert body["websocket"] == "/ws"


def test_unknown_route_uses_error_envelope(test_context):
    client, _ = test_context

    res = client.get("/api/nothing-here")
    assert res.status_code == 404
    body = res.json()
    assert body["success"] is False
    assert body["error"]["path"] == "/api/nothing-here"
    assert "request_id" in body["error"]


def test_request_id_is_echoed(test_context):
    client, _ = test_context

    res = client.get("/api/health", headers={"X-Request-ID": "req-123"})
    assert res.headers["X-Request-ID"] == "req-123"
