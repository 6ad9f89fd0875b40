from src.modules.notifications.sessions import SessionRegistry


async def test_health_endpoint(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["live_sessions"] == 0


async def test_health_counts_live_sessions(app, client, citizen):
    registry: SessionRegistry = app.state.sessions
    await registry.register(citizen.id, "sse")

    response = await client.get("/health")

    assert response.json()["live_sessions"] == 1


async def test_metrics_endpoint(client):
    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "sparkbid_" in response.text
