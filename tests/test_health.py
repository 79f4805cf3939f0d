# tests/test_health.py
from http import HTTPStatus


def test_health_endpoint_ok(client):
    """
    /health responds with 200 and reports which collaborators are configured.
    """
    response = client.get("/health")

    assert response.status_code == HTTPStatus.OK
    data = response.json()

    assert data["status"] == "ok"
    assert data["environment"] == "test"
    assert isinstance(data["app_name"], str)
    assert data["webhook_secret_configured"] is True
    assert data["messaging_configured"] is False
    assert "timestamp_utc" in data
