"""
Tests for the main application endpoints.
"""

def test_root_endpoint(client):
    """
    Test the root endpoint returns a welcome message.
    """
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert "message" in data


def test_health_check(client):
    """
    Test the health check endpoint returns a healthy status.
    """
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "database" in data


def test_responses_carry_request_id(client):
    response = client.get("/health")
    assert response.headers.get("X-Request-ID")
    assert response.headers.get("X-Process-Time")


def test_validation_errors_are_serializable(client):
    response = client.post("/api/v1/otp/send", json={"license": "CRM123"})
    assert response.status_code == 422
    data = response.json()
    assert data["detail"] == "Validation error"
    assert data["errors"][0]["loc"][-1] == "email"


def test_forwarded_request_id_is_kept(client):
    response = client.get("/health", headers={"X-Request-ID": "edge-7f3a9c21"})
    assert response.headers["X-Request-ID"] == "edge-7f3a9c21"


def test_malformed_request_id_is_replaced(client):
    first = client.get("/health", headers={"X-Request-ID": "bad id; drop table"})
    second = client.get("/health")
    assert first.headers["X-Request-ID"] != "bad id; drop table"
    assert first.headers["X-Request-ID"] != second.headers["X-Request-ID"]


def test_query_string_is_not_logged(client, caplog):
    with caplog.at_level("INFO", logger="medattest.core.middleware"):
        client.get("/health?code=123456")
    assert "/health" in caplog.text
    assert "123456" not in caplog.text
