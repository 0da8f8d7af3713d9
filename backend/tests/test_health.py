"""
Tests for the health check endpoint.
"""

from httpx import AsyncClient


class TestHealthCheck:
    """GET /api/health"""

    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data

    async def test_request_id_is_echoed(self, client: AsyncClient):
        response = await client.get("/api/health", headers={"X-Request-ID": "req-1234"})
        assert response.headers["x-request-id"] == "req-1234"

    async def test_request_id_is_generated(self, client: AsyncClient):
        response = await client.get("/api/health")
        assert response.headers["x-request-id"]
