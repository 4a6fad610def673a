"""Test health check endpoints"""

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test basic health check endpoint"""
    response = await client.get("/health/")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data
    assert data["service"] == "TrainerMatch API"


@pytest.mark.asyncio
async def test_liveness_check(client: AsyncClient):
    """Test liveness probe endpoint"""
    response = await client.get("/health/live")
    assert response.status_code == 200
    assert response.json()["status"] == "alive"


@pytest.mark.asyncio
async def test_readiness_check(client: AsyncClient):
    """In-memory cache store is always reachable"""
    response = await client.get("/health/ready")
    assert response.status_code == 200
    checks = response.json()["checks"]
    assert checks["cache_store"] == "healthy"
    assert checks["cache_backend"] == "InMemoryCacheStore"


@pytest.mark.asyncio
async def test_readiness_reports_unhealthy_store(client: AsyncClient, store):
    store.ping = AsyncMock(return_value=False)
    response = await client.get("/health/ready")
    data = response.json()
    assert data["checks"]["cache_store"] == "unhealthy"
    assert data["status"] == "degraded"


@pytest.mark.asyncio
async def test_status_endpoint(client: AsyncClient):
    """Test status endpoint"""
    response = await client.get("/status")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "TrainerMatch API"
    assert data["status"] == "operational"
    assert "version" in data


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    response = await client.get("/health/live", headers={"X-Request-ID": "abc-123"})
    assert response.headers["X-Request-ID"] == "abc-123"
