"""Unit tests for health endpoint with mocked dependencies."""

from unittest.mock import AsyncMock

import pytest

from src.api.health import HealthResponse, health_check


@pytest.mark.asyncio
async def test_health_check_connected(mock_db_session: AsyncMock) -> None:
    """Verify health check returns ok when the database answers."""
    # Act
    response = await health_check(mock_db_session)

    # Assert
    assert isinstance(response, HealthResponse)
    assert response.status == "ok"
    assert response.db == "connected"
    mock_db_session.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_health_check_db_disconnected(mock_db_session_failing: AsyncMock) -> None:
    """Verify health check returns degraded when database is disconnected."""
    # Act
    response = await health_check(mock_db_session_failing)

    # Assert
    assert response.status == "degraded"
    assert response.db == "disconnected"
