"""Pytest configuration and fixtures."""

import os
import tempfile
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from studio.config import get_settings
from studio.db.database import close_database, init_database
from studio.main import app


@pytest.fixture(autouse=True)
async def setup_test_db():
    """Set up a test database for each test."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    await init_database(db_path)

    yield

    await close_database()
    os.unlink(db_path)


@pytest.fixture(autouse=True)
def reset_settings():
    """Re-read settings from the environment for every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
