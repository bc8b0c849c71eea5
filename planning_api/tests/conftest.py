import sys
import os

# Add project root to sys.path to allow imports like 'from planning_api...'
# This assumes pytest is run from the project root directory
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from alembic import command
from alembic.config import Config
from fastapi import FastAPI

from planning_api.main import app as main_app
from planning_api.tests.fakes import FakePage

# Determine paths relative to conftest.py
TEST_DIR = os.path.dirname(__file__)
PACKAGE_ROOT = os.path.abspath(os.path.join(TEST_DIR, '..'))
ALEMBIC_INI_PATH = os.path.join(PACKAGE_ROOT, 'alembic.ini')


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage()


# --- Application fixtures ---


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "test_planning_data.db")


@pytest.fixture
def alembic_config(db_path: str) -> Config:
    """Provides the Alembic configuration object pointed at the test database."""
    if not os.path.exists(ALEMBIC_INI_PATH):
        raise FileNotFoundError(f"Alembic config not found at: {ALEMBIC_INI_PATH}")
    config = Config(ALEMBIC_INI_PATH)
    config.set_main_option("sqlalchemy.url", f"sqlite+aiosqlite:///{db_path}")
    config.set_main_option("script_location", os.path.join(PACKAGE_ROOT, "alembic"))
    config.attributes["url_from_config"] = True
    return config


@pytest_asyncio.fixture(scope="function")
async def app_with_db(mocker, alembic_config: Config, db_path: str) -> AsyncGenerator[FastAPI, None]:
    """
    Provides the FastAPI app with a migrated SQLite cache database and a mocked
    Playwright driver. Tests replace the service collaborators they need.
    """
    command.upgrade(alembic_config, "head")

    fake_playwright = MagicMock()
    fake_playwright.stop = AsyncMock()
    playwright_factory = mocker.patch("planning_api.main.async_playwright")
    playwright_factory.return_value.start = AsyncMock(return_value=fake_playwright)

    env = {
        "DATABASE_URL": f"sqlite+aiosqlite:///{db_path}",
        "CACHE_ENABLED": "true",
        "RATE_LIMITING_ENABLED": "false",
    }
    with patch.dict(os.environ, env):
        async with main_app.router.lifespan_context(main_app):
            yield main_app


@pytest_asyncio.fixture(scope="function")
async def async_client(app_with_db: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Asynchronous test client bound to the app through ASGI."""
    transport = httpx.ASGITransport(app=app_with_db)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
