"""Root test configuration for ArcadeGate.

Shared fixtures:
  store       — initialized KeyStore on a tmp_path database
  lifecycle   — KeyLifecycle over ``store``
  sessions    — SessionIssuer with a fixed test secret
  test_config — Config pointing every path at tmp_path
  gate_app    — create_app(test_config) with services started, ready=True
  client      — httpx AsyncClient bound to ``gate_app``
"""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from arcadegate.auth.keys import KeyLifecycle
from arcadegate.auth.sessions import SessionIssuer
from arcadegate.auth.store import KeyStore
from arcadegate.config import Config
from tests.helpers import TEST_SECRET


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Reset the slowapi storage between tests.

    Prevents management endpoint calls from different tests sharing one
    per-minute budget.
    """
    from arcadegate.auth.limiter import limiter

    limiter._storage.reset()


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "ARCADEGATE_CONFIG",
        "ARCADEGATE_PORT",
        "PORT",
        "ARCADEGATE_DATABASE_URL",
        "DATABASE_URL",
        "ARCADEGATE_SESSION_SECRET",
        "JWT_SECRET",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
async def store(tmp_path: Path) -> AsyncIterator[KeyStore]:
    key_store = KeyStore(tmp_path / "keys.db")
    await key_store.initialize()
    yield key_store
    await key_store.close()


@pytest.fixture
async def lifecycle(store: KeyStore) -> KeyLifecycle:
    return KeyLifecycle(store)


@pytest.fixture
def sessions() -> SessionIssuer:
    return SessionIssuer(TEST_SECRET)


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    config = Config.defaults()
    config.store.database_url = str(tmp_path / "keys.db")
    config.session.secret = TEST_SECRET
    config.catalog.static_dir = str(tmp_path / "public")
    return config


@pytest.fixture
async def gate_app(test_config: Config):
    from arcadegate.main import create_app, shutdown_services, startup_services

    app = create_app(test_config)
    await startup_services(app)
    app.state.ready = True
    yield app
    await shutdown_services(app)


@pytest.fixture
async def client(gate_app) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=gate_app), base_url="http://test"
    ) as http_client:
        yield http_client
