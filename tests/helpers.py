"""Shared test helpers for ArcadeGate (imported by test modules, not fixtures)."""

from __future__ import annotations

import itertools

from httpx import AsyncClient

from arcadegate.auth.keys import KeyLifecycle
from arcadegate.auth.models import Tier

TEST_SECRET = "test-session-secret-not-for-production"

_client_ips = itertools.count(1)


def fresh_ip() -> str:
    """A documentation-range address not used by any other call in the run."""
    n = next(_client_ips)
    return f"198.51.{n // 256 % 256}.{n % 256}"


async def login(client: AsyncClient, code: str) -> str:
    """Validate ``code`` from a fresh address and return the session token."""
    response = await client.post(
        "/api/validate-key",
        json={"code": code},
        headers={"X-Forwarded-For": fresh_ip()},
    )
    assert response.status_code == 200, response.text
    return response.json()["token"]


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def owner_code(app) -> str:
    owner = await app.state.lifecycle.store.find_owner()
    assert owner is not None
    return owner.code


async def mint(lifecycle: KeyLifecycle, tier: Tier, count: int = 1) -> list[str]:
    """Mint codes with OWNER authority."""
    return await lifecycle.generate(count, tier, Tier.OWNER)
