"""Health endpoint for ArcadeGate.

GET /health — 503 before ``app.state.ready`` is set (during lifespan startup),
200 afterwards with the key store status.
"""

from __future__ import annotations

from typing import Any, Union

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=None)
async def health(request: Request) -> Union[dict[str, Any], JSONResponse]:
    """Primary health check.

    Response body (200):
        {"status": "ok" | "degraded", "store": "ok" | "error", "rate_limit_backend": "memory" | "sqlite"}

    Response body (503):
        {"status": "starting"}
    """
    if not getattr(request.app.state, "ready", False):
        return JSONResponse(status_code=503, content={"status": "starting"})

    store_ok = await request.app.state.lifecycle.store.health_check()
    return {
        "status": "ok" if store_ok else "degraded",
        "store": "ok" if store_ok else "error",
        "rate_limit_backend": request.app.state.config.rate_limit.backend,
    }
