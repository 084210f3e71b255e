"""Programmatic uvicorn entry point for ArcadeGate.

Reads host and port from the loaded config (127.0.0.1:3030 by default) and
starts uvicorn with bounded connection settings:

  --limit-concurrency 100  Max 100 concurrent connections; HTTP 503 when exceeded
  --backlog 50             OS connection queue depth
  --timeout-keep-alive 5   Idle keep-alive connections are closed after 5s

Usage:
    python -m arcadegate.run   # reads .arcadegate/config.yaml
    arcadegate                 # via pyproject.toml [project.scripts]

PORT / ARCADEGATE_PORT override server.port (see arcadegate/config.py).
"""

from __future__ import annotations

import uvicorn

from arcadegate.config import load_config

UVICORN_LIMIT_CONCURRENCY: int = 100

UVICORN_BACKLOG: int = 50

UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the ArcadeGate server.

    Raises:
        SystemExit: Propagated from load_config() on config parse errors.
    """
    config = load_config()

    uvicorn.run(
        "arcadegate.main:app",
        host=config.server.host,
        port=config.server.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
