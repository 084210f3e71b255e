"""Config loading for ArcadeGate.

Reads `.arcadegate/config.yaml` (or `~/.arcadegate/config.yaml`).
Raises SystemExit on parse errors, missing `version`, or invalid values.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. ARCADEGATE_CONFIG environment variable (if set)
  3. `.arcadegate/config.yaml` (working directory — for development)
  4. `~/.arcadegate/config.yaml` (home directory — for production deployments)

Environment variable overrides (applied after the file, so env always wins):
  ARCADEGATE_PORT / PORT                        — server.port
  ARCADEGATE_DATABASE_URL / DATABASE_URL        — store.database_url
  ARCADEGATE_SESSION_SECRET / JWT_SECRET        — session.secret
"""

from __future__ import annotations

import os
import secrets
import sys
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from arcadegate.auth.store import resolve_database_path
from arcadegate.catalog import DEFAULT_GAMES
from arcadegate.constants import (
    RATE_LIMIT_MAX_ATTEMPTS,
    RATE_LIMIT_PRUNE_INTERVAL_SECONDS,
    RATE_LIMIT_WINDOW_SECONDS,
    SESSION_ALGORITHM,
    SESSION_TTL_DAYS,
)
from arcadegate.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# ─── Validation sets ─────────────────────────────────────────────────────────

VALID_RATE_LIMIT_BACKENDS: frozenset[str] = frozenset({"memory", "sqlite"})

DEFAULT_DATABASE_URL = "sqlite:///~/.arcadegate/keys.db"

DEFAULT_CONFIG_PATHS = [
    ".arcadegate/config.yaml",
    os.path.expanduser("~/.arcadegate/config.yaml"),
]


def _config_error(msg: str) -> SystemExit:
    print(f"CONFIG ERROR: {msg}", file=sys.stderr)
    return SystemExit(1)


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ServerConfig:
    """HTTP binding configuration."""

    host: str = "127.0.0.1"
    port: int = 3030
    cors_allow_origins: list[str] = field(default_factory=lambda: ["*"])


@dataclass
class StoreConfig:
    """Key store location. sqlite URLs or bare paths only."""

    database_url: str = DEFAULT_DATABASE_URL


@dataclass
class SessionConfig:
    """Session token signing.

    secret: HS256 signing secret. When unset, load_config() fills in a random
            ephemeral secret — sessions then do not survive a restart.
    """

    secret: Optional[str] = None
    ttl_days: int = SESSION_TTL_DAYS
    algorithm: str = SESSION_ALGORITHM


@dataclass
class RateLimitConfig:
    """Validation rate limiter."""

    backend: str = "memory"  # "memory" | "sqlite"
    max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS
    window_seconds: float = RATE_LIMIT_WINDOW_SECONDS
    prune_interval_seconds: float = RATE_LIMIT_PRUNE_INTERVAL_SECONDS


@dataclass
class CatalogConfig:
    """Static site and the game list returned by /api/games."""

    static_dir: str = "public"
    games: list[dict[str, Any]] = field(default_factory=lambda: list(DEFAULT_GAMES))


@dataclass
class Config:
    """Root configuration object populated from .arcadegate/config.yaml.

    All fields have safe defaults — ArcadeGate can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    server: ServerConfig = field(default_factory=ServerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    path: Optional[str] = None

    @classmethod
    def defaults(cls) -> "Config":
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are ignored.

        Raises:
            SystemExit(1): On an unknown rate_limit.backend or a malformed games list.
        """
        # ── Server ────────────────────────────────────────────────────────────
        server_raw = raw.get("server") or {}
        server = ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=server_raw.get("port", 3030),
            cors_allow_origins=server_raw.get("cors_allow_origins", ["*"]),
        )

        # ── Store ─────────────────────────────────────────────────────────────
        store_raw = raw.get("store") or {}
        store = StoreConfig(database_url=store_raw.get("database_url", DEFAULT_DATABASE_URL))

        # ── Session ───────────────────────────────────────────────────────────
        session_raw = raw.get("session") or {}
        session = SessionConfig(
            secret=session_raw.get("secret"),
            ttl_days=session_raw.get("ttl_days", SESSION_TTL_DAYS),
            algorithm=session_raw.get("algorithm", SESSION_ALGORITHM),
        )

        # ── Rate limit ────────────────────────────────────────────────────────
        rl_raw = raw.get("rate_limit") or {}
        backend = rl_raw.get("backend", "memory")
        if backend not in VALID_RATE_LIMIT_BACKENDS:
            raise _config_error(
                f"Invalid rate_limit.backend: '{backend}'. "
                f"Supported values: {sorted(VALID_RATE_LIMIT_BACKENDS)}."
            )
        rate_limit = RateLimitConfig(
            backend=backend,
            max_attempts=rl_raw.get("max_attempts", RATE_LIMIT_MAX_ATTEMPTS),
            window_seconds=rl_raw.get("window_seconds", RATE_LIMIT_WINDOW_SECONDS),
            prune_interval_seconds=rl_raw.get(
                "prune_interval_seconds", RATE_LIMIT_PRUNE_INTERVAL_SECONDS
            ),
        )

        # ── Catalog ───────────────────────────────────────────────────────────
        catalog_raw = raw.get("catalog") or {}
        games = catalog_raw.get("games")
        if games is None:
            games = list(DEFAULT_GAMES)
        elif not isinstance(games, list) or not all(isinstance(g, dict) for g in games):
            raise _config_error("catalog.games must be a list of mappings.")
        catalog = CatalogConfig(
            static_dir=catalog_raw.get("static_dir", "public"),
            games=games,
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            server=server,
            store=store,
            session=session,
            rate_limit=rate_limit,
            catalog=catalog,
            path=path,
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate ArcadeGate configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes the error to stderr and raises SystemExit(1).
    Environment overrides and the database URL check apply either way.

    Raises:
        SystemExit(1): YAML parse error, missing/unsupported ``version``,
                       invalid section values, invalid port, unsupported
                       database URL.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("ARCADEGATE_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        config = Config.defaults()
    else:
        config = _load_file(found_path)

    _apply_env_overrides(config)
    _finalize(config)

    logger.info(
        "Config loaded",
        path=config.path,
        version=config.version,
        rate_limit_backend=config.rate_limit.backend,
    )
    return config


def _load_file(found_path: str) -> Config:
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise _config_error(
            f"Failed to parse {found_path}: {exc}\n"
            "ArcadeGate refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        raise _config_error(f"Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            raise _config_error(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        raise _config_error(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    version = raw.get("version")
    if version is None:
        raise _config_error(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        raise _config_error(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    return Config.from_dict(raw, path=found_path)


def _first_env(*names: str) -> Optional[str]:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Raises:
        SystemExit(1): If the port override is not a valid integer.
    """
    env_port = _first_env("ARCADEGATE_PORT", "PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            raise _config_error(
                f"Port environment variable is not a valid integer: '{env_port}'"
            )

    env_db = _first_env("ARCADEGATE_DATABASE_URL", "DATABASE_URL")
    if env_db is not None:
        config.store.database_url = env_db

    env_secret = _first_env("ARCADEGATE_SESSION_SECRET", "JWT_SECRET")
    if env_secret is not None:
        config.session.secret = env_secret


def _finalize(config: Config) -> None:
    """Validate cross-field values and fill in the ephemeral secret."""
    try:
        resolve_database_path(config.store.database_url)
    except ValueError as exc:
        raise _config_error(str(exc))

    if not config.session.secret:
        config.session.secret = secrets.token_urlsafe(48)
        logger.warning(
            "No session secret configured — using an ephemeral secret. "
            "Sessions will not survive a restart. Set ARCADEGATE_SESSION_SECRET."
        )

    if config.server.host == "0.0.0.0":
        logger.warning(
            "ArcadeGate is bound to 0.0.0.0 (all interfaces). "
            "Make sure a reverse proxy sets X-Forwarded-For for rate limiting."
        )
