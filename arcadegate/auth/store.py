"""KeyStore — aiosqlite-backed durable table of access keys.

The store is the sole source of truth for key state. It performs no
authorization; the lifecycle engine (auth/keys.py) decides who may call
which mutation.

Features:
  - Single long-lived connection: opened in initialize(), closed in close()
  - WAL mode: PRAGMA journal_mode=WAL
  - Schema version guard: PRAGMA user_version — fresh (0) databases are
    migrated to _SCHEMA_VERSION; newer versions refuse startup
  - UNIQUE(code) plus a partial unique index allowing one OWNER row
  - Every state transition is ONE conditional UPDATE, so concurrent callers
    can never both observe and flip the same state
  - Writes hold write_lock from statement through commit/rollback, so one
    caller's rollback never discards another caller's pending write
  - os.chmod(db_path, 0o600) on every initialize() call
"""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiosqlite

from arcadegate.auth.errors import DuplicateCodeError
from arcadegate.auth.models import AccessKey, Tier
from arcadegate.utils.logger import get_logger
from arcadegate.utils.ulid import generate_ulid

logger = get_logger(__name__)

# ─── Schema DDL ───────────────────────────────────────────────────────────────

_CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS access_keys (
    id              TEXT PRIMARY KEY,
    code            TEXT NOT NULL UNIQUE,
    tier            TEXT NOT NULL CHECK(tier IN ('REGULAR', 'ADMIN', 'OWNER')),
    used            INTEGER NOT NULL DEFAULT 0,
    revoked         INTEGER NOT NULL DEFAULT 0,
    last_used_at    TEXT,
    last_used_by    TEXT,
    created_at      TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_access_keys_single_owner
    ON access_keys(tier) WHERE tier = 'OWNER';

CREATE INDEX IF NOT EXISTS idx_access_keys_created_at
    ON access_keys(created_at DESC);
"""

_SCHEMA_VERSION = 1

_SELECT_COLUMNS = (
    "id, code, tier, used, revoked, last_used_at, last_used_by, created_at"
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_access_key(row: aiosqlite.Row) -> AccessKey:
    """Convert an aiosqlite Row to an AccessKey.

    Field mapping:
      tier           : TEXT            → Tier
      used, revoked  : INTEGER (0/1)   → bool
      *_at           : ISO 8601 string → datetime
    """
    last_used_raw: Optional[str] = row["last_used_at"]
    return AccessKey(
        id=row["id"],
        code=row["code"],
        tier=Tier(row["tier"]),
        used=bool(row["used"]),
        revoked=bool(row["revoked"]),
        last_used_at=datetime.fromisoformat(last_used_raw) if last_used_raw else None,
        last_used_by=row["last_used_by"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class KeyStore:
    """Async SQLite key store.

    Usage:
        store = KeyStore(db_path)
        await store.initialize()   # raises RuntimeError on schema version mismatch
        key = await store.create("ABCD-EFGH-IJKL-MNOP", Tier.REGULAR)
        changed = await store.mark_used(key.id, "203.0.113.7", now)
        await store.close()
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(os.path.expanduser(str(db_path)))
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def connection(self) -> aiosqlite.Connection:
        """The open connection. Shared with SQLiteAttemptStore."""
        if self._db is None:
            raise RuntimeError("KeyStore is not initialized")
        return self._db

    @property
    def write_lock(self) -> asyncio.Lock:
        """Held by every writer on ``connection`` for statement + commit."""
        return self._write_lock

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Open the connection, enable WAL, and create or verify the schema.

        Idempotent — safe to call on an existing database.

        Raises:
            RuntimeError: If PRAGMA user_version is newer than this code supports.
        """
        if self._db is not None:
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        db.row_factory = aiosqlite.Row

        try:
            async with db.execute("PRAGMA user_version") as cursor:
                row = await cursor.fetchone()
            version = row[0] if row else 0
            if version > _SCHEMA_VERSION:
                raise RuntimeError(
                    f"Key store schema version {version} is newer than supported "
                    f"version {_SCHEMA_VERSION} — refusing to start"
                )

            await db.execute("PRAGMA journal_mode=WAL")
            await db.executescript(_CREATE_SCHEMA_SQL)
            if version < _SCHEMA_VERSION:
                await db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
                logger.info(
                    "Key store schema migrated",
                    from_version=version,
                    to_version=_SCHEMA_VERSION,
                )
            await db.commit()
        except BaseException:
            await db.close()
            raise

        # Owner-only permissions regardless of umask at creation time.
        os.chmod(self._db_path, 0o600)

        self._db = db
        logger.debug("Key store initialized", path=str(self._db_path))

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.debug("Key store closed", path=str(self._db_path))

    async def health_check(self) -> bool:
        """Returns True if the store answers a trivial query. Must not raise."""
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                await cursor.fetchone()
            return True
        except Exception as exc:
            logger.warning("Key store health check failed", error=str(exc))
            return False

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def _fetch_one(self, sql: str, params: tuple) -> Optional[AccessKey]:
        async with self.connection.execute(sql, params) as cursor:
            row = await cursor.fetchone()
        return _row_to_access_key(row) if row is not None else None

    async def find_by_code(self, code: str) -> Optional[AccessKey]:
        """Look up a key by code. The input is uppercased before comparison."""
        return await self._fetch_one(
            f"SELECT {_SELECT_COLUMNS} FROM access_keys WHERE code = ?",
            (code.strip().upper(),),
        )

    async def find_by_id(self, key_id: str) -> Optional[AccessKey]:
        return await self._fetch_one(
            f"SELECT {_SELECT_COLUMNS} FROM access_keys WHERE id = ?",
            (key_id,),
        )

    async def find_owner(self) -> Optional[AccessKey]:
        return await self._fetch_one(
            f"SELECT {_SELECT_COLUMNS} FROM access_keys WHERE tier = ?",
            (Tier.OWNER.value,),
        )

    async def list(self) -> list[AccessKey]:
        """All keys, newest-created first (insertion order breaks timestamp ties)."""
        async with self.connection.execute(
            f"SELECT {_SELECT_COLUMNS} FROM access_keys "
            "ORDER BY created_at DESC, rowid DESC"
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_access_key(row) for row in rows]

    # ── Writes ────────────────────────────────────────────────────────────────

    async def create(self, code: str, tier: Tier) -> AccessKey:
        """Insert a fresh key.

        Raises:
            DuplicateCodeError: If ``code`` already exists, or ``tier`` is OWNER
                and an OWNER row already exists.
        """
        key = AccessKey(
            id=generate_ulid(),
            code=code.strip().upper(),
            tier=tier,
            used=False,
            revoked=False,
            created_at=_now(),
        )
        db = self.connection
        async with self._write_lock:
            try:
                await db.execute(
                    "INSERT INTO access_keys (id, code, tier, used, revoked, created_at) "
                    "VALUES (?, ?, ?, 0, 0, ?)",
                    (key.id, key.code, key.tier.value, key.created_at.isoformat()),
                )
                await db.commit()
            except aiosqlite.IntegrityError as exc:
                await db.rollback()
                raise DuplicateCodeError() from exc
        return key

    async def _update(self, sql: str, params: tuple) -> bool:
        db = self.connection
        async with self._write_lock:
            try:
                cursor = await db.execute(sql, params)
                changed = cursor.rowcount > 0
                await cursor.close()
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        return changed

    async def mark_used(self, key_id: str, client_addr: str, timestamp: datetime) -> bool:
        """Flip ``used`` on a fresh, non-revoked key and record the audit fields.

        Returns True only for the caller whose update actually changed the row.
        Two concurrent validations of one REGULAR code therefore cannot both
        succeed.
        """
        return await self._update(
            "UPDATE access_keys SET used = 1, last_used_at = ?, last_used_by = ? "
            "WHERE id = ? AND used = 0 AND revoked = 0",
            (timestamp.isoformat(), client_addr, key_id),
        )

    async def record_use(self, key_id: str, client_addr: str, timestamp: datetime) -> bool:
        """Refresh the audit fields of a non-revoked key without touching ``used``."""
        return await self._update(
            "UPDATE access_keys SET last_used_at = ?, last_used_by = ? "
            "WHERE id = ? AND revoked = 0",
            (timestamp.isoformat(), client_addr, key_id),
        )

    async def set_revoked(self, key_id: str, revoked: bool) -> bool:
        return await self._update(
            "UPDATE access_keys SET revoked = ? WHERE id = ?",
            (1 if revoked else 0, key_id),
        )

    async def reset_usage(self, key_id: str) -> bool:
        """Restore a key to its fresh state: not revoked, not used, no audit trail."""
        return await self._update(
            "UPDATE access_keys SET revoked = 0, used = 0, "
            "last_used_at = NULL, last_used_by = NULL WHERE id = ?",
            (key_id,),
        )

    async def delete(self, key_id: str) -> bool:
        """Delete a key. Returns False if no row matched."""
        return await self._update("DELETE FROM access_keys WHERE id = ?", (key_id,))


def resolve_database_path(database_url: str) -> Path:
    """Translate a database URL into a filesystem path.

    Accepted forms:
      sqlite:///relative/keys.db   → relative/keys.db
      sqlite:////abs/keys.db       → /abs/keys.db
      /abs/keys.db or ~/keys.db    → used as-is (``~`` expanded)

    Raises:
        ValueError: For any other URL scheme.
    """
    url = database_url.strip()
    if "://" in url:
        scheme, _, rest = url.partition("://")
        if scheme not in ("sqlite", "sqlite+aiosqlite"):
            raise ValueError(f"Unsupported database URL scheme: '{scheme}'")
        # sqlite:///x → "/x" after the scheme separator; drop the host slash.
        url = rest[1:] if rest.startswith("/") else rest
        if not url:
            raise ValueError("Database URL has no path")
    return Path(os.path.expanduser(url))
