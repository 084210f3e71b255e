"""ArcadeGate access key package.

Public API:
  - Tier, AccessKey             — domain types (auth/models.py)
  - KeyStore                    — aiosqlite key table (auth/store.py)
  - KeyLifecycle                — validate / generate / revoke / unrevoke / delete
  - SessionIssuer               — signed 7-day session tokens
  - RateLimiter                 — sliding-window validation gate
  - authenticate_session()      — FastAPI dependency, any valid session
  - require_tier()              — FastAPI dependency factory, minimum tier
  - AccessError                 — base of the error taxonomy (auth/errors.py)
"""

from __future__ import annotations

from arcadegate.auth.errors import AccessError
from arcadegate.auth.keys import KeyLifecycle, generate_code
from arcadegate.auth.limiter import MemoryAttemptStore, RateLimiter, SQLiteAttemptStore
from arcadegate.auth.middleware import authenticate_session, require_tier
from arcadegate.auth.models import AccessKey, SessionClaims, Tier, ValidationResult
from arcadegate.auth.sessions import SessionIssuer
from arcadegate.auth.store import KeyStore

__all__ = [
    "AccessError",
    "AccessKey",
    "KeyLifecycle",
    "KeyStore",
    "MemoryAttemptStore",
    "RateLimiter",
    "SQLiteAttemptStore",
    "SessionClaims",
    "SessionIssuer",
    "Tier",
    "ValidationResult",
    "authenticate_session",
    "generate_code",
    "require_tier",
]
