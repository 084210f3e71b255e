"""ArcadeGate session authentication and tier authorization.

Provides FastAPI Depends()-compatible dependencies:

  authenticate_session   — any valid session (catalog read)
  require_tier(minimum)  — valid session whose key is at least ``minimum``
                           (key management uses Tier.ADMIN)

Both verify the bearer token AND re-check the referenced key in the store on
every request. Tokens are not invalidated when a key is revoked, so the live
re-check is what makes a revocation take effect before the token expires.

Failure mapping:
  missing/malformed Authorization header  → UnauthorizedError (401)
  bad signature / expired                  → TokenInvalidError (401)
  key deleted                              → UnauthorizedError (401)
  key revoked                              → AccessRevokedError (401)
  tier below minimum                       → ForbiddenError (403)

Also home to ``client_address()``, the single place the caller's address is
derived for rate limiting and usage auditing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request

from arcadegate.auth.errors import ForbiddenError, UnauthorizedError
from arcadegate.auth.keys import KeyLifecycle
from arcadegate.auth.limiter import RateLimiter
from arcadegate.auth.models import AccessKey, SessionClaims, Tier
from arcadegate.auth.sessions import SessionIssuer
from arcadegate.utils.logger import get_logger

logger = get_logger(__name__)

_BEARER_RE = re.compile(r"^Bearer\s+(\S+)$", re.IGNORECASE)

# IPv6 spellings of loopback collapse to the IPv4 form.
_LOOPBACK_ALIASES: frozenset[str] = frozenset({"::1", "::ffff:127.0.0.1"})


@dataclass(frozen=True)
class SessionPrincipal:
    """The authenticated caller: verified token claims plus the live key row."""

    claims: SessionClaims
    key: AccessKey

    @property
    def tier(self) -> Tier:
        return self.key.tier

    @property
    def key_id(self) -> str:
        return self.key.id


# ─── Request helpers ─────────────────────────────────────────────────────────


def client_address(request: Request) -> str:
    """Derive the originating client address.

    Precedence: first entry of X-Forwarded-For, then X-Real-IP, then the
    socket peer. Loopback variants normalize to 127.0.0.1.
    """
    address: Optional[str] = None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        address = forwarded.split(",")[0].strip() or None
    if address is None:
        address = (request.headers.get("x-real-ip") or "").strip() or None
    if address is None and request.client is not None:
        address = request.client.host
    if address is None:
        address = "unknown"
    if address in _LOOPBACK_ALIASES:
        address = "127.0.0.1"
    return address


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Return the token from 'Authorization: Bearer <token>', else None."""
    if not authorization:
        return None
    m = _BEARER_RE.match(authorization.strip())
    return m.group(1) if m else None


def get_lifecycle(request: Request) -> KeyLifecycle:
    return request.app.state.lifecycle


def get_sessions(request: Request) -> SessionIssuer:
    return request.app.state.sessions


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


# ─── Session resolution ──────────────────────────────────────────────────────


async def resolve_session(request: Request, strict: bool = False) -> SessionPrincipal:
    """Verify the bearer token and re-check its key in the store.

    Args:
        request: Incoming request.
        strict:  Passed to KeyLifecycle.authorize_session — True denies
                 revoked privileged keys as well.
    """
    token = extract_bearer(request.headers.get("Authorization"))
    if token is None:
        logger.info(
            "Authentication failed: no bearer token",
            path=str(request.url.path),
            method=request.method,
        )
        raise UnauthorizedError()

    claims = get_sessions(request).verify(token)
    key = await get_lifecycle(request).authorize_session(claims, strict=strict)
    return SessionPrincipal(claims=claims, key=key)


async def authenticate_session(request: Request) -> SessionPrincipal:
    """FastAPI dependency: any valid, non-revoked session."""
    return await resolve_session(request, strict=False)


def require_tier(minimum: Tier) -> Callable:
    """Dependency factory for tier-based access control.

    The session is resolved in strict mode. authenticate_session lets a
    revoked ADMIN/OWNER key keep reading the catalog until its token
    expires, but here any revoked key is denied (401 "Access has been
    revoked") before its tier is compared against ``minimum``.

    Example:
        @router.get("/admin/keys")
        async def list_keys(principal: SessionPrincipal = Depends(require_tier(Tier.ADMIN))):
            ...
    """

    async def check_tier(request: Request) -> SessionPrincipal:
        principal = await resolve_session(request, strict=True)
        if not principal.tier.has_permission(minimum):
            logger.warning(
                "Authorization failed: insufficient tier",
                path=str(request.url.path),
                tier=principal.tier.value,
                required=minimum.value,
            )
            raise ForbiddenError(f"{minimum.value.capitalize()} access required")
        return principal

    return check_tier


require_admin = require_tier(Tier.ADMIN)
