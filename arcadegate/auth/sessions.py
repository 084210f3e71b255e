"""Session token issuance and verification.

Sessions are stateless HS256 JWTs — validity is proven by signature plus
expiry, there is no server-side session table. Because of that, a token
outlives a revocation of its key; protected endpoints must pair verify()
with KeyLifecycle.authorize_session() to re-check live state.

Claims:
  sub      key id
  code     key code (informational)
  tier     REGULAR | ADMIN | OWNER
  isAdmin  tier is ADMIN or OWNER   (derived, for browser clients)
  isOwner  tier is OWNER            (derived, for browser clients)
  iat/exp  issuance and expiry (7 days later by default)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt import exceptions as jwt_exceptions

from arcadegate.auth.errors import TokenInvalidError
from arcadegate.auth.models import SessionClaims, Tier
from arcadegate.constants import SESSION_ALGORITHM, SESSION_TTL_DAYS
from arcadegate.utils.logger import get_logger

logger = get_logger(__name__)


class SessionIssuer:
    """Mints and verifies signed session tokens."""

    def __init__(
        self,
        secret: str,
        ttl: timedelta = timedelta(days=SESSION_TTL_DAYS),
        algorithm: str = SESSION_ALGORITHM,
    ) -> None:
        if not secret:
            raise ValueError("Session signing secret must not be empty")
        self._secret = secret
        self._ttl = ttl
        self._algorithm = algorithm

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(
        self,
        key_id: str,
        code: str,
        tier: Tier,
        now: Optional[datetime] = None,
    ) -> str:
        """Create a token for a freshly validated key.

        Args:
            key_id: AccessKey.id
            code:   AccessKey.code
            tier:   AccessKey.tier
            now:    Issuance time (defaults to current UTC time)

        Returns:
            Encoded JWT string.
        """
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": key_id,
            "code": code,
            "tier": tier.value,
            "isAdmin": tier.is_privileged,
            "isOwner": tier is Tier.OWNER,
            "iat": issued_at,
            "exp": issued_at + self._ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> SessionClaims:
        """Check signature and expiry and return the embedded claims.

        Raises:
            TokenInvalidError: bad signature, expired, or malformed claims.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "sub"]},
            )
        except jwt_exceptions.ExpiredSignatureError as exc:
            logger.debug("Session token expired")
            raise TokenInvalidError() from exc
        except jwt_exceptions.PyJWTError as exc:
            logger.debug("Session token rejected", error=type(exc).__name__)
            raise TokenInvalidError() from exc

        try:
            tier = Tier.parse(str(payload["tier"]))
        except (KeyError, ValueError) as exc:
            raise TokenInvalidError() from exc

        return SessionClaims(
            key_id=str(payload["sub"]),
            code=str(payload.get("code", "")),
            tier=tier,
        )
