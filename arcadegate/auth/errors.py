"""ArcadeGate access error taxonomy.

Every failure the key lifecycle, session and authorization layers can report
is an ``AccessError`` subclass. Each carries a stable ``code`` and the HTTP
``status_code`` it maps to; ``message`` is always safe to show the client.

HTTP mapping is applied in one place: the ``AccessError`` handler registered
by ``create_app()``.
"""

from __future__ import annotations

from typing import Optional


class AccessError(Exception):
    """Base class for all client-visible access failures."""

    code: str = "internal"
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequestError(AccessError):
    code = "validation"
    status_code = 400
    default_message = "Invalid request"


class UnauthorizedError(AccessError):
    code = "unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class TokenInvalidError(AccessError):
    code = "token_invalid"
    status_code = 401
    default_message = "Invalid or expired token"


class AccessRevokedError(AccessError):
    code = "access_revoked"
    status_code = 401
    default_message = "Access has been revoked"


class KeyNotFoundOrRevokedError(AccessError):
    code = "not_found_or_revoked"
    status_code = 401
    default_message = "Invalid or revoked key"


class KeyAlreadyUsedError(AccessError):
    code = "already_used"
    status_code = 401
    default_message = "Key has already been used"


class ForbiddenError(AccessError):
    code = "forbidden"
    status_code = 403
    default_message = "Insufficient privileges for this key"


class KeyNotFoundError(AccessError):
    code = "not_found"
    status_code = 404
    default_message = "Key not found"


class RateLimitedError(AccessError):
    code = "rate_limited"
    status_code = 429
    default_message = "Too many attempts. Please try again later."


class DuplicateCodeError(AccessError):
    """Raised by the key store when an insert collides with an existing code."""

    code = "duplicate_code"
    status_code = 500
    default_message = "Access key code already exists"


class CodeGenerationError(AccessError):
    """Raised when repeated collisions prevent minting a unique code."""

    code = "internal"
    status_code = 500
    default_message = "Error generating keys"
