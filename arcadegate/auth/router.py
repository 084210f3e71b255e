"""Access key HTTP endpoints.

Public:
  POST   /api/validate-key              — exchange a code for a session token
  GET    /api/verify-session            — check a session token
  GET    /api/games                     — game catalog (any valid session)

Key management (ADMIN+; OWNER for ADMIN-tier targets, enforced by KeyLifecycle):
  POST   /api/admin/keys/generate       — mint codes
  GET    /api/admin/keys                — full key listing
  POST   /api/admin/keys/revoke/{id}    — revoke
  POST   /api/admin/keys/unrevoke/{id}  — restore and reset to unused
  DELETE /api/admin/keys/{id}           — delete permanently

validate-key and verify-session answer failures with ``{"valid": false,
"error": ...}`` bodies. Every other endpoint lets AccessError propagate to
the global handler in main.py, which renders ``{"error": ...}``.
"""

import json
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError, field_validator

from arcadegate.auth.errors import AccessError, InvalidRequestError, RateLimitedError
from arcadegate.auth.limiter import KEY_MANAGEMENT_RATE_LIMIT, limiter
from arcadegate.auth.middleware import (
    SessionPrincipal,
    authenticate_session,
    client_address,
    get_lifecycle,
    get_rate_limiter,
    get_sessions,
    require_admin,
    resolve_session,
)
from arcadegate.auth.models import Tier
from arcadegate.catalog import catalog_entries
from arcadegate.constants import PRIVILEGED_REDIRECT, REGULAR_REDIRECT
from arcadegate.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["access-keys"])

_BAD_BODY = "Invalid request body"

_GRANT_MESSAGES: dict[Tier, str] = {
    Tier.REGULAR: "Access granted",
    Tier.ADMIN: "Admin access granted",
    Tier.OWNER: "Owner access granted",
}


# ─── Request Models ───────────────────────────────────────────────────────────


class ValidateKeyRequest(BaseModel):
    """Request body for POST /api/validate-key."""

    code: Optional[str] = None
    key: Optional[str] = None
    """Legacy field name for ``code``; used only when ``code`` is absent."""

    @property
    def submitted(self) -> Optional[str]:
        return self.code if self.code is not None else self.key


class GenerateKeysRequest(BaseModel):
    """Request body for POST /api/admin/keys/generate."""

    count: int = 1
    tier: Optional[Tier] = None
    isAdmin: bool = False
    """Legacy flag; ``tier`` wins when both are given."""

    @field_validator("tier", mode="before")
    @classmethod
    def _normalize_tier(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @property
    def requested_tier(self) -> Tier:
        if self.tier is not None:
            return self.tier
        return Tier.ADMIN if self.isAdmin else Tier.REGULAR


def _invalid(exc: AccessError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"valid": False, "error": exc.message},
    )


async def _read_validate_body(request: Request) -> Optional[ValidateKeyRequest]:
    """Parse the validate-key body by hand, after the attempt is counted.

    An empty body or JSON ``null`` means no code was sent.

    Raises:
        InvalidRequestError: Body is not JSON, or its fields have the wrong type.
    """
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise InvalidRequestError(_BAD_BODY) from exc
    if payload is None:
        return None
    try:
        return ValidateKeyRequest.model_validate(payload)
    except ValidationError as exc:
        raise InvalidRequestError(_BAD_BODY) from exc


# ─── Public Endpoints ────────────────────────────────────────────────────────


@router.post("/validate-key")
async def validate_key(request: Request):
    """Exchange an access code for a 7-day session token.

    The attempt is counted against the caller's address before the body is
    read, so malformed bodies and unknown codes consume the budget too.

    Returns:
        200: {valid, token, tier, isAdmin, message, redirectTo}
        400: code missing or body malformed
        401: invalid, revoked, or already used
        429: too many attempts
    """
    addr = client_address(request)

    if not await get_rate_limiter(request).admit(addr):
        return _invalid(RateLimitedError())

    try:
        body = await _read_validate_body(request)
        submitted = body.submitted if body is not None else None
        result = await get_lifecycle(request).validate(submitted, addr)
    except AccessError as exc:
        return _invalid(exc)

    token = get_sessions(request).issue(result.key_id, result.code, result.tier)

    return {
        "valid": True,
        "token": token,
        "tier": result.tier.value,
        "isAdmin": result.tier.is_privileged,
        "message": _GRANT_MESSAGES[result.tier],
        "redirectTo": PRIVILEGED_REDIRECT if result.tier.is_privileged else REGULAR_REDIRECT,
    }


@router.get("/verify-session")
async def verify_session(request: Request):
    """Check the bearer token and the live state of its key.

    Returns:
        200: {valid: true, keyId, tier}
        401: {valid: false, error}
    """
    try:
        principal = await resolve_session(request, strict=False)
    except AccessError as exc:
        return _invalid(exc)
    return {"valid": True, "keyId": principal.key_id, "tier": principal.tier.value}


@router.get("/games")
async def list_games(
    request: Request,
    principal: SessionPrincipal = Depends(authenticate_session),
) -> dict:
    """Game catalog for any valid, non-revoked session."""
    return {"games": catalog_entries(request.app.state.config.catalog.games)}


# ─── Key Management Endpoints ────────────────────────────────────────────────


@router.post("/admin/keys/generate")
@limiter.limit(KEY_MANAGEMENT_RATE_LIMIT)
async def generate_keys(
    request: Request,
    body: GenerateKeysRequest,
    principal: SessionPrincipal = Depends(require_admin),
) -> dict:
    """Mint up to 100 codes. Only OWNER may mint ADMIN codes.

    Returns:
        JSON: {keys: [code, ...], count}
    """
    codes = await get_lifecycle(request).generate(
        body.count, body.requested_tier, principal.tier
    )
    logger.info(
        "Keys generated via admin API",
        acting_key_id=principal.key_id,
        tier=body.requested_tier.value,
        count=len(codes),
    )
    return {"keys": codes, "count": len(codes)}


@router.get("/admin/keys")
@limiter.limit(KEY_MANAGEMENT_RATE_LIMIT)
async def list_keys(
    request: Request,
    principal: SessionPrincipal = Depends(require_admin),
) -> dict:
    """Full audit listing, newest first."""
    keys = await get_lifecycle(request).list_keys(principal.tier)
    return {"keys": [key.to_dict() for key in keys]}


@router.post("/admin/keys/revoke/{key_id}")
@limiter.limit(KEY_MANAGEMENT_RATE_LIMIT)
async def revoke_key(
    key_id: str,
    request: Request,
    principal: SessionPrincipal = Depends(require_admin),
) -> dict:
    await get_lifecycle(request).revoke(key_id, principal.tier)
    return {"success": True, "message": "Key revoked successfully"}


@router.post("/admin/keys/unrevoke/{key_id}")
@limiter.limit(KEY_MANAGEMENT_RATE_LIMIT)
async def unrevoke_key(
    key_id: str,
    request: Request,
    principal: SessionPrincipal = Depends(require_admin),
) -> dict:
    await get_lifecycle(request).unrevoke(key_id, principal.tier)
    return {"success": True, "message": "Key access restored and reset to unused"}


@router.delete("/admin/keys/{key_id}")
@limiter.limit(KEY_MANAGEMENT_RATE_LIMIT)
async def delete_key(
    key_id: str,
    request: Request,
    principal: SessionPrincipal = Depends(require_admin),
) -> dict:
    await get_lifecycle(request).delete(key_id, principal.tier)
    return {"success": True, "message": "Key deleted successfully"}
