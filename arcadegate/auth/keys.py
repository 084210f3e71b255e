"""Access key lifecycle engine.

Implements:
  - generate_code()        — 16 symbols from [A-Z0-9], grouped in 4s
  - KeyLifecycle.validate()        — one-time use for REGULAR, reusable ADMIN/OWNER
  - KeyLifecycle.generate()        — mint up to 100 codes of a tier the actor outranks
  - KeyLifecycle.revoke()          — reversible denial, never for OWNER
  - KeyLifecycle.unrevoke()        — restore to fresh, unused state
  - KeyLifecycle.delete()          — terminal, never for OWNER
  - KeyLifecycle.list_keys()       — full audit listing for ADMIN+
  - KeyLifecycle.ensure_owner_key()   — first-boot OWNER seed
  - KeyLifecycle.authorize_session()  — live revocation re-check for tokens

Authorization rule: an actor may act on a target tier only when it strictly
outranks it (Tier.outranks). OWNER keys are additionally refused by name on
every destructive path.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Optional

from arcadegate.auth.errors import (
    AccessRevokedError,
    CodeGenerationError,
    DuplicateCodeError,
    ForbiddenError,
    InvalidRequestError,
    KeyAlreadyUsedError,
    KeyNotFoundError,
    KeyNotFoundOrRevokedError,
    UnauthorizedError,
)
from arcadegate.auth.models import AccessKey, SessionClaims, Tier, ValidationResult
from arcadegate.auth.store import KeyStore
from arcadegate.constants import (
    CODE_ALPHABET,
    CODE_GENERATION_ATTEMPTS,
    CODE_GROUP_SIZE,
    CODE_LENGTH,
    CODE_SEPARATOR,
    MAX_KEYS_PER_GENERATE,
)
from arcadegate.utils.logger import get_logger

logger = get_logger(__name__)


def generate_code() -> str:
    """Return a random code such as ``K7QZ-4M2A-P9XD-0WLE``.

    Symbols come from ``secrets.choice`` over the 36-symbol alphabet.
    """
    symbols = [secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH)]
    groups = [
        "".join(symbols[i:i + CODE_GROUP_SIZE])
        for i in range(0, CODE_LENGTH, CODE_GROUP_SIZE)
    ]
    return CODE_SEPARATOR.join(groups)


class KeyLifecycle:
    """Orchestrates access-key state transitions under the tier hierarchy.

    Args:
        store: Initialized KeyStore.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(self, store: KeyStore, clock=None) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def store(self) -> KeyStore:
        return self._store

    # ── Validation ────────────────────────────────────────────────────────────

    async def validate(self, code: Optional[str], client_addr: str) -> ValidationResult:
        """Validate a submitted code and record its use.

        Raises:
            InvalidRequestError: code missing or blank.
            KeyNotFoundOrRevokedError: no non-revoked key has this code.
            KeyAlreadyUsedError: REGULAR key already consumed.
        """
        if code is None or not code.strip():
            raise InvalidRequestError("Key is required")

        key = await self._store.find_by_code(code)
        if key is None or key.revoked:
            logger.info("Key validation rejected: not found or revoked", client=client_addr)
            raise KeyNotFoundOrRevokedError()

        now = self._clock()

        if key.tier.is_privileged:
            # Reusable: audit fields only.
            if not await self._store.record_use(key.id, client_addr, now):
                raise KeyNotFoundOrRevokedError()
            logger.info(
                "Privileged key validated",
                key_id=key.id,
                tier=key.tier.value,
                client=client_addr,
            )
            return ValidationResult(key_id=key.id, code=key.code, tier=key.tier)

        if key.used:
            logger.info("Key validation rejected: already used", key_id=key.id, client=client_addr)
            raise KeyAlreadyUsedError()

        if not await self._store.mark_used(key.id, client_addr, now):
            # Lost a race: another request consumed or revoked the key between
            # the read above and the conditional update.
            current = await self._store.find_by_id(key.id)
            if current is None or current.revoked:
                raise KeyNotFoundOrRevokedError()
            logger.info("Key validation rejected: already used", key_id=key.id, client=client_addr)
            raise KeyAlreadyUsedError()

        logger.info("Key validated", key_id=key.id, tier=key.tier.value, client=client_addr)
        return ValidationResult(key_id=key.id, code=key.code, tier=key.tier)

    # ── Generation ────────────────────────────────────────────────────────────

    async def generate(self, count: int, tier: Tier, acting_tier: Tier) -> list[str]:
        """Mint ``count`` new codes of ``tier`` (clamped to MAX_KEYS_PER_GENERATE).

        Raises:
            InvalidRequestError: count below 1.
            ForbiddenError: acting_tier does not outrank tier (OWNER never mintable).
            CodeGenerationError: collisions exhausted CODE_GENERATION_ATTEMPTS.
        """
        if count < 1:
            raise InvalidRequestError("count must be at least 1")
        if tier is Tier.OWNER or not acting_tier.outranks(tier):
            logger.warning(
                "Key generation forbidden",
                tier=tier.value,
                acting_tier=acting_tier.value,
            )
            raise ForbiddenError(
                "Only owner can generate admin keys" if tier is Tier.ADMIN
                else "Insufficient privileges to generate keys"
            )

        count = min(count, MAX_KEYS_PER_GENERATE)
        codes: list[str] = []
        for _ in range(count):
            key = await self._create_unique(tier)
            codes.append(key.code)

        logger.info(
            "Keys generated",
            count=len(codes),
            tier=tier.value,
            acting_tier=acting_tier.value,
        )
        return codes

    async def _create_unique(self, tier: Tier) -> AccessKey:
        for attempt in range(1, CODE_GENERATION_ATTEMPTS + 1):
            try:
                return await self._store.create(generate_code(), tier)
            except DuplicateCodeError:
                logger.warning("Generated code collided, retrying", attempt=attempt)
        raise CodeGenerationError()

    # ── Revocation / reset / deletion ─────────────────────────────────────────

    async def _load_target(self, key_id: str, acting_tier: Tier, action: str) -> AccessKey:
        key = await self._store.find_by_id(key_id)
        if key is None:
            raise KeyNotFoundError()
        if key.tier is Tier.OWNER or not acting_tier.outranks(key.tier):
            logger.warning(
                "Key action forbidden",
                action=action,
                key_id=key_id,
                target_tier=key.tier.value,
                acting_tier=acting_tier.value,
            )
            raise ForbiddenError()
        return key

    async def revoke(self, key_id: str, acting_tier: Tier) -> None:
        key = await self._load_target(key_id, acting_tier, "revoke")
        if not await self._store.set_revoked(key.id, True):
            raise KeyNotFoundError()
        logger.info("Key revoked", key_id=key.id, tier=key.tier.value, acting_tier=acting_tier.value)

    async def unrevoke(self, key_id: str, acting_tier: Tier) -> None:
        """Restore access and reset the key to unused."""
        key = await self._load_target(key_id, acting_tier, "unrevoke")
        if not await self._store.reset_usage(key.id):
            raise KeyNotFoundError()
        logger.info("Key unrevoked", key_id=key.id, tier=key.tier.value, acting_tier=acting_tier.value)

    async def delete(self, key_id: str, acting_tier: Tier) -> None:
        key = await self._load_target(key_id, acting_tier, "delete")
        if not await self._store.delete(key.id):
            raise KeyNotFoundError()
        logger.info("Key deleted", key_id=key.id, tier=key.tier.value, acting_tier=acting_tier.value)

    # ── Listing ───────────────────────────────────────────────────────────────

    async def list_keys(self, acting_tier: Tier) -> list[AccessKey]:
        if not acting_tier.has_permission(Tier.ADMIN):
            raise ForbiddenError("Admin access required")
        return await self._store.list()

    # ── Bootstrap ─────────────────────────────────────────────────────────────

    async def ensure_owner_key(self) -> tuple[AccessKey, bool]:
        """Return the OWNER key, creating it when none exists.

        Returns:
            (owner_key, created) — created is True only on first boot.
        """
        owner = await self._store.find_owner()
        if owner is not None:
            return owner, False

        try:
            owner = await self._create_unique(Tier.OWNER)
        except CodeGenerationError:
            # Another process seeded the owner concurrently.
            owner = await self._store.find_owner()
            if owner is None:
                raise
            return owner, False

        logger.warning(
            "OWNER KEY CREATED — this is the master key, keep it safe",
            owner_code=owner.code,
            key_id=owner.id,
        )
        return owner, True

    # ── Session re-check ──────────────────────────────────────────────────────

    async def authorize_session(self, claims: SessionClaims, strict: bool = False) -> AccessKey:
        """Re-check live key state behind a verified session token.

        Tokens are never invalidated on revocation, so every protected request
        comes through here.

        Args:
            claims: Verified token claims.
            strict: When False (catalog read, session check) a revoked
                    ADMIN/OWNER key keeps its session. When True (key
                    management) any revocation denies.

        Raises:
            UnauthorizedError: referenced key no longer exists.
            AccessRevokedError: key revoked.
        """
        key = await self._store.find_by_id(claims.key_id)
        if key is None:
            raise UnauthorizedError("Key not found")
        if key.revoked and (strict or not key.tier.is_privileged):
            logger.info("Session rejected: key revoked", key_id=key.id, strict=strict)
            raise AccessRevokedError()
        return key
