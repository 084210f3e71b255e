"""Unit tests for arcadegate/auth/keys.py — the key lifecycle engine.

Coverage:
  - generate_code format and alphabet
  - validate: one-time REGULAR use, reusable ADMIN/OWNER, revoked/unknown codes,
    concurrent validation of one code
  - generate/revoke/unrevoke/delete across the full privilege matrix
  - ensure_owner_key first-boot seeding
  - authorize_session live re-check
"""

from __future__ import annotations

import asyncio
import re

import pytest

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
from arcadegate.auth.keys import KeyLifecycle, generate_code
from arcadegate.auth.models import SessionClaims, Tier
from arcadegate.auth.store import KeyStore
from arcadegate.constants import MAX_KEYS_PER_GENERATE
from tests.helpers import mint

_CODE_FORMAT_RE = re.compile(r"^[A-Z0-9]{4}(-[A-Z0-9]{4}){3}$")

_ADDR = "203.0.113.7"


async def _key_id(lifecycle: KeyLifecycle, code: str) -> str:
    key = await lifecycle.store.find_by_code(code)
    assert key is not None
    return key.id


def _claims(key_id: str, tier: Tier) -> SessionClaims:
    return SessionClaims(key_id=key_id, code="", tier=tier)


# ─── generate_code ───────────────────────────────────────────────────────────


class TestGenerateCode:
    def test_format(self) -> None:
        for _ in range(50):
            assert _CODE_FORMAT_RE.match(generate_code())

    def test_codes_differ(self) -> None:
        assert len({generate_code() for _ in range(200)}) == 200


# ─── validate ────────────────────────────────────────────────────────────────


class TestValidate:
    async def test_regular_key_single_use(self, lifecycle: KeyLifecycle) -> None:
        [code] = await mint(lifecycle, Tier.REGULAR)

        result = await lifecycle.validate(code, _ADDR)
        assert result.tier is Tier.REGULAR
        assert result.code == code

        with pytest.raises(KeyAlreadyUsedError):
            await lifecycle.validate(code, _ADDR)

    async def test_records_usage_audit(self, lifecycle: KeyLifecycle) -> None:
        [code] = await mint(lifecycle, Tier.REGULAR)
        result = await lifecycle.validate(code, _ADDR)

        key = await lifecycle.store.find_by_id(result.key_id)
        assert key.used is True
        assert key.last_used_by == _ADDR
        assert key.last_used_at is not None

    async def test_lowercase_submission_accepted(self, lifecycle: KeyLifecycle) -> None:
        [code] = await mint(lifecycle, Tier.REGULAR)
        result = await lifecycle.validate(code.lower(), _ADDR)
        assert result.code == code

    @pytest.mark.parametrize("tier", [Tier.ADMIN, Tier.OWNER])
    async def test_privileged_keys_reusable(self, lifecycle: KeyLifecycle, tier: Tier) -> None:
        if tier is Tier.OWNER:
            owner, _ = await lifecycle.ensure_owner_key()
            code = owner.code
        else:
            [code] = await mint(lifecycle, tier)

        for i in range(3):
            result = await lifecycle.validate(code, f"203.0.113.{i}")
            assert result.tier is tier

        key = await lifecycle.store.find_by_id(result.key_id)
        assert key.used is False
        assert key.last_used_by == "203.0.113.2"

    async def test_unknown_code(self, lifecycle: KeyLifecycle) -> None:
        with pytest.raises(KeyNotFoundOrRevokedError):
            await lifecycle.validate("ZZZZ-ZZZZ-ZZZZ-ZZZZ", _ADDR)

    @pytest.mark.parametrize("code", [None, "", "   "])
    async def test_missing_code(self, lifecycle: KeyLifecycle, code) -> None:
        with pytest.raises(InvalidRequestError):
            await lifecycle.validate(code, _ADDR)

    @pytest.mark.parametrize("tier", [Tier.REGULAR, Tier.ADMIN])
    async def test_revoked_key_rejected(self, lifecycle: KeyLifecycle, tier: Tier) -> None:
        [code] = await mint(lifecycle, tier)
        await lifecycle.revoke(await _key_id(lifecycle, code), Tier.OWNER)

        with pytest.raises(KeyNotFoundOrRevokedError):
            await lifecycle.validate(code, _ADDR)

    async def test_concurrent_validation_single_winner(self, lifecycle: KeyLifecycle) -> None:
        [code] = await mint(lifecycle, Tier.REGULAR)

        results = await asyncio.gather(
            *(lifecycle.validate(code, f"203.0.113.{i}") for i in range(10)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(successes) == 1
        assert all(isinstance(f, KeyAlreadyUsedError) for f in failures)


# ─── generate ────────────────────────────────────────────────────────────────


class TestGenerate:
    async def test_admin_generates_regular(self, lifecycle: KeyLifecycle) -> None:
        codes = await lifecycle.generate(3, Tier.REGULAR, Tier.ADMIN)
        assert len(codes) == 3
        assert len(set(codes)) == 3
        assert all(_CODE_FORMAT_RE.match(c) for c in codes)
        for code in codes:
            key = await lifecycle.store.find_by_code(code)
            assert key.tier is Tier.REGULAR
            assert key.used is False
            assert key.revoked is False

    async def test_count_clamped(self, lifecycle: KeyLifecycle) -> None:
        codes = await lifecycle.generate(150, Tier.REGULAR, Tier.OWNER)
        assert len(codes) == MAX_KEYS_PER_GENERATE
        assert len(set(codes)) == MAX_KEYS_PER_GENERATE

    @pytest.mark.parametrize("count", [0, -3])
    async def test_count_below_one_rejected(self, lifecycle: KeyLifecycle, count: int) -> None:
        with pytest.raises(InvalidRequestError):
            await lifecycle.generate(count, Tier.REGULAR, Tier.OWNER)

    async def test_owner_generates_admin(self, lifecycle: KeyLifecycle) -> None:
        [code] = await lifecycle.generate(1, Tier.ADMIN, Tier.OWNER)
        key = await lifecycle.store.find_by_code(code)
        assert key.tier is Tier.ADMIN

    async def test_admin_cannot_generate_admin(self, lifecycle: KeyLifecycle) -> None:
        with pytest.raises(ForbiddenError, match="Only owner can generate admin keys"):
            await lifecycle.generate(1, Tier.ADMIN, Tier.ADMIN)

    @pytest.mark.parametrize("acting", [Tier.REGULAR, Tier.ADMIN, Tier.OWNER])
    async def test_owner_tier_never_generated(self, lifecycle: KeyLifecycle, acting: Tier) -> None:
        with pytest.raises(ForbiddenError):
            await lifecycle.generate(1, Tier.OWNER, acting)

    async def test_regular_cannot_generate(self, lifecycle: KeyLifecycle) -> None:
        with pytest.raises(ForbiddenError):
            await lifecycle.generate(1, Tier.REGULAR, Tier.REGULAR)

    async def test_collisions_exhausted(
        self, lifecycle: KeyLifecycle, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def always_duplicate(code: str, tier: Tier):
            raise DuplicateCodeError()

        monkeypatch.setattr(lifecycle.store, "create", always_duplicate)
        with pytest.raises(CodeGenerationError):
            await lifecycle.generate(1, Tier.REGULAR, Tier.OWNER)


# ─── revoke / unrevoke / delete ──────────────────────────────────────────────

# (acting tier, target tier, allowed)
_MATRIX = [
    (Tier.OWNER, Tier.ADMIN, True),
    (Tier.OWNER, Tier.REGULAR, True),
    (Tier.ADMIN, Tier.REGULAR, True),
    (Tier.ADMIN, Tier.ADMIN, False),
    (Tier.REGULAR, Tier.REGULAR, False),
    (Tier.REGULAR, Tier.ADMIN, False),
]


class TestPrivilegeMatrix:
    @pytest.mark.parametrize("acting,target,allowed", _MATRIX)
    async def test_revoke(
        self, lifecycle: KeyLifecycle, acting: Tier, target: Tier, allowed: bool
    ) -> None:
        [code] = await mint(lifecycle, target)
        key_id = await _key_id(lifecycle, code)

        if allowed:
            await lifecycle.revoke(key_id, acting)
            assert (await lifecycle.store.find_by_id(key_id)).revoked is True
        else:
            with pytest.raises(ForbiddenError):
                await lifecycle.revoke(key_id, acting)
            assert (await lifecycle.store.find_by_id(key_id)).revoked is False

    @pytest.mark.parametrize("acting,target,allowed", _MATRIX)
    async def test_delete(
        self, lifecycle: KeyLifecycle, acting: Tier, target: Tier, allowed: bool
    ) -> None:
        [code] = await mint(lifecycle, target)
        key_id = await _key_id(lifecycle, code)

        if allowed:
            await lifecycle.delete(key_id, acting)
            assert await lifecycle.store.find_by_id(key_id) is None
        else:
            with pytest.raises(ForbiddenError):
                await lifecycle.delete(key_id, acting)
            assert await lifecycle.store.find_by_id(key_id) is not None

    @pytest.mark.parametrize("acting,target,allowed", _MATRIX)
    async def test_unrevoke(
        self, lifecycle: KeyLifecycle, acting: Tier, target: Tier, allowed: bool
    ) -> None:
        [code] = await mint(lifecycle, target)
        key_id = await _key_id(lifecycle, code)
        await lifecycle.revoke(key_id, Tier.OWNER)

        if allowed:
            await lifecycle.unrevoke(key_id, acting)
            assert (await lifecycle.store.find_by_id(key_id)).revoked is False
        else:
            with pytest.raises(ForbiddenError):
                await lifecycle.unrevoke(key_id, acting)
            assert (await lifecycle.store.find_by_id(key_id)).revoked is True

    @pytest.mark.parametrize("acting", [Tier.REGULAR, Tier.ADMIN, Tier.OWNER])
    async def test_owner_key_untouchable(self, lifecycle: KeyLifecycle, acting: Tier) -> None:
        owner, _ = await lifecycle.ensure_owner_key()

        with pytest.raises(ForbiddenError):
            await lifecycle.revoke(owner.id, acting)
        with pytest.raises(ForbiddenError):
            await lifecycle.unrevoke(owner.id, acting)
        with pytest.raises(ForbiddenError):
            await lifecycle.delete(owner.id, acting)

        stored = await lifecycle.store.find_by_id(owner.id)
        assert stored is not None
        assert stored.revoked is False

    @pytest.mark.parametrize("action", ["revoke", "unrevoke", "delete"])
    async def test_unknown_id_not_found(self, lifecycle: KeyLifecycle, action: str) -> None:
        with pytest.raises(KeyNotFoundError):
            await getattr(lifecycle, action)("01HZZZZZZZZZZZZZZZZZZZZZZZ", Tier.OWNER)


class TestRevocationCycle:
    async def test_unrevoke_resets_to_unused(self, lifecycle: KeyLifecycle) -> None:
        [code] = await mint(lifecycle, Tier.REGULAR)
        result = await lifecycle.validate(code, _ADDR)
        await lifecycle.revoke(result.key_id, Tier.ADMIN)

        await lifecycle.unrevoke(result.key_id, Tier.ADMIN)

        key = await lifecycle.store.find_by_id(result.key_id)
        assert key.used is False
        assert key.revoked is False
        assert key.last_used_at is None
        assert key.last_used_by is None
        # Usable again.
        await lifecycle.validate(code, _ADDR)

    async def test_repeated_revoke_is_harmless(self, lifecycle: KeyLifecycle) -> None:
        [code] = await mint(lifecycle, Tier.REGULAR)
        key_id = await _key_id(lifecycle, code)
        await lifecycle.revoke(key_id, Tier.ADMIN)
        await lifecycle.revoke(key_id, Tier.ADMIN)
        assert (await lifecycle.store.find_by_id(key_id)).revoked is True

    async def test_deleted_code_no_longer_validates(self, lifecycle: KeyLifecycle) -> None:
        [code] = await mint(lifecycle, Tier.REGULAR)
        await lifecycle.delete(await _key_id(lifecycle, code), Tier.ADMIN)
        with pytest.raises(KeyNotFoundOrRevokedError):
            await lifecycle.validate(code, _ADDR)


# ─── list_keys ───────────────────────────────────────────────────────────────


class TestListKeys:
    async def test_admin_sees_all_keys(self, lifecycle: KeyLifecycle) -> None:
        await lifecycle.ensure_owner_key()
        await mint(lifecycle, Tier.ADMIN)
        await mint(lifecycle, Tier.REGULAR, count=2)

        keys = await lifecycle.list_keys(Tier.ADMIN)
        assert sorted(k.tier.value for k in keys) == ["ADMIN", "OWNER", "REGULAR", "REGULAR"]

    async def test_regular_forbidden(self, lifecycle: KeyLifecycle) -> None:
        with pytest.raises(ForbiddenError):
            await lifecycle.list_keys(Tier.REGULAR)


# ─── ensure_owner_key ────────────────────────────────────────────────────────


class TestEnsureOwnerKey:
    async def test_seeds_once(self, lifecycle: KeyLifecycle) -> None:
        owner, created = await lifecycle.ensure_owner_key()
        assert created is True
        assert owner.tier is Tier.OWNER
        assert _CODE_FORMAT_RE.match(owner.code)

        again, created_again = await lifecycle.ensure_owner_key()
        assert created_again is False
        assert again.id == owner.id

    async def test_survives_restart(self, store: KeyStore) -> None:
        first, _ = await KeyLifecycle(store).ensure_owner_key()
        second, created = await KeyLifecycle(store).ensure_owner_key()
        assert created is False
        assert second.id == first.id


# ─── authorize_session ───────────────────────────────────────────────────────


class TestAuthorizeSession:
    async def test_live_key_passes(self, lifecycle: KeyLifecycle) -> None:
        [code] = await mint(lifecycle, Tier.REGULAR)
        result = await lifecycle.validate(code, _ADDR)
        key = await lifecycle.authorize_session(_claims(result.key_id, Tier.REGULAR))
        assert key.id == result.key_id

    async def test_revoked_regular_denied(self, lifecycle: KeyLifecycle) -> None:
        [code] = await mint(lifecycle, Tier.REGULAR)
        result = await lifecycle.validate(code, _ADDR)
        await lifecycle.revoke(result.key_id, Tier.ADMIN)

        with pytest.raises(AccessRevokedError):
            await lifecycle.authorize_session(_claims(result.key_id, Tier.REGULAR))

    async def test_revoked_admin_lenient_vs_strict(self, lifecycle: KeyLifecycle) -> None:
        [code] = await mint(lifecycle, Tier.ADMIN)
        key_id = await _key_id(lifecycle, code)
        await lifecycle.revoke(key_id, Tier.OWNER)
        claims = _claims(key_id, Tier.ADMIN)

        key = await lifecycle.authorize_session(claims, strict=False)
        assert key.revoked is True

        with pytest.raises(AccessRevokedError):
            await lifecycle.authorize_session(claims, strict=True)

    async def test_deleted_key_unauthorized(self, lifecycle: KeyLifecycle) -> None:
        [code] = await mint(lifecycle, Tier.REGULAR)
        key_id = await _key_id(lifecycle, code)
        await lifecycle.delete(key_id, Tier.ADMIN)

        with pytest.raises(UnauthorizedError, match="Key not found"):
            await lifecycle.authorize_session(_claims(key_id, Tier.REGULAR))
