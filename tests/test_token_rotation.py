import asyncio
import logging

import pytest
from prometheus_client import REGISTRY

from authcore.core.exceptions import InvalidTokenError
from authcore.repositories.memory import MemoryCredentialStore
from authcore.schemas.auth import TokenPair
from authcore.services.auth_service import AuthService

from conftest import make_settings

EMAIL = "a@x.com"
PASSWORD = "Secret123!"


async def _login(service: AuthService) -> TokenPair:
    await service.register(EMAIL, PASSWORD)
    return await service.login(EMAIL, PASSWORD)


@pytest.mark.asyncio
async def test_rotate_issues_new_token_and_kills_old(auth_service):
    pair = await _login(auth_service)
    rotated = await auth_service.refresh(pair.refresh_token)

    hash_of = auth_service.issuer.hash_refresh_token
    assert hash_of(rotated.refresh_token) != hash_of(pair.refresh_token)
    assert rotated.user.email == EMAIL
    assert auth_service.issuer.decode_access_token(rotated.access_token).subject == EMAIL

    with pytest.raises(InvalidTokenError):
        await auth_service.refresh(pair.refresh_token)

    again = await auth_service.refresh(rotated.refresh_token)
    assert again.refresh_token != rotated.refresh_token


@pytest.mark.asyncio
async def test_rotation_keeps_family_and_refreshes_ttl(auth_service, store, clock):
    pair = await _login(auth_service)
    hash_of = auth_service.issuer.hash_refresh_token
    first = await store.get_refresh_token(hash_of(pair.refresh_token))

    clock.advance(days=3)
    rotated = await auth_service.refresh(pair.refresh_token)
    second = await store.get_refresh_token(hash_of(rotated.refresh_token))
    old = await store.get_refresh_token(hash_of(pair.refresh_token))

    assert second.family_id == first.family_id
    assert second.owner_email == EMAIL
    assert second.expires_at == clock.now + auth_service.issuer.refresh_ttl
    assert old.revoked
    assert old.replaced_by_hash == second.token_hash


@pytest.mark.asyncio
async def test_concurrent_rotation_succeeds_at_most_once(auth_service):
    pair = await _login(auth_service)
    results = await asyncio.gather(
        auth_service.refresh(pair.refresh_token),
        auth_service.refresh(pair.refresh_token),
        return_exceptions=True,
    )
    assert sum(isinstance(r, TokenPair) for r in results) == 1
    assert sum(isinstance(r, InvalidTokenError) for r in results) == 1


@pytest.mark.asyncio
async def test_expired_token_rejected(auth_service, clock):
    pair = await _login(auth_service)
    clock.advance(days=7, seconds=1)
    with pytest.raises(InvalidTokenError):
        await auth_service.refresh(pair.refresh_token)


@pytest.mark.asyncio
@pytest.mark.parametrize("presented", [None, "", "not-a-real-token"])
async def test_unknown_tokens_rejected(auth_service, presented):
    with pytest.raises(InvalidTokenError):
        await auth_service.refresh(presented)


@pytest.mark.asyncio
async def test_revoke_is_idempotent(auth_service):
    pair = await _login(auth_service)
    await auth_service.tokens.revoke(pair.refresh_token)
    await auth_service.tokens.revoke(pair.refresh_token)
    await auth_service.tokens.revoke("never-issued")
    await auth_service.tokens.revoke(None)
    with pytest.raises(InvalidTokenError):
        await auth_service.refresh(pair.refresh_token)


@pytest.mark.asyncio
async def test_reuse_without_cascade_leaves_successor_valid(auth_service):
    pair = await _login(auth_service)
    rotated = await auth_service.refresh(pair.refresh_token)
    with pytest.raises(InvalidTokenError):
        await auth_service.refresh(pair.refresh_token)
    assert await auth_service.refresh(rotated.refresh_token)


@pytest.mark.asyncio
async def test_reuse_with_cascade_revokes_family(store, clock):
    service = AuthService(store, make_settings(REVOKE_FAMILY_ON_REUSE=True), clock=clock)
    pair = await _login(service)
    other_session = await service.login(EMAIL, PASSWORD)
    rotated = await service.refresh(pair.refresh_token)

    with pytest.raises(InvalidTokenError):
        await service.refresh(pair.refresh_token)
    with pytest.raises(InvalidTokenError):
        await service.refresh(rotated.refresh_token)

    # Other logins are separate families.
    assert await service.refresh(other_session.refresh_token)


@pytest.mark.asyncio
async def test_token_of_deleted_user_rejected_and_revoked(auth_service, store):
    pair = await _login(auth_service)
    await store.delete_user(EMAIL)
    with pytest.raises(InvalidTokenError):
        await auth_service.refresh(pair.refresh_token)
    record = await store.get_refresh_token(auth_service.issuer.hash_refresh_token(pair.refresh_token))
    assert record.revoked


@pytest.mark.asyncio
async def test_plaintext_is_never_stored(auth_service, store):
    pair = await _login(auth_service)
    assert await store.get_refresh_token(pair.refresh_token) is None
    assert await store.get_refresh_token(auth_service.issuer.hash_refresh_token(pair.refresh_token))


class _LockstepStore:
    """Holds every refresh lookup until ``parties`` callers have read the token"""

    def __init__(self, inner: MemoryCredentialStore, parties: int = 2):
        self._inner = inner
        self._parties = parties
        self._arrived = 0
        self._all_read = asyncio.Event()
        self.swaps = []

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def get_valid_refresh_token(self, token_hash):
        record = await self._inner.get_valid_refresh_token(token_hash)
        self._arrived += 1
        if self._arrived >= self._parties:
            self._all_read.set()
        await self._all_read.wait()
        return record

    async def rotate_refresh_token(self, old_hash, new_hash, new_expires_at):
        swapped = await self._inner.rotate_refresh_token(old_hash, new_hash, new_expires_at)
        self.swaps.append(swapped)
        return swapped


def _reuse_count() -> float:
    return REGISTRY.get_sample_value("authcore_refresh_rotations_total", {"result": "reuse"}) or 0.0


async def _race(service: AuthService, token: str):
    results = await asyncio.gather(
        service.refresh(token),
        service.refresh(token),
        return_exceptions=True,
    )
    winners = [r for r in results if isinstance(r, TokenPair)]
    losers = [r for r in results if isinstance(r, InvalidTokenError)]
    assert len(winners) == 1
    assert len(losers) == 1
    return winners[0]


@pytest.mark.asyncio
async def test_lost_rotation_race_is_reuse(clock, caplog):
    store = _LockstepStore(MemoryCredentialStore(clock=clock))
    service = AuthService(store, make_settings(), clock=clock)
    pair = await _login(service)
    before = _reuse_count()

    with caplog.at_level(logging.INFO, logger="authcore.audit"):
        winner = await _race(service, pair.refresh_token)

    assert sorted(store.swaps) == [False, True]
    assert _reuse_count() == before + 1
    assert any("auth.refresh.reuse" in r.getMessage() for r in caplog.records)

    # Without cascade the winner keeps its session.
    assert await service.refresh(winner.refresh_token)


@pytest.mark.asyncio
async def test_lost_rotation_race_with_cascade_revokes_successor(clock):
    store = _LockstepStore(MemoryCredentialStore(clock=clock))
    service = AuthService(store, make_settings(REVOKE_FAMILY_ON_REUSE=True), clock=clock)
    pair = await _login(service)

    winner = await _race(service, pair.refresh_token)

    assert sorted(store.swaps) == [False, True]
    successor = await store.get_refresh_token(service.issuer.hash_refresh_token(winner.refresh_token))
    assert successor.revoked

    with pytest.raises(InvalidTokenError):
        await service.refresh(winner.refresh_token)
