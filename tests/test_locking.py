"""
Advisory lock tests: mutual exclusion within the TTL, lazy expiry,
holder-only release and refresh
"""
from datetime import timedelta

import pytest

from image_checker.services import SessionLockedError, SessionNotFoundError, SessionRepository

BLOB = "memory://test-bucket/sessions/x/devices-a.json"
ALICE = "alice@example.com"
BOB = "bob@example.com"


@pytest.fixture
async def session_id(repo, document_factory):
    document = document_factory()
    await repo.create(document, BLOB)
    return document.session_id


async def test_acquire_stamps_holder_and_time(repo, session_id, clock):
    record = await repo.acquire_lock(session_id, ALICE)

    assert record.locked_by == ALICE
    assert record.locked_at == clock.now


async def test_second_editor_blocked_within_ttl(repo, session_id, clock):
    await repo.acquire_lock(session_id, ALICE)
    locked_at = clock.now
    clock.advance(minutes=4, seconds=59)

    with pytest.raises(SessionLockedError) as exc_info:
        await repo.acquire_lock(session_id, BOB)

    assert exc_info.value.locked_by == ALICE
    assert exc_info.value.locked_at == locked_at
    record = await repo.get(session_id)
    assert record.locked_by == ALICE


async def test_stale_lock_is_reclaimable(repo, session_id, clock):
    await repo.acquire_lock(session_id, ALICE)
    clock.advance(minutes=5, seconds=1)

    record = await repo.acquire_lock(session_id, BOB)

    assert record.locked_by == BOB
    assert record.locked_at == clock.now


async def test_expired_lock_stays_visible_until_next_acquire(repo, session_id, clock):
    await repo.acquire_lock(session_id, ALICE)
    clock.advance(hours=1)

    record = await repo.get(session_id)

    assert record.locked_by == ALICE


async def test_reacquire_by_holder_refreshes(repo, session_id, clock):
    await repo.acquire_lock(session_id, ALICE)
    clock.advance(minutes=4)

    record = await repo.acquire_lock(session_id, ALICE)
    assert record.locked_at == clock.now

    # The refreshed stamp restarts the TTL
    clock.advance(minutes=4)
    with pytest.raises(SessionLockedError):
        await repo.acquire_lock(session_id, BOB)


async def test_release_by_non_holder_is_noop(repo, session_id):
    await repo.acquire_lock(session_id, ALICE)

    released = await repo.release_lock(session_id, BOB)

    assert released is False
    record = await repo.get(session_id)
    assert record.locked_by == ALICE


async def test_release_by_holder_frees_lock(repo, session_id):
    await repo.acquire_lock(session_id, ALICE)

    assert await repo.release_lock(session_id, ALICE) is True

    record = await repo.get(session_id)
    assert record.locked_by is None
    assert record.locked_at is None
    assert (await repo.acquire_lock(session_id, BOB)).locked_by == BOB


async def test_refresh_only_for_holder(repo, session_id, clock):
    await repo.acquire_lock(session_id, ALICE)
    clock.advance(minutes=3)

    assert await repo.refresh_lock(session_id, BOB) is False
    assert await repo.refresh_lock(session_id, ALICE) is True

    record = await repo.get(session_id)
    assert record.locked_at == clock.now


async def test_heartbeat_keeps_lock_alive(repo, session_id, clock):
    await repo.acquire_lock(session_id, ALICE)
    for _ in range(4):
        clock.advance(minutes=4)
        await repo.refresh_lock(session_id, ALICE)

    with pytest.raises(SessionLockedError):
        await repo.acquire_lock(session_id, BOB)


async def test_lock_does_not_bump_version(repo, session_id):
    before = (await repo.get(session_id)).version

    await repo.acquire_lock(session_id, ALICE)
    await repo.release_lock(session_id, ALICE)

    assert (await repo.get(session_id)).version == before


async def test_lock_unknown_session(repo):
    with pytest.raises(SessionNotFoundError):
        await repo.acquire_lock("missing", ALICE)
    with pytest.raises(SessionNotFoundError):
        await repo.release_lock("missing", ALICE)
    with pytest.raises(SessionNotFoundError):
        await repo.refresh_lock("missing", ALICE)


async def test_cannot_lock_deleted_session(repo, session_id):
    await repo.delete(session_id)

    with pytest.raises(SessionNotFoundError):
        await repo.acquire_lock(session_id, ALICE)


async def test_configurable_ttl(db, clock, session_id):
    short = SessionRepository(db, lock_ttl=timedelta(seconds=30), clock=clock)
    await short.acquire_lock(session_id, ALICE)
    clock.advance(seconds=31)

    assert (await short.acquire_lock(session_id, BOB)).locked_by == BOB
