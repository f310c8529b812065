from datetime import timedelta

import pytest

from application.services.session_service import SessionManager
from core.config import SessionSettings
from domain.security.session import END_CONCURRENT_LIMIT, END_EXPIRED, END_LOGOUT


@pytest.fixture
def sessions(uow_factory, clock) -> SessionManager:
    return SessionManager(uow_factory, SessionSettings(), clock)


@pytest.mark.asyncio
async def test_created_session_is_valid_for_idle_window(sessions, clock):
    session = await sessions.create_session(1, "refresh-token", "10.0.0.1", "pytest", session_id="s1")
    assert session.expires_at == clock() + timedelta(minutes=30)
    assert await sessions.is_valid("s1", 1)
    assert not await sessions.is_valid("s1", 2)

    clock.advance(minutes=30)
    assert not await sessions.is_valid("s1", 1)


@pytest.mark.asyncio
async def test_touch_slides_expiry_forward(sessions, clock):
    await sessions.create_session(1, "t", None, None, session_id="s1")
    clock.advance(minutes=20)
    assert await sessions.touch("s1")
    clock.advance(minutes=20)
    assert await sessions.is_valid("s1", 1)
    stored = await sessions.get("s1")
    assert stored.expires_at == clock() + timedelta(minutes=10)


@pytest.mark.asyncio
async def test_expiry_never_passes_absolute_ceiling(sessions, clock):
    start = clock()
    await sessions.create_session(1, "t", None, None, session_id="s1")
    for _ in range(60):
        clock.advance(minutes=29)
        if not await sessions.touch("s1"):
            break
    stored = await sessions.get("s1")
    assert stored.expires_at == start + timedelta(hours=24)
    assert not await sessions.is_valid("s1", 1)


@pytest.mark.asyncio
async def test_invalidated_session_is_terminal(sessions, clock):
    await sessions.create_session(1, "t", None, None, session_id="s1")
    assert await sessions.invalidate("s1", END_LOGOUT)
    assert not await sessions.invalidate("s1", END_LOGOUT)
    assert not await sessions.touch("s1")
    stored = await sessions.get("s1")
    assert stored.end_reason == END_LOGOUT
    assert stored.ended_at == clock()


@pytest.mark.asyncio
async def test_expire_if_stale_moves_to_terminal_state(sessions, clock):
    await sessions.create_session(1, "t", None, None, session_id="s1")
    assert not await sessions.expire_if_stale("s1")
    clock.advance(minutes=31)
    assert await sessions.expire_if_stale("s1")
    assert not await sessions.expire_if_stale("s1")
    assert (await sessions.get("s1")).end_reason == END_EXPIRED


@pytest.mark.asyncio
async def test_oldest_session_evicted_over_concurrency_limit(sessions, clock):
    for idx in range(1, 5):
        await sessions.create_session(1, f"t{idx}", None, None, session_id=f"s{idx}")
        clock.advance(seconds=1)

    active = await sessions.list_active(1)
    assert [s.session_id for s in active] == ["s2", "s3", "s4"]
    assert (await sessions.get("s1")).end_reason == END_CONCURRENT_LIMIT


@pytest.mark.asyncio
async def test_rotate_token_rebinds_session(sessions):
    first = await sessions.create_session(1, "old-token", None, None, session_id="s1")
    assert await sessions.rotate_token("s1", "new-token")
    assert (await sessions.get("s1")).token_hash != first.token_hash


@pytest.mark.asyncio
async def test_invalidate_all(sessions):
    await sessions.create_session(1, "a", None, None, session_id="s1")
    await sessions.create_session(1, "b", None, None, session_id="s2")
    await sessions.create_session(2, "c", None, None, session_id="s3")
    assert await sessions.invalidate_all(1, END_LOGOUT) == 2
    assert await sessions.list_active(1) == []
    assert len(await sessions.list_active(2)) == 1
