from datetime import timedelta

import pytest

from application.services.lockout_service import AccountLockoutTracker, policy_from_settings
from core.config import LockoutSettings


EMAIL = "ana@example.com"
IP = "10.0.0.8"


@pytest.fixture
def tracker(uow_factory, counter_store, clock) -> AccountLockoutTracker:
    return AccountLockoutTracker(uow_factory, counter_store, policy_from_settings(LockoutSettings()), clock)


@pytest.mark.asyncio
async def test_fifth_failure_locks(tracker, clock):
    for expected in range(1, 5):
        status = await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
        assert not status.locked
        assert status.failed_attempts == expected

    status = await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    assert status.locked
    assert status.just_locked
    assert status.locked_until == clock() + timedelta(minutes=30)

    current = await tracker.is_locked(EMAIL, IP)
    assert current.locked
    assert current.retry_after_seconds(clock()) == 1800


@pytest.mark.asyncio
async def test_lock_expires_after_cooldown(tracker, clock):
    for _ in range(5):
        await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    clock.advance(minutes=29, seconds=59)
    assert (await tracker.is_locked(EMAIL, IP)).locked
    clock.advance(seconds=1)
    assert not (await tracker.is_locked(EMAIL, IP)).locked


@pytest.mark.asyncio
async def test_lock_is_scoped_to_email_and_ip(tracker):
    for _ in range(5):
        await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    assert not (await tracker.is_locked(EMAIL, "10.0.0.9")).locked
    assert not (await tracker.is_locked("bob@example.com", IP)).locked
    assert (await tracker.is_locked(EMAIL.upper(), IP)).locked


@pytest.mark.asyncio
async def test_failures_outside_window_do_not_accumulate(tracker, clock):
    for _ in range(4):
        await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    clock.advance(minutes=15)
    status = await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    assert not status.locked
    assert status.failed_attempts == 1


@pytest.mark.asyncio
async def test_success_clears_counter(tracker):
    for _ in range(4):
        await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    await tracker.record_attempt(EMAIL, IP, True)
    assert await tracker.pending_failures(EMAIL, IP) == 0
    status = await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    assert status.failed_attempts == 1


@pytest.mark.asyncio
async def test_persisted_lockout_survives_store_flush(tracker, counter_store):
    for _ in range(5):
        await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    await counter_store.delete(f"lockout:lock:{EMAIL}:{IP}")
    assert (await tracker.is_locked(EMAIL, IP)).locked


@pytest.mark.asyncio
async def test_clear_unlocks(tracker):
    for _ in range(5):
        await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    assert await tracker.clear(EMAIL, IP) is True
    assert not (await tracker.is_locked(EMAIL, IP)).locked
    assert await tracker.clear(EMAIL, IP) is False


@pytest.mark.asyncio
async def test_attempts_are_audited(tracker):
    await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    await tracker.record_attempt(EMAIL, IP, False, reason="unknown_user")
    assert await tracker.failed_count_in_window(EMAIL, IP) == 2


@pytest.mark.asyncio
async def test_trailing_window_counts_failures_across_fixed_boundary(tracker, clock):
    await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    clock.advance(minutes=14, seconds=50)
    for _ in range(3):
        status = await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    assert status.failed_attempts == 4

    # 第一次失败在 15:00 移出窗口，14:50 的三次仍在窗口内
    clock.advance(seconds=20)
    status = await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    assert not status.locked
    assert status.failed_attempts == 4
    status = await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    assert status.locked
    assert status.just_locked


@pytest.mark.asyncio
async def test_pending_failures_age_out_one_by_one(tracker, clock):
    for _ in range(2):
        await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    clock.advance(minutes=10)
    await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    assert await tracker.pending_failures(EMAIL, IP) == 3

    clock.advance(minutes=5)
    assert await tracker.pending_failures(EMAIL, IP) == 1
    clock.advance(minutes=10)
    assert await tracker.pending_failures(EMAIL, IP) == 0


@pytest.mark.asyncio
async def test_lock_status_keeps_trigger_count(tracker, counter_store):
    for _ in range(5):
        await tracker.record_attempt(EMAIL, IP, False, reason="bad_password")
    current = await tracker.is_locked(EMAIL, IP)
    assert current.locked
    assert current.failed_attempts == 5

    # 只存解锁时间的旧值仍按锁定处理
    lock_key = f"lockout:lock:{EMAIL}:{IP}"
    await counter_store.set(lock_key, current.locked_until.isoformat(), 60_000)
    legacy = await tracker.is_locked(EMAIL, IP)
    assert legacy.locked
    assert legacy.locked_until == current.locked_until
