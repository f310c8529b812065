import pytest

from application.services.security_event_service import SecurityEventLogger
from domain.security.events import SecurityActor, SecurityEventType, Severity


@pytest.mark.asyncio
async def test_events_are_persisted_and_listed(uow_factory, clock):
    events = SecurityEventLogger(uow_factory, clock)
    actor = SecurityActor(user_id=1, email="ana@example.com", ip_address="10.0.0.1")

    first = await events.log(SecurityEventType.LOGIN_FAILED, Severity.MEDIUM, "bad password", actor, {"n": 1})
    clock.advance(seconds=5)
    second = await events.log(SecurityEventType.ACCOUNT_LOCKED, Severity.HIGH, "locked", actor)
    await events.log(SecurityEventType.LOGIN_SUCCESS, Severity.LOW, "other", SecurityActor(user_id=2))

    assert first and second
    recent = await events.list_recent(limit=10, user_id=1)
    assert [e.event_id for e in recent] == [second, first]
    assert recent[1].metadata == {"n": 1}
    assert recent[1].actor.ip_address == "10.0.0.1"

    locked = await events.list_recent(event_type="account_locked")
    assert [e.event_type for e in locked] == [SecurityEventType.ACCOUNT_LOCKED]


class _BrokenUnitOfWork:
    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        raise ConnectionError("database is down")

    async def __aexit__(self, *exc):
        return False


@pytest.mark.asyncio
async def test_write_failure_never_raises(clock):
    events = SecurityEventLogger(_BrokenUnitOfWork, clock)
    result = await events.log(SecurityEventType.LOGIN_FAILED, Severity.HIGH, "bad password")
    assert result is None
