import asyncio
from datetime import timedelta

import pytest

from fakes import T0, BrokenStore, InMemoryRedis, make_outcome
from relying_party.errors import AppError, ErrorKind
from relying_party.models import VerificationFailure, VerificationOutcome
from relying_party.sessions import SessionManager, SessionSweeper
from relying_party.storage import RedisKeyValueStore
from relying_party.storage.records import session_key


@pytest.mark.asyncio
async def test_create_session_from_successful_outcome(sessions):
    session = await sessions.create(make_outcome())

    assert len(session.id) >= 43
    assert session.holder_id == "did:example:alice"
    assert session.attributes["country"] == "US"
    assert session.created_at == T0
    assert session.expires_at == T0 + timedelta(seconds=3600)
    assert await sessions.validate(session.id) is True


@pytest.mark.asyncio
async def test_session_ids_are_unique(sessions):
    created = [await sessions.create(make_outcome()) for _ in range(20)]

    assert len({s.id for s in created}) == 20


@pytest.mark.asyncio
async def test_requested_duration_is_clamped_to_maximum(store, clock):
    manager = SessionManager(store, default_duration=60, max_duration=600, clock=clock)

    session = await manager.create(make_outcome(), duration=10_000)

    assert session.expires_at == T0 + timedelta(seconds=600)


@pytest.mark.asyncio
async def test_create_rejects_failed_outcome(sessions):
    outcome = VerificationOutcome.failure([VerificationFailure(code="INVALID_SIGNATURE")])

    with pytest.raises(AppError) as exc_info:
        await sessions.create(outcome)

    assert exc_info.value.kind is ErrorKind.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_session_expires_at_its_deadline(sessions, clock):
    session = await sessions.create(make_outcome())

    clock.advance(3599)
    assert await sessions.validate(session.id) is True
    clock.advance(1)
    assert await sessions.validate(session.id) is False
    assert await sessions.get(session.id) is None


@pytest.mark.asyncio
async def test_expiry_does_not_depend_on_store_eviction(sessions, store, clock):
    session = await sessions.create(make_outcome())

    clock.advance(3600 + 30)

    # The record is still inside its storage grace period.
    assert await store.get(session_key(session.id)) is not None
    assert await sessions.validate(session.id) is False


@pytest.mark.asyncio
async def test_unknown_session_is_invalid(sessions):
    assert await sessions.validate("does-not-exist") is False
    assert await sessions.validate("") is False
    assert await sessions.get("does-not-exist") is None


@pytest.mark.asyncio
async def test_extend_pushes_expiry_back(sessions, clock):
    session = await sessions.create(make_outcome())
    clock.advance(3000)

    assert await sessions.extend(session.id, 600) is True

    clock.advance(1000)
    extended = await sessions.get(session.id)
    assert extended is not None
    assert extended.expires_at == T0 + timedelta(seconds=4200)


@pytest.mark.asyncio
async def test_extend_expired_session_returns_false(sessions, clock):
    session = await sessions.create(make_outcome())
    clock.advance(3600)

    assert await sessions.extend(session.id, 600) is False
    assert await sessions.extend("missing", 600) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("seconds", [0, -5, 86401, 1.5, True])
async def test_extend_rejects_invalid_amounts(sessions, seconds):
    session = await sessions.create(make_outcome())

    with pytest.raises(AppError) as exc_info:
        await sessions.extend(session.id, seconds)

    assert exc_info.value.kind is ErrorKind.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_concurrent_extensions_are_all_applied(sessions):
    session = await sessions.create(make_outcome())

    results = await asyncio.gather(*(sessions.extend(session.id, 60) for _ in range(10)))

    assert all(results)
    extended = await sessions.get(session.id)
    assert extended.expires_at == T0 + timedelta(seconds=3600 + 600)


@pytest.mark.asyncio
async def test_interleaved_extensions_on_redis_lose_no_updates(clock):
    manager = SessionManager(
        RedisKeyValueStore(InMemoryRedis(clock)),
        default_duration=3600,
        max_duration=86400,
        clock=clock,
    )
    session = await manager.create(make_outcome())

    results = await asyncio.gather(*(manager.extend(session.id, 60) for _ in range(10)))

    assert all(results)
    extended = await manager.get(session.id)
    assert extended.expires_at == T0 + timedelta(seconds=3600 + 600)


@pytest.mark.asyncio
async def test_touch_keeps_extensions(sessions, clock):
    session = await sessions.create(make_outcome())
    await sessions.extend(session.id, 600)
    clock.advance(10)

    touched = await sessions.get(session.id, touch=True)

    assert touched.last_accessed_at == T0 + timedelta(seconds=10)
    reloaded = await sessions.get(session.id)
    assert reloaded.last_accessed_at == T0 + timedelta(seconds=10)
    assert reloaded.expires_at == T0 + timedelta(seconds=4200)


@pytest.mark.asyncio
async def test_invalidate_is_idempotent(sessions):
    session = await sessions.create(make_outcome())

    assert await sessions.invalidate(session.id) is True
    assert await sessions.invalidate(session.id) is False
    assert await sessions.validate(session.id) is False
    assert await sessions.extend(session.id, 60) is False


@pytest.mark.asyncio
async def test_list_active_and_purge_expired(sessions, clock):
    first = await sessions.create(make_outcome(), duration=60)
    clock.advance(1)
    second = await sessions.create(make_outcome())

    assert [s.id for s in await sessions.list_active()] == [first.id, second.id]

    # First session is past its expiry but its record is still stored.
    clock.advance(61)
    assert await sessions.purge_expired() == 1
    assert [s.id for s in await sessions.list_active()] == [second.id]


@pytest.mark.asyncio
async def test_create_survives_store_outage(clock):
    manager = SessionManager(BrokenStore(), clock=clock)

    session = await manager.create(make_outcome())

    assert session.id
    assert session.expires_at == T0 + timedelta(seconds=3600)


@pytest.mark.asyncio
async def test_reads_during_store_outage_raise_service_error(clock):
    manager = SessionManager(BrokenStore(), clock=clock)

    with pytest.raises(AppError) as exc_info:
        await manager.validate("abc")

    assert exc_info.value.kind is ErrorKind.SERVICE_ERROR


@pytest.mark.asyncio
async def test_sweeper_purges_expired_sessions(sessions, clock):
    await sessions.create(make_outcome(), duration=60)
    clock.advance(61)

    assert await SessionSweeper(sessions, interval_seconds=60).sweep_once() == 1

    broken = SessionSweeper(SessionManager(BrokenStore(), clock=clock), interval_seconds=60)
    assert await broken.sweep_once() == 0


@pytest.mark.asyncio
async def test_sweeper_start_and_stop(sessions):
    sweeper = SessionSweeper(sessions, interval_seconds=3600)

    sweeper.start()
    assert sweeper.running
    await sweeper.stop()
    assert not sweeper.running
    SessionSweeper(sessions, interval_seconds=0).start()
