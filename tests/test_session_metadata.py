import pytest

from fakes import T0, BrokenStore, FakeClock
from relying_party.sessions import SessionMetadataCache


@pytest.mark.asyncio
async def test_metadata_tracks_access_and_extensions(store, clock):
    cache = SessionMetadataCache(store, clock=clock)
    await cache.record_creation("s1", ttl_seconds=120, creation_method="presentation_request")

    await cache.record_access("s1", "/profile/")
    await cache.record_access("s1", "/profile/")
    clock.advance(5)
    await cache.record_access("s1", "/profile/financial")
    await cache.record_extension("s1", ttl_seconds=600)

    metadata = await cache.get("s1")
    assert metadata.access_count == 3
    assert metadata.endpoints_accessed == ["/profile/", "/profile/financial"]
    assert metadata.extension_count == 1
    assert metadata.last_extended == metadata.last_accessed

    summary = SessionMetadataCache.activity_summary(metadata)
    assert summary["accessCount"] == 3
    assert summary["creationMethod"] == "presentation_request"


@pytest.mark.asyncio
async def test_access_without_metadata_is_ignored(store, clock):
    cache = SessionMetadataCache(store, clock=clock)

    await cache.record_access("unknown", "/profile/")

    assert await cache.get("unknown") is None


def test_activity_summary_defaults():
    summary = SessionMetadataCache.activity_summary(None)

    assert summary == {
        "accessCount": 1,
        "extensionCount": 0,
        "lastExtended": None,
        "endpointsAccessed": [],
        "creationMethod": "unknown",
    }


@pytest.mark.asyncio
async def test_metadata_failures_never_propagate():
    cache = SessionMetadataCache(BrokenStore(), clock=FakeClock(T0))

    await cache.record_creation("s1", ttl_seconds=60)
    await cache.record_access("s1", "/profile/")
    await cache.record_extension("s1", ttl_seconds=60)
    await cache.delete("s1")

    assert await cache.get("s1") is None
