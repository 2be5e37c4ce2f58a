from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError

from relying_party.clock import Clock, utc_now
from relying_party.logging_config import logger
from relying_party.models import SessionMetadata
from relying_party.storage import KeyValueStore, StoreUnavailable
from relying_party.storage.records import (
    session_metadata_key,
    store_get_json,
    store_set_json,
)

# Cap on distinct endpoints remembered per session.
MAX_TRACKED_ENDPOINTS = 50


class SessionMetadataCache:
    """
    Advisory usage counters kept next to each session.

    Every method is best effort: failures are logged and never reach the
    caller, because nothing in the session lifecycle depends on this data.
    """

    def __init__(self, store: KeyValueStore, *, clock: Optional[Clock] = None) -> None:
        self._store = store
        self._clock = clock or utc_now

    async def record_creation(
        self,
        session_id: str,
        *,
        ttl_seconds: int,
        creation_method: str = "presentation",
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        metadata = SessionMetadata(
            session_id=session_id,
            creation_method=creation_method,
            created_at=self._clock(),
            **(extra or {}),
        )
        await self._write(metadata, ttl_seconds=ttl_seconds)

    async def record_access(self, session_id: str, endpoint: Optional[str] = None) -> None:
        metadata = await self.get(session_id)
        if metadata is None:
            return
        metadata.access_count += 1
        metadata.last_accessed = self._clock()
        if (
            endpoint
            and endpoint not in metadata.endpoints_accessed
            and len(metadata.endpoints_accessed) < MAX_TRACKED_ENDPOINTS
        ):
            metadata.endpoints_accessed.append(endpoint)
        await self._write(metadata, keep_ttl=True)

    async def record_extension(self, session_id: str, *, ttl_seconds: int) -> None:
        metadata = await self.get(session_id)
        if metadata is None:
            return
        metadata.extension_count += 1
        metadata.last_extended = self._clock()
        await self._write(metadata, ttl_seconds=ttl_seconds)

    async def get(self, session_id: str) -> Optional[SessionMetadata]:
        try:
            data = await store_get_json(self._store, session_metadata_key(session_id))
        except StoreUnavailable as exc:
            logger.warning("Failed to load metadata for session %s: %s", session_id, exc)
            return None
        if data is None:
            return None
        try:
            return SessionMetadata.model_validate(data)
        except ValidationError:
            logger.warning("Discarding malformed metadata for session %s", session_id)
            return None

    async def delete(self, session_id: str) -> None:
        try:
            await self._store.delete(session_metadata_key(session_id))
        except StoreUnavailable as exc:
            logger.warning("Failed to delete metadata for session %s: %s", session_id, exc)

    async def _write(
        self,
        metadata: SessionMetadata,
        *,
        ttl_seconds: Optional[int] = None,
        keep_ttl: bool = False,
    ) -> None:
        try:
            await store_set_json(
                self._store,
                session_metadata_key(metadata.session_id),
                metadata.model_dump(mode="json", by_alias=True),
                ttl_seconds=ttl_seconds,
                keep_ttl=keep_ttl,
            )
        except StoreUnavailable as exc:
            logger.warning(
                "Failed to store metadata for session %s: %s", metadata.session_id, exc
            )

    @staticmethod
    def activity_summary(metadata: Optional[SessionMetadata]) -> Dict[str, Any]:
        if metadata is None:
            return {
                "accessCount": 1,
                "extensionCount": 0,
                "lastExtended": None,
                "endpointsAccessed": [],
                "creationMethod": "unknown",
            }
        last_extended: Optional[datetime] = metadata.last_extended
        return {
            "accessCount": max(1, metadata.access_count),
            "extensionCount": metadata.extension_count,
            "lastExtended": last_extended.isoformat() if last_extended else None,
            "endpointsAccessed": list(metadata.endpoints_accessed),
            "creationMethod": metadata.creation_method,
        }


__all__ = ["SessionMetadataCache"]
