"""
Session lifecycle: create, validate, read, extend and invalidate.

A session record is written once, with set-if-absent, and never rewritten
except to refresh `lastAccessedAt`. Extensions are accumulated in a
separate counter key through an atomic increment, so concurrent extensions
of the same session all land. The effective expiry is the stored base
expiry plus that counter.

Expiry is lazy: a record past its effective expiry is treated as absent on
read. Store TTLs and `purge_expired` only reclaim space.
"""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from relying_party.clock import Clock, utc_now
from relying_party.errors import service_error, validation_error
from relying_party.logging_config import logger
from relying_party.models import Session, VerificationOutcome
from relying_party.storage import KeyValueStore, StoreUnavailable
from relying_party.storage.records import (
    SESSION_KEY_PATTERN,
    SESSION_KEY_PREFIX,
    session_extension_key,
    session_key,
    store_get_json,
    store_set_json,
)

from .metadata import SessionMetadataCache

_CREATE_ATTEMPTS = 3


class SessionManager:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        default_duration: int = 3600,
        max_duration: int = 86400,
        grace_seconds: int = 60,
        metadata: Optional[SessionMetadataCache] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        if default_duration <= 0 or max_duration <= 0:
            raise ValueError("session durations must be positive")
        self._store = store
        self.default_duration = default_duration
        self.max_duration = max_duration
        self._grace = max(0, grace_seconds)
        self._clock = clock or utc_now
        self.metadata = metadata or SessionMetadataCache(store, clock=self._clock)

    async def create(
        self,
        outcome: VerificationOutcome,
        *,
        duration: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        creation_method: str = "presentation",
    ) -> Session:
        """
        Open a session for a successful verification outcome.

        Requested durations above `max_duration` are clamped. If the store
        rejects the write the failure is logged and the session is still
        returned.
        """
        if not outcome.is_valid or not outcome.holder_id:
            raise validation_error(
                "Cannot create a session from an unsuccessful verification",
                context={"failures": [f.code for f in outcome.failures]},
            )
        seconds = self.default_duration if duration is None else duration
        if seconds <= 0:
            raise validation_error(
                "Session duration must be positive", context={"duration": seconds}
            )
        if seconds > self.max_duration:
            logger.info(
                "Requested session duration %ss clamped to %ss", seconds, self.max_duration
            )
            seconds = self.max_duration

        now = self._clock()
        session = Session(
            id="",
            holder_id=outcome.holder_id,
            credential_ids=list(outcome.credential_ids),
            attributes=dict(outcome.disclosed_attributes),
            created_at=now,
            expires_at=now + timedelta(seconds=seconds),
            last_accessed_at=now,
            metadata=dict(metadata or {}),
        )
        ttl = seconds + self._grace

        try:
            session = await self._persist_new(session, ttl)
        except StoreUnavailable as exc:
            session = session.model_copy(update={"id": secrets.token_urlsafe(32)})
            logger.warning(
                "Could not persist session %s (%s); it will not survive this request",
                session.id,
                exc,
            )
            return session

        await self.metadata.record_creation(
            session.id,
            ttl_seconds=ttl,
            creation_method=creation_method,
            extra={"holderId": session.holder_id},
        )
        logger.info(
            "Session created for holder %s, expires at %s (%d attributes)",
            session.holder_id,
            session.expires_at.isoformat(),
            len(session.attributes),
        )
        return session

    async def _persist_new(self, session: Session, ttl: int) -> Session:
        for _ in range(_CREATE_ATTEMPTS):
            candidate = session.model_copy(update={"id": secrets.token_urlsafe(32)})
            stored = await store_set_json(
                self._store,
                session_key(candidate.id),
                candidate.model_dump(mode="json", by_alias=True),
                ttl_seconds=ttl,
                nx=True,
            )
            if stored:
                return candidate
        raise service_error("Could not allocate a unique session id")

    async def validate(self, session_id: str) -> bool:
        """True while the session exists and has not reached its expiry."""
        return await self.get(session_id, touch=False) is not None

    async def get(self, session_id: str, *, touch: bool = False) -> Optional[Session]:
        """
        Return the active session or None. With `touch=True` the stored
        `lastAccessedAt` is refreshed; a failed refresh does not fail the read.
        """
        loaded = await self._load(session_id)
        if loaded is None:
            return None
        session, record, _ = loaded
        if not touch:
            return session

        now = self._clock()
        record["lastAccessedAt"] = now.isoformat()
        try:
            await store_set_json(
                self._store, session_key(session_id), record, xx=True, keep_ttl=True
            )
        except StoreUnavailable as exc:
            logger.warning("Failed to touch session %s: %s", session_id, exc)
        return session.model_copy(update={"last_accessed_at": now})

    async def extend(self, session_id: str, seconds: int) -> bool:
        """
        Push the expiry of an active session back by `seconds`.

        Each call is capped at `max_duration`; repeated calls are not
        capped in aggregate. Returns False when the session is missing or
        already expired.
        """
        if isinstance(seconds, bool) or not isinstance(seconds, int):
            raise validation_error(
                "Extension must be a whole number of seconds", context={"seconds": seconds}
            )
        if seconds <= 0:
            raise validation_error(
                "Extension must be positive", context={"seconds": seconds}
            )
        if seconds > self.max_duration:
            raise validation_error(
                f"Extension cannot exceed {self.max_duration} seconds",
                context={"seconds": seconds, "maxDuration": self.max_duration},
            )

        loaded = await self._load(session_id)
        if loaded is None:
            return False
        session, _, extension = loaded
        base_expires_at = session.expires_at - timedelta(seconds=extension)

        ext_key = session_extension_key(session_id)
        try:
            total = await self._store.incr_by(ext_key, seconds)
            now = self._clock()
            if base_expires_at + timedelta(seconds=total - seconds) <= now:
                # Expired between the read and the increment.
                await self._store.incr_by(ext_key, -seconds)
                return False
            expires_at = base_expires_at + timedelta(seconds=total)
            ttl = int((expires_at - now).total_seconds()) + self._grace
            await self._store.extend_ttl(ext_key, ttl)
            if not await self._store.extend_ttl(session_key(session_id), ttl):
                # Invalidated concurrently.
                await self._store.delete(ext_key)
                return False
        except StoreUnavailable as exc:
            raise service_error(
                "Session store unavailable", context={"operation": "extend"}
            ) from exc

        await self.metadata.record_extension(session_id, ttl_seconds=ttl)
        logger.info(
            "Session %s extended by %ss, now expires at %s",
            session_id,
            seconds,
            expires_at.isoformat(),
        )
        return True

    async def invalidate(self, session_id: str) -> bool:
        """
        Remove a session. Returns whether a record was removed; calling it
        again returns False.
        """
        try:
            removed = await self._store.delete(session_key(session_id))
            await self._store.delete(session_extension_key(session_id))
        except StoreUnavailable as exc:
            raise service_error(
                "Session store unavailable", context={"operation": "invalidate"}
            ) from exc
        await self.metadata.delete(session_id)
        if removed:
            logger.info("Session %s invalidated", session_id)
        return removed > 0

    async def list_active(self) -> List[Session]:
        sessions: List[Session] = []
        for session_id in await self._session_ids():
            session = await self.get(session_id)
            if session is not None:
                sessions.append(session)
        sessions.sort(key=lambda s: s.created_at)
        return sessions

    async def purge_expired(self) -> int:
        """
        Delete records whose effective expiry has passed. Purely a storage
        reclamation step; reads already treat such records as absent.
        """
        purged = 0
        for session_id in await self._session_ids():
            if await self._load(session_id) is None and await self.invalidate(session_id):
                purged += 1
        reclaim = getattr(self._store, "purge_expired", None)
        if callable(reclaim):
            purged += reclaim()
        return purged

    async def _session_ids(self) -> List[str]:
        try:
            keys = await self._store.scan(SESSION_KEY_PATTERN)
        except StoreUnavailable as exc:
            raise service_error(
                "Session store unavailable", context={"operation": "scan"}
            ) from exc
        return [key[len(SESSION_KEY_PREFIX):] for key in keys]

    async def _load(
        self, session_id: str
    ) -> Optional[Tuple[Session, Dict[str, Any], int]]:
        if not session_id:
            return None
        try:
            record = await store_get_json(self._store, session_key(session_id))
            raw_extension = await self._store.get(session_extension_key(session_id))
        except StoreUnavailable as exc:
            raise service_error(
                "Session store unavailable", context={"operation": "read"}
            ) from exc
        if not isinstance(record, dict):
            return None
        try:
            stored = Session.model_validate(record)
        except ValidationError:
            logger.warning("Discarding malformed session record %s", session_id)
            return None

        extension = _parse_int(raw_extension)
        session = stored.model_copy(
            update={"expires_at": stored.expires_at + timedelta(seconds=extension)}
        )
        if session.is_expired(self._clock()):
            return None
        return session, record, extension


def _parse_int(raw: Optional[str]) -> int:
    if raw is None:
        return 0
    try:
        return int(raw)
    except ValueError:
        return 0


__all__ = ["SessionManager"]
