"""
Key-value storage with TTL used for sessions, presentation requests and
cached results.

Three implementations share one async interface:

- RedisKeyValueStore: shared state across processes via redis.asyncio;
- MemoryKeyValueStore: process-local dictionary with lazy expiry;
- ResilientKeyValueStore: Redis first, mirrored into memory, and falling
  back to the in-process copy while Redis is unreachable.
"""

from __future__ import annotations

import fnmatch
from typing import Dict, List, Optional, Protocol, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

from relying_party.clock import Clock, utc_now
from relying_party.logging_config import logger


class StoreUnavailable(Exception):
    """
    Raised when the backing store cannot be reached.
    """


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: Optional[int] = None,
        nx: bool = False,
        xx: bool = False,
        keep_ttl: bool = False,
    ) -> bool: ...

    async def delete(self, *keys: str) -> int: ...

    async def incr_by(
        self, key: str, amount: int, *, ttl_seconds: Optional[int] = None
    ) -> int: ...

    async def extend_ttl(self, key: str, ttl_seconds: int) -> bool: ...

    async def scan(self, pattern: str) -> List[str]: ...

    async def ping(self) -> bool: ...


class RedisKeyValueStore:
    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._redis.get(key)
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(str(exc)) from exc

    async def set(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: Optional[int] = None,
        nx: bool = False,
        xx: bool = False,
        keep_ttl: bool = False,
    ) -> bool:
        kwargs = {"nx": nx, "xx": xx}
        if keep_ttl:
            kwargs["keepttl"] = True
        elif ttl_seconds is not None:
            kwargs["ex"] = max(1, int(ttl_seconds))
        try:
            result = await self._redis.set(key, value, **kwargs)
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(str(exc)) from exc
        return bool(result)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self._redis.delete(*keys))
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(str(exc)) from exc

    async def incr_by(
        self, key: str, amount: int, *, ttl_seconds: Optional[int] = None
    ) -> int:
        try:
            value = int(await self._redis.incrby(key, amount))
            if ttl_seconds is not None:
                await self._raise_ttl(key, ttl_seconds)
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(str(exc)) from exc
        return value

    async def extend_ttl(self, key: str, ttl_seconds: int) -> bool:
        try:
            await self._raise_ttl(key, ttl_seconds)
            return bool(await self._redis.exists(key))
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(str(exc)) from exc

    async def _raise_ttl(self, key: str, ttl_seconds: int) -> None:
        # NX covers keys without a TTL, GT only ever lengthens an existing one.
        ttl = max(1, int(ttl_seconds))
        await self._redis.expire(key, ttl, nx=True)
        await self._redis.expire(key, ttl, gt=True)

    async def scan(self, pattern: str) -> List[str]:
        try:
            return [key async for key in self._redis.scan_iter(match=pattern)]
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(str(exc)) from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError):
            return False


class MemoryKeyValueStore:
    """
    Process-local store. Entries expire lazily on access; `purge_expired`
    reclaims memory for keys nobody reads again.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or utc_now
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _now(self) -> float:
        return self._clock().timestamp()

    def _live(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._now():
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: Optional[int] = None,
        nx: bool = False,
        xx: bool = False,
        keep_ttl: bool = False,
    ) -> bool:
        entry = self._live(key)
        if nx and entry is not None:
            return False
        if xx and entry is None:
            return False
        if keep_ttl and entry is not None:
            expires_at = entry[1]
        elif ttl_seconds is not None and not keep_ttl:
            expires_at = self._now() + max(1, int(ttl_seconds))
        else:
            expires_at = None
        self._data[key] = (value, expires_at)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self._data[key]
                removed += 1
        return removed

    async def incr_by(
        self, key: str, amount: int, *, ttl_seconds: Optional[int] = None
    ) -> int:
        entry = self._live(key)
        current = int(entry[0]) if entry else 0
        expires_at = entry[1] if entry else None
        value = current + amount
        self._data[key] = (str(value), expires_at)
        if ttl_seconds is not None:
            self._raise_ttl(key, ttl_seconds)
        return value

    async def extend_ttl(self, key: str, ttl_seconds: int) -> bool:
        if self._live(key) is None:
            return False
        self._raise_ttl(key, ttl_seconds)
        return True

    def _raise_ttl(self, key: str, ttl_seconds: int) -> None:
        value, expires_at = self._data[key]
        candidate = self._now() + max(1, int(ttl_seconds))
        if expires_at is None or candidate > expires_at:
            self._data[key] = (value, candidate)

    async def scan(self, pattern: str) -> List[str]:
        return [key for key in list(self._data) if fnmatch.fnmatchcase(key, pattern) and self._live(key)]

    async def ping(self) -> bool:
        return True

    def purge_expired(self) -> int:
        now = self._now()
        expired = [
            key
            for key, (_, expires_at) in self._data.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            del self._data[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)


class ResilientKeyValueStore:
    """
    Redis-backed store that keeps a process-local mirror of every write.

    When Redis raises StoreUnavailable the operation is served from the
    mirror instead, so sessions keep working inside this process.
    """

    def __init__(self, primary: KeyValueStore, fallback: Optional[MemoryKeyValueStore] = None) -> None:
        self._primary = primary
        self._fallback = fallback or MemoryKeyValueStore()
        self._degraded = False

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def fallback(self) -> MemoryKeyValueStore:
        return self._fallback

    def _mark_degraded(self, operation: str, exc: StoreUnavailable) -> None:
        if not self._degraded:
            logger.warning(
                "Session store unavailable during %s (%s); continuing with single-process session only",
                operation,
                exc,
            )
        self._degraded = True

    def _mark_recovered(self) -> None:
        if self._degraded:
            logger.info("Session store reachable again; leaving single-process mode")
        self._degraded = False

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self._primary.get(key)
        except StoreUnavailable as exc:
            self._mark_degraded("get", exc)
            return await self._fallback.get(key)
        self._mark_recovered()
        return value

    async def set(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: Optional[int] = None,
        nx: bool = False,
        xx: bool = False,
        keep_ttl: bool = False,
    ) -> bool:
        try:
            stored = await self._primary.set(
                key, value, ttl_seconds=ttl_seconds, nx=nx, xx=xx, keep_ttl=keep_ttl
            )
        except StoreUnavailable as exc:
            self._mark_degraded("set", exc)
            return await self._fallback.set(
                key, value, ttl_seconds=ttl_seconds, nx=nx, xx=xx, keep_ttl=keep_ttl
            )
        self._mark_recovered()
        if stored:
            # A keep-TTL write only refreshes an entry the mirror already has.
            await self._fallback.set(
                key, value, ttl_seconds=ttl_seconds, xx=keep_ttl, keep_ttl=keep_ttl
            )
        return stored

    async def delete(self, *keys: str) -> int:
        mirrored = await self._fallback.delete(*keys)
        try:
            removed = await self._primary.delete(*keys)
        except StoreUnavailable as exc:
            self._mark_degraded("delete", exc)
            return mirrored
        self._mark_recovered()
        return removed

    async def incr_by(
        self, key: str, amount: int, *, ttl_seconds: Optional[int] = None
    ) -> int:
        try:
            value = await self._primary.incr_by(key, amount, ttl_seconds=ttl_seconds)
        except StoreUnavailable as exc:
            self._mark_degraded("incr_by", exc)
            return await self._fallback.incr_by(key, amount, ttl_seconds=ttl_seconds)
        self._mark_recovered()
        await self._fallback.set(key, str(value), ttl_seconds=ttl_seconds)
        return value

    async def extend_ttl(self, key: str, ttl_seconds: int) -> bool:
        mirrored = await self._fallback.extend_ttl(key, ttl_seconds)
        try:
            extended = await self._primary.extend_ttl(key, ttl_seconds)
        except StoreUnavailable as exc:
            self._mark_degraded("extend_ttl", exc)
            return mirrored
        self._mark_recovered()
        return extended

    async def scan(self, pattern: str) -> List[str]:
        try:
            keys = await self._primary.scan(pattern)
        except StoreUnavailable as exc:
            self._mark_degraded("scan", exc)
            return await self._fallback.scan(pattern)
        self._mark_recovered()
        return keys

    async def ping(self) -> bool:
        return await self._primary.ping()

    def purge_expired(self) -> int:
        return self._fallback.purge_expired()


__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "RedisKeyValueStore",
    "ResilientKeyValueStore",
    "StoreUnavailable",
]
