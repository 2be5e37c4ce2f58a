"""
Key layout and JSON helpers on top of the key-value store.

Keeping the key templates here means the rest of the codebase never builds
raw store keys itself.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Optional

from relying_party.logging_config import logger

from .kv_store import KeyValueStore, StoreUnavailable

# Key templates
SESSION_KEY_TEMPLATE = "rp:session:{session_id}"
SESSION_EXTENSION_KEY_TEMPLATE = "rp:session_ext:{session_id}"
SESSION_METADATA_KEY_TEMPLATE = "rp:session_meta:{session_id}"
PRESENTATION_REQUEST_KEY_TEMPLATE = "rp:request:{request_id}"
BATCH_RESULT_KEY_TEMPLATE = "rp:batch:{batch_id}"
COUNTER_KEY_TEMPLATE = "rp:counter:{name}"

SESSION_KEY_PATTERN = "rp:session:*"
SESSION_KEY_PREFIX = "rp:session:"


def session_key(session_id: str) -> str:
    return SESSION_KEY_TEMPLATE.format(session_id=session_id)


def session_extension_key(session_id: str) -> str:
    return SESSION_EXTENSION_KEY_TEMPLATE.format(session_id=session_id)


def session_metadata_key(session_id: str) -> str:
    return SESSION_METADATA_KEY_TEMPLATE.format(session_id=session_id)


def presentation_request_key(request_id: str) -> str:
    return PRESENTATION_REQUEST_KEY_TEMPLATE.format(request_id=request_id)


def batch_result_key(batch_id: str) -> str:
    return BATCH_RESULT_KEY_TEMPLATE.format(batch_id=batch_id)


def counter_key(name: str) -> str:
    return COUNTER_KEY_TEMPLATE.format(name=name)


async def store_get_json(store: KeyValueStore, key: str) -> Optional[Any]:
    """
    Load a JSON value. Returns None on missing key or malformed payload.
    """
    raw = await store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed JSON payload under key %s", key)
        return None


async def store_set_json(
    store: KeyValueStore,
    key: str,
    value: Any,
    *,
    ttl_seconds: Optional[int] = None,
    nx: bool = False,
    xx: bool = False,
    keep_ttl: bool = False,
) -> bool:
    """
    Store a JSON-serialisable value; flags follow Redis SET semantics.
    """
    data = json.dumps(value, ensure_ascii=False)
    return await store.set(
        key, data, ttl_seconds=ttl_seconds, nx=nx, xx=xx, keep_ttl=keep_ttl
    )


async def increment_counter(store: KeyValueStore, name: str, amount: int = 1) -> Optional[int]:
    """
    Bump a usage counter. Counters are informational, so store failures are
    logged and swallowed.
    """
    try:
        return await store.incr_by(counter_key(name), amount)
    except StoreUnavailable as exc:
        logger.warning("Failed to increment counter %s: %s", name, exc)
        return None


async def get_counters(store: KeyValueStore, names: Iterable[str]) -> Dict[str, int]:
    counters: Dict[str, int] = {}
    for name in names:
        try:
            raw = await store.get(counter_key(name))
        except StoreUnavailable as exc:
            logger.warning("Failed to read counter %s: %s", name, exc)
            raw = None
        try:
            counters[name] = int(raw) if raw is not None else 0
        except ValueError:
            counters[name] = 0
    return counters


__all__ = [
    "SESSION_KEY_PATTERN",
    "SESSION_KEY_PREFIX",
    "batch_result_key",
    "counter_key",
    "get_counters",
    "increment_counter",
    "presentation_request_key",
    "session_extension_key",
    "session_key",
    "session_metadata_key",
    "store_get_json",
    "store_set_json",
]
