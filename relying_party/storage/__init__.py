from .kv_store import (
    KeyValueStore,
    MemoryKeyValueStore,
    RedisKeyValueStore,
    ResilientKeyValueStore,
    StoreUnavailable,
)

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "RedisKeyValueStore",
    "ResilientKeyValueStore",
    "StoreUnavailable",
]
