"""Prompt cache package initialization."""

from prompt_tuner.cache.prompt_cache import (
    CachedPrompt,
    CacheEntry,
    CacheStats,
    PromptCache,
    normalize_key,
)
from prompt_tuner.cache.store import (
    InMemoryKVStore,
    JsonFileKVStore,
    KVKey,
    KVStore,
    RedisKVStore,
)

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CachedPrompt",
    "InMemoryKVStore",
    "JsonFileKVStore",
    "KVKey",
    "KVStore",
    "PromptCache",
    "RedisKVStore",
    "normalize_key",
]
