"""Prompt cache on top of a TTL-capable key-value store.

Entries are addressed by a normalized, lossy key derived from the prompt text.
Distinct prompts may collide on the same key; that is accepted.

Store failures never break a workflow run: they are logged and treated as a
miss (reads) or a no-op (writes).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from prompt_tuner.cache.store import KVStore
from prompt_tuner.errors import CacheError
from prompt_tuner.scoring.vectors import RankedPrompt, find_similar_prompts

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
MAX_KEY_LENGTH = 100
MAX_SIMILAR_RESULTS = 5

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_key(prompt: str) -> str:
    """Case-fold, collapse non-alphanumeric runs to '-', trim and truncate."""
    key = _NON_ALNUM.sub("-", prompt.lower()).strip("-")
    return key[:MAX_KEY_LENGTH].rstrip("-")


def word_overlap(first: str, second: str) -> float:
    """Shared words divided by the size of the larger word set."""
    words1 = set(first.lower().split())
    words2 = set(second.lower().split())
    largest = max(len(words1), len(words2))
    if largest == 0:
        return 0.0
    return len(words1 & words2) / largest


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class CachedPrompt(BaseModel):
    """Payload accepted by `PromptCache.set`."""

    prompt: str
    style: str
    score: float
    features: dict[str, float] = Field(default_factory=dict)
    image_url: str
    final_prompt: str | None = None


class CacheEntry(CachedPrompt):
    """A stored prompt result with its key and lifetime."""

    id: str
    created_at: datetime
    expires_at: datetime

    @model_validator(mode="after")
    def _expires_after_creation(self) -> CacheEntry:
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now


class CacheStats(BaseModel):
    total: int = 0
    by_style: dict[str, int] = Field(default_factory=dict)
    avg_score: float = 0.0


def _parse_entry(raw: str) -> CacheEntry:
    try:
        return CacheEntry.model_validate_json(raw)
    except ValidationError as e:
        raise CacheError(f"Malformed cache record: {e}") from e


class PromptCache:
    """Cache of accepted prompt results keyed by normalized prompt."""

    def __init__(
        self,
        store: KVStore,
        *,
        namespace: str = "prompt:",
        default_ttl: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._namespace = namespace
        self._default_ttl = default_ttl
        self._clock = clock

    def _store_key(self, prompt_key: str) -> str:
        return f"{self._namespace}{normalize_key(prompt_key)}"

    def get(self, prompt_key: str) -> CacheEntry | None:
        key = self._store_key(prompt_key)
        try:
            raw = self._store.get(key)
            if raw is None:
                logger.debug("Cache miss", extra={"key": key})
                return None

            entry = _parse_entry(raw)
            if entry.is_expired(self._clock()):
                logger.debug(
                    "Cache expired", extra={"key": key, "expires_at": entry.expires_at.isoformat()}
                )
                self._store.delete(key)
                return None
        except CacheError:
            logger.exception("Cache get error", extra={"key": key})
            return None

        logger.info("Cache hit", extra={"key": key, "score": entry.score})
        return entry

    def set(
        self,
        prompt_key: str,
        data: CachedPrompt | Mapping[str, Any],
        ttl: int | None = None,
    ) -> bool:
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

        payload = data if isinstance(data, CachedPrompt) else CachedPrompt.model_validate(data)
        key = self._store_key(prompt_key)
        now = self._clock()
        entry = CacheEntry(
            **payload.model_dump(),
            id=normalize_key(prompt_key),
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )

        try:
            self._store.put(
                key,
                entry.model_dump_json(),
                ttl=ttl,
                metadata={"prompt": entry.prompt, "score": entry.score, "style": entry.style},
            )
        except CacheError:
            logger.exception("Cache set error", extra={"key": key})
            return False

        logger.info("Cache set", extra={"key": key, "score": entry.score, "ttl": ttl})
        return True

    def delete(self, prompt_key: str) -> bool:
        key = self._store_key(prompt_key)
        try:
            self._store.delete(key)
        except CacheError:
            logger.exception("Cache delete error", extra={"key": key})
            return False

        logger.info("Cache deleted", extra={"key": key})
        return True

    def _live_entries(self, style: str) -> list[CacheEntry]:
        now = self._clock()
        entries: list[CacheEntry] = []
        for listed in self._store.list(self._namespace):
            raw = self._store.get(listed.name)
            if raw is None:
                continue
            try:
                entry = _parse_entry(raw)
            except CacheError:
                logger.warning("Skipping malformed cache record", extra={"key": listed.name})
                continue
            if entry.is_expired(now) or entry.style != style:
                continue
            entries.append(entry)
        return entries

    def find_similar(self, prompt: str, style: str, threshold: float = 0.8) -> list[CacheEntry]:
        """Cached entries of `style` whose word overlap with `prompt` reaches `threshold`."""
        try:
            candidates = self._live_entries(style)
        except CacheError:
            logger.exception("Find similar error", extra={"style": style})
            return []

        results = [e for e in candidates if word_overlap(prompt, e.prompt) >= threshold]
        results.sort(key=lambda e: e.score, reverse=True)

        logger.info("Found similar prompts", extra={"count": len(results), "threshold": threshold})
        return results[:MAX_SIMILAR_RESULTS]

    def find_nearest(
        self, prompt: str, style: str, top_k: int = MAX_SIMILAR_RESULTS
    ) -> list[RankedPrompt[CacheEntry]]:
        """Cached entries of `style` ranked by prompt vector cosine similarity."""
        try:
            candidates = self._live_entries(style)
        except CacheError:
            logger.exception("Find nearest error", extra={"style": style})
            return []
        return find_similar_prompts(prompt, candidates, top_k)

    def get_stats(self) -> CacheStats:
        """Aggregate counts and scores from listing metadata alone."""
        try:
            listed = self._store.list(self._namespace)
        except CacheError:
            logger.exception("Get stats error")
            return CacheStats()

        total = 0
        total_score = 0.0
        by_style: dict[str, int] = {}
        for key in listed:
            metadata = key.metadata
            if not metadata:
                continue
            total += 1
            score = metadata.get("score")
            total_score += float(score) if isinstance(score, (int, float)) else 0.0
            style = metadata.get("style") or "unknown"
            by_style[style] = by_style.get(style, 0) + 1

        stats = CacheStats(
            total=total,
            by_style=by_style,
            avg_score=total_score / total if total > 0 else 0.0,
        )
        logger.info("Cache stats", extra=stats.model_dump())
        return stats
