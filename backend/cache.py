"""Caching utilities for expensive AI operations."""

import asyncio
import enum
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Dict, Optional, Union

from backend.config import AI_CACHE_TTL_HOURS
from backend.logger import logger

Fingerprint = Union[datetime, str, None]


class CacheKind(enum.Enum):
    ADVICE = "advice"
    LABEL_RECOMMENDATION = "label_recommendation"
    COMMENT_SUMMARY = "comment_summary"


@dataclass
class CacheEntry:
    entity_id: str
    kind: CacheKind
    result: str
    cached_at: datetime
    expires_at: datetime
    # Version of the source entity when the result was generated, as given
    fingerprint: Fingerprint = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_stale(self, current_fingerprint: Fingerprint) -> bool:
        if is_blank(current_fingerprint) or is_blank(self.fingerprint):
            return False
        return is_newer(current_fingerprint, self.fingerprint)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_blank(value: Fingerprint) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def to_timestamp(value: Fingerprint) -> Optional[datetime]:
    """
    Read a fingerprint as a timezone-aware UTC datetime, if it is one.

    Accepts datetimes, ISO-8601 strings ("Z" suffix allowed) and RFC 1123
    strings. Naive values are treated as UTC. Empty values and strings that
    are not timestamps give None.
    """
    if is_blank(value):
        return None
    if isinstance(value, str):
        text = value.strip()
        try:
            value = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                value = parsedate_to_datetime(text)
            except (TypeError, ValueError):
                return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_newer(current: Fingerprint, stored: Fingerprint) -> bool:
    """
    True if `current` is strictly newer than `stored`.

    Timestamps compare chronologically. When either side is not a timestamp
    the two values are compared as plain strings.
    """
    current_ts = to_timestamp(current)
    stored_ts = to_timestamp(stored)
    if current_ts is not None and stored_ts is not None:
        return current_ts > stored_ts
    return str(current) > str(stored)


class AIResponseCache:
    """
    In-memory cache for AI-generated text, one map per CacheKind.

    Entries expire after a fixed TTL and are also dropped when the caller
    presents a fingerprint newer than the one stored with the entry. Invalid
    entries are deleted when read; `sweep_expired` removes the rest.
    """

    def __init__(
        self,
        ttl_hours: int = AI_CACHE_TTL_HOURS,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the cache.

        Args:
            ttl_hours: Time to live for every entry (default 72 hours)
            clock: Returns the current aware datetime; injectable for tests
        """
        self.ttl = timedelta(hours=ttl_hours)
        self._clock = clock
        self._lock = threading.Lock()
        self._stores: Dict[CacheKind, Dict[str, CacheEntry]] = {kind: {} for kind in CacheKind}

    def get(
        self,
        entity_id: str,
        kind: CacheKind,
        current_fingerprint: Fingerprint = None,
    ) -> Optional[str]:
        """
        Return the cached text for (entity_id, kind), or None.

        A newer `current_fingerprint` than the stored one means the entity
        changed since caching; the entry is deleted and None returned.
        """
        now = self._clock()

        with self._lock:
            store = self._stores[kind]
            self._evict_expired(store, now)

            entry = store.get(entity_id)
            if entry is None:
                logger.debug(f"AI cache miss: {kind.value}/{entity_id}")
                return None

            if entry.is_stale(current_fingerprint):
                del store[entity_id]
                logger.debug(
                    f"AI cache stale: {kind.value}/{entity_id} "
                    f"(cached for {entry.fingerprint}, now {current_fingerprint})"
                )
                return None

            logger.debug(f"AI cache hit: {kind.value}/{entity_id}")
            return entry.result

    def set(
        self,
        entity_id: str,
        kind: CacheKind,
        text: str,
        fingerprint: Fingerprint = None,
    ) -> None:
        """Store `text`, replacing any existing entry for (entity_id, kind)."""
        now = self._clock()
        entry = CacheEntry(
            entity_id=entity_id,
            kind=kind,
            result=text,
            cached_at=now,
            expires_at=now + self.ttl,
            fingerprint=fingerprint,
        )
        with self._lock:
            self._stores[kind][entity_id] = entry

    def invalidate(self, entity_id: str, kind: CacheKind) -> None:
        """Delete the entry for (entity_id, kind) if present."""
        with self._lock:
            removed = self._stores[kind].pop(entity_id, None)
        if removed is not None:
            logger.debug(f"AI cache invalidated: {kind.value}/{entity_id}")

    def invalidate_all(self, entity_id: str) -> None:
        """Delete every kind of cached result for an entity."""
        for kind in CacheKind:
            self.invalidate(entity_id, kind)

    def sweep_expired(self) -> int:
        """Remove expired entries from all kinds. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            return sum(self._evict_expired(store, now) for store in self._stores.values())

    def stats(self) -> Dict[str, int]:
        """Number of entries held per kind, expired ones included."""
        with self._lock:
            return {kind.value: len(store) for kind, store in self._stores.items()}

    def clear(self) -> None:
        """Clear all cached values."""
        with self._lock:
            for store in self._stores.values():
                store.clear()

    @staticmethod
    def _evict_expired(store: Dict[str, CacheEntry], now: datetime) -> int:
        # Caller holds the lock
        expired = [key for key, entry in store.items() if entry.is_expired(now)]
        for key in expired:
            del store[key]
        return len(expired)


async def run_periodic_sweep(cache: AIResponseCache, interval_seconds: float) -> None:
    """Sweep expired entries every `interval_seconds` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        removed = cache.sweep_expired()
        if removed:
            logger.info(f"AI cache sweep removed {removed} expired entries")
