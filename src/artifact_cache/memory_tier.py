"""
Bounded in-process tier with LRU eviction and byte accounting.

All mutation of the entry map and the byte counter happens under one
lock. Hash verification of a looked-up entry runs outside the lock; a
failed entry is only purged if it is still the object that was checked,
so a concurrent put of a fresh value is never thrown away.
"""

import logging
import threading
import time
from collections import OrderedDict
from enum import Enum
from typing import Callable, Dict, List, Optional

from .codec import IntegrityValidator
from .entry import CacheEntry

logger = logging.getLogger(__name__)

EVICTION_BATCH_FRACTION = 0.25


class PutStatus(str, Enum):
    STORED = "stored"
    TOO_LARGE = "too_large"


class MemoryTier:
    """
    LRU store bounded by total stored bytes and entry count.

    OrderedDict order is access order: first item is least recently used.
    """

    def __init__(
        self,
        max_bytes: int,
        max_entries: int,
        validate_hashes: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.max_bytes = max_bytes
        self.max_entries = max_entries
        self.validate_hashes = validate_hashes
        self._clock = clock
        self._validator = IntegrityValidator()

        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._access_times: Dict[str, float] = {}
        self._size = 0
        self._evictions = 0
        self._lock = threading.Lock()

    # ── Accounting ───────────────────────────────────────────────

    @property
    def size_bytes(self) -> int:
        with self._lock:
            return self._size

    @property
    def evictions(self) -> int:
        with self._lock:
            return self._evictions

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def snapshot(self) -> List[CacheEntry]:
        with self._lock:
            return list(self._entries.values())

    def last_access(self, key: str) -> Optional[float]:
        with self._lock:
            return self._access_times.get(key)

    # ── Operations ───────────────────────────────────────────────

    def put(self, key: str, entry: CacheEntry) -> PutStatus:
        """Insert or overwrite, then evict until within bounds."""
        size = entry.stored_size
        if size > self.max_bytes:
            logger.warning(f"Rejected {key[:12]}: {size} bytes exceeds memory bound {self.max_bytes}")
            return PutStatus.TOO_LARGE

        with self._lock:
            self._remove_locked(key)
            self._entries[key] = entry
            self._access_times[key] = self._clock()
            self._size += size
            if self._over_bounds_locked():
                self._evict_locked()
        return PutStatus.STORED

    def get(self, key: str) -> Optional[CacheEntry]:
        """Entry if present, fresh, and hash-valid; otherwise purge and None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.metadata.is_expired(self._clock()):
                logger.debug(f"Memory entry {key[:12]} expired")
                self._remove_locked(key)
                return None

        if self.validate_hashes and not self._validator.verify(entry.payload, entry.metadata.content_hash):
            with self._lock:
                if self._entries.get(key) is entry:
                    self._remove_locked(key)
            return None

        with self._lock:
            # replaced or removed while verifying: serve the old value, leave LRU alone
            if self._entries.get(key) is entry:
                self._entries.move_to_end(key)
                self._access_times[key] = self._clock()
        return entry

    def remove(self, key: str) -> bool:
        with self._lock:
            return self._remove_locked(key)

    def remove_if(self, key: str, entry: CacheEntry) -> bool:
        """Remove key only while it still maps to this exact entry."""
        with self._lock:
            if self._entries.get(key) is not entry:
                return False
            return self._remove_locked(key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._access_times.clear()
            self._size = 0
            self._evictions = 0

    def evict(self) -> int:
        """Run one eviction pass. Returns number of entries evicted."""
        with self._lock:
            return self._evict_locked(force=True)

    def evict_oldest(self, count: int) -> int:
        """Evict exactly `count` least recently used entries (or all, if fewer)."""
        evicted = 0
        with self._lock:
            while evicted < count and self._entries:
                key = next(iter(self._entries))
                self._remove_locked(key)
                self._evictions += 1
                evicted += 1
        if evicted:
            logger.info(f"Evicted {evicted} oldest memory entries on request")
        return evicted

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [k for k, e in self._entries.items() if e.metadata.is_expired(now)]
            for key in stale:
                self._remove_locked(key)
        if stale:
            logger.info(f"Purged {len(stale)} expired memory entries")
        return len(stale)

    # ── Internals (caller holds the lock) ────────────────────────

    def _remove_locked(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        self._access_times.pop(key, None)
        if entry is None:
            return False
        self._size -= entry.stored_size
        return True

    def _over_bounds_locked(self) -> bool:
        return self._size > self.max_bytes or len(self._entries) > self.max_entries

    def _evict_locked(self, force: bool = False) -> int:
        """
        Evict LRU entries in batches of ~25% of the current count until the
        byte and count bounds hold. With force, at least one batch is taken.
        """
        evicted = 0
        while self._entries and (force or self._over_bounds_locked()):
            force = False
            batch = max(1, int(len(self._entries) * EVICTION_BATCH_FRACTION))
            for _ in range(batch):
                if not self._entries:
                    break
                key = next(iter(self._entries))
                self._remove_locked(key)
                evicted += 1
        self._evictions += evicted
        if evicted:
            logger.info(
                f"Evicted {evicted} memory entries "
                f"(size={self._size}/{self.max_bytes}, entries={len(self._entries)}/{self.max_entries})"
            )
        return evicted
