#!/usr/bin/env python3
"""
Artifact Cache: Two-Tier Cache for Rendered Test Artifacts

Implements:
- cache_artifact(key, payload, metadata) → PutResult
- get_cached_artifact(key) → GetResult (memory first, then persistent + promotion)
- generate_cache_key(component, viewport, theme, options, dependencies)
- invalidate(key), clear_cache(), sweep(), teardown()
- get_cache_stats() → {hits, misses, evictions, size_bytes, hit_rate_percent, ...}
- prefetch_artifacts(configs)
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .codec import Compressor, IntegrityValidator
from .config import CacheConfig
from .entry import SOURCE_MEMORY, SOURCE_PERSISTENT, CacheEntry, EntryMetadata
from .errors import CompressionError, IntegrityError, ResourceExhaustion, ValidationError
from .key_generator import CacheKeyGenerator
from .memory_tier import MemoryTier, PutStatus
from .observability import StatsSnapshot
from .persistent_tier import PersistentTier
from .prefetch import Populate, Prefetcher
from .sweeper import BackgroundSweeper

logger = logging.getLogger(__name__)

WRITE_LOCK_STRIPES = 64


@dataclass
class PutResult:
    """Outcome of cache_artifact."""
    success: bool
    key: str
    cached: bool
    execution_time_ms: float
    cache_size_bytes: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GetResult:
    """Outcome of get_cached_artifact. payload is always the original bytes."""
    success: bool
    execution_time_ms: float
    payload: Optional[bytes] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


class ArtifactCache:
    """
    Memory tier in front of a file-per-key persistent tier.

    Design principles:
    - Optimization layer only: any failure short of API misuse is a miss
    - Exactly one hit or miss recorded per get
    - Compression, hashing and disk I/O never run under the memory lock
    - No module-level instance: build one from a CacheConfig and pass it around
    """

    def __init__(
        self,
        config: CacheConfig = None,
        populate: Optional[Populate] = None,
        memory_probe: Optional[Callable[[], float]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or CacheConfig()
        self._clock = clock

        self.compressor = Compressor(self.config.compression_level)
        self.validator = IntegrityValidator()
        self.keygen = CacheKeyGenerator(track_dependencies=self.config.enable_dependency_tracking)

        self.memory = MemoryTier(
            max_bytes=self.config.max_memory_size,
            max_entries=self.config.max_cache_entries,
            validate_hashes=self.config.enable_hash_validation,
            clock=clock,
        )
        self.persistent: Optional[PersistentTier] = None
        if self.config.enable_persistent_cache:
            self.persistent = PersistentTier(self.config.cache_directory, self.config.max_cache_entries, clock=clock)

        self._stats_lock = threading.Lock()
        self._reset_stats()
        # orders the memory and persistent writes of one key
        self._write_locks = [threading.Lock() for _ in range(WRITE_LOCK_STRIPES)]

        self.prefetcher = Prefetcher(
            self,
            populate=populate,
            max_workers=self.config.prefetch_workers,
            max_pending=self.config.prefetch_queue_size,
        )
        self.sweeper = BackgroundSweeper(
            sweep=self.sweep,
            interval=self.config.sweep_interval_sec,
            force_evict=self.memory.evict,
            memory_probe=memory_probe,
        )
        if self.config.enable_memory_monitoring:
            self.sweeper.start()

        self._closed = False
        logger.info(
            f"ArtifactCache initialized (dir={self.config.cache_directory}, "
            f"persistent={self.config.enable_persistent_cache}, compression={self.config.enable_compression})"
        )

    def _reset_stats(self) -> None:
        with self._stats_lock:
            self.stats = {
                "hits": 0,
                "misses": 0,
                "writes": 0,
                "failed_writes": 0,
                "start_time": time.time(),
            }

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self.stats[name] += 1

    # ── Keys ─────────────────────────────────────────────────────

    def generate_cache_key(
        self,
        component: str,
        viewport: Mapping[str, int],
        theme: str,
        options: Optional[Mapping[str, Any]] = None,
        dependencies: Optional[Iterable[str]] = None,
    ) -> str:
        return self.keygen.generate_cache_key(component, viewport, theme, options, dependencies)

    def _write_lock(self, key: str) -> threading.Lock:
        return self._write_locks[hash(key) % WRITE_LOCK_STRIPES]

    @staticmethod
    def _check_key(key: Any) -> None:
        if not isinstance(key, str) or not key:
            raise ValidationError(f"cache key must be a non-empty string, got {key!r}")

    # ── Write path ───────────────────────────────────────────────

    def cache_artifact(self, key: str, payload: bytes, metadata: Optional[Mapping[str, Any]] = None) -> PutResult:
        """
        Store a payload in both tiers.

        Raises ValidationError for a bad key or a non-binary payload. Every
        other failure comes back as PutResult(success=False) or, for the
        persistent tier, is only logged.
        """
        start = time.perf_counter()
        self._check_key(key)
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise ValidationError(f"payload must be bytes, got {type(payload).__name__}")

        entry = self._build_entry(key, bytes(payload), dict(metadata or {}))
        persisted = False
        try:
            with self._write_lock(key):
                if self.memory.put(key, entry) is PutStatus.TOO_LARGE:
                    raise ResourceExhaustion(
                        f"entry of {entry.stored_size} bytes exceeds max_memory_size={self.config.max_memory_size}"
                    )
                if self.persistent is not None:
                    persisted = self.persistent.put(key, entry)
        except ResourceExhaustion as e:
            self._count("failed_writes")
            logger.warning(f"Failed to cache artifact {key[:12]}: {e}")
            return PutResult(
                success=False,
                key=key,
                cached=False,
                execution_time_ms=_elapsed_ms(start),
                cache_size_bytes=self.memory.size_bytes,
                error=f"ResourceExhaustion: {e}",
            )

        if persisted:
            self.persistent.cleanup()

        self._count("writes")
        logger.debug(f"Cached {key[:12]} ({entry.metadata.size_bytes} bytes, compressed={entry.metadata.compressed})")
        return PutResult(
            success=True,
            key=key,
            cached=True,
            execution_time_ms=_elapsed_ms(start),
            cache_size_bytes=self.memory.size_bytes,
        )

    def _build_entry(self, key: str, raw: bytes, metadata: Dict[str, Any]) -> CacheEntry:
        try:
            ttl = metadata.pop("ttl_seconds", None)
            ttl = float(self.config.default_ttl_seconds if ttl is None else ttl)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"ttl_seconds must be a number: {e}") from e
        if ttl <= 0:
            raise ValidationError("ttl_seconds must be positive")

        stored, compressed, original_size = raw, False, None
        if self.config.enable_compression:
            try:
                stored = self.compressor.compress(raw)
                compressed, original_size = True, len(raw)
            except CompressionError as e:
                logger.warning(f"Compression failed for {key[:12]}, storing uncompressed: {e}")

        return CacheEntry(
            key=key,
            payload=stored,
            metadata=EntryMetadata(
                cached_at=self._clock(),
                ttl_seconds=ttl,
                size_bytes=len(raw),
                content_hash=self.validator.compute(stored),
                compressed=compressed,
                original_size_bytes=original_size,
                source_tier=SOURCE_MEMORY,
                extra=metadata,
            ),
        )

    # ── Read path ────────────────────────────────────────────────

    def get_cached_artifact(self, key: str) -> GetResult:
        """Memory tier, then persistent tier with promotion. Never raises for a miss."""
        start = time.perf_counter()
        self._check_key(key)

        entry = self.memory.get(key)
        source = SOURCE_MEMORY
        if entry is None and self.persistent is not None:
            entry = self._load_persistent(key)
            source = SOURCE_PERSISTENT

        if entry is not None:
            try:
                payload = self.compressor.decompress(entry.payload, entry.metadata.compressed)
            except CompressionError as e:
                logger.warning(f"Dropping undecodable entry {key[:12]}: {e}")
                self._discard(key, entry)
                entry = None

        if entry is None:
            self._count("misses")
            logger.debug(f"Cache miss: {key[:12]}")
            return GetResult(success=False, execution_time_ms=_elapsed_ms(start), error="Cache miss")

        self._count("hits")
        logger.debug(f"Cache hit: {key[:12]} (source={source})")
        metadata = entry.metadata.to_dict()
        metadata["source_tier"] = source
        return GetResult(
            success=True,
            execution_time_ms=_elapsed_ms(start),
            payload=payload,
            metadata=metadata,
            source=source,
        )

    def _load_persistent(self, key: str) -> Optional[CacheEntry]:
        with self._write_lock(key):
            return self._load_persistent_locked(key)

    def _load_persistent_locked(self, key: str) -> Optional[CacheEntry]:
        entry = self.persistent.get(key)
        if entry is None:
            return None
        if entry.metadata.is_expired(self._clock()):
            # lazy expiry; cleanup removes the unit later
            logger.debug(f"Persistent entry {key[:12]} expired")
            return None
        try:
            if self.config.enable_hash_validation and not self.validator.verify(
                entry.payload, entry.metadata.content_hash
            ):
                raise IntegrityError(f"content hash mismatch for {key[:12]}")
        except IntegrityError as e:
            logger.warning(f"Discarding corrupt persistent unit: {e}")
            self.persistent.remove(key)
            return None

        promoted = entry.with_source(SOURCE_MEMORY)
        if self.memory.put(key, promoted) is PutStatus.TOO_LARGE:
            logger.debug(f"Not promoting {key[:12]}: larger than memory tier")
        return promoted

    def _discard(self, key: str, entry: CacheEntry) -> None:
        """Drop a bad entry from both tiers unless a newer put has replaced it."""
        with self._write_lock(key):
            self.memory.remove_if(key, entry)
            if self.persistent is None:
                return
            current = self.persistent.get(key)
            if current is not None and current.metadata.content_hash == entry.metadata.content_hash \
                    and current.metadata.cached_at == entry.metadata.cached_at:
                self.persistent.remove(key)

    # ── Invalidation / maintenance ───────────────────────────────

    def invalidate(self, key: str) -> bool:
        self._check_key(key)
        with self._write_lock(key):
            removed = self.memory.remove(key)
            if self.persistent is not None:
                removed = self.persistent.remove(key) or removed
        if removed:
            logger.debug(f"Invalidated {key[:12]}")
        return removed

    def clear_cache(self) -> None:
        """Remove everything from both tiers and reset statistics."""
        self.memory.clear()
        if self.persistent is not None:
            self.persistent.clear()
            self.persistent.purged = 0
        self._reset_stats()
        logger.info("Artifact cache cleared")

    def clear_oldest_entries(self, count: int) -> int:
        return self.memory.evict_oldest(count)

    def get_cache_size(self) -> int:
        return self.memory.size_bytes

    def sweep(self) -> None:
        """One maintenance pass; the background sweeper runs this periodically."""
        self.memory.purge_expired()
        high_water = self.config.max_memory_size * self.config.high_water_mark
        if self.memory.size_bytes > high_water:
            self.memory.evict()
        if self.persistent is not None:
            self.persistent.purge_expired()
            self.persistent.cleanup()

    # ── Stats ────────────────────────────────────────────────────

    def compression_ratio_percent(self) -> float:
        original = stored = 0
        for entry in self.memory.snapshot():
            if entry.metadata.compressed:
                original += entry.metadata.original_size_bytes or 0
                stored += entry.stored_size
        return Compressor.ratio_percent(original, stored)

    def get_cache_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = dict(self.stats)
        snapshot = StatsSnapshot(
            hits=stats["hits"],
            misses=stats["misses"],
            evictions=self.memory.evictions,
            size_bytes=self.memory.size_bytes,
            memory_entry_count=len(self.memory),
            compression_ratio_percent=self.compression_ratio_percent(),
            persistent_entry_count=self.persistent.count() if self.persistent else 0,
            persistent_purged=self.persistent.purged if self.persistent else 0,
            writes=stats["writes"],
            failed_writes=stats["failed_writes"],
            uptime_seconds=int(time.time() - stats["start_time"]),
            config={
                "max_memory_size": self.config.max_memory_size,
                "max_cache_entries": self.config.max_cache_entries,
                "enable_compression": self.config.enable_compression,
                "enable_persistent_cache": self.config.enable_persistent_cache,
                "default_ttl": self.config.default_ttl,
            },
        )
        return snapshot.to_dict()

    def print_report(self):
        """Print cache statistics report."""
        stats = self.get_cache_stats()

        print("\n" + "=" * 60)
        print("ARTIFACT CACHE REPORT")
        print("=" * 60)
        print(f"Hit Rate: {stats['hit_rate_percent']}% ({stats['hits']}/{stats['hits'] + stats['misses']})")
        print(f"Memory: {stats['size_bytes']:,} bytes in {stats['memory_entry_count']} entries")
        print(f"Persistent: {stats['persistent_entry_count']} units ({stats['persistent_purged']} purged)")
        print(f"Compression saved: {stats['compression_ratio_percent']}%")
        print(f"Writes: {stats['writes']} ({stats['failed_writes']} failed) | Evictions: {stats['evictions']}")
        print(f"Uptime: {stats['uptime_seconds']}s")
        print("=" * 60 + "\n")

    # ── Prefetch / lifecycle ─────────────────────────────────────

    def prefetch_artifacts(self, configs: Iterable[Any]) -> List[Any]:
        """Fire-and-forget. Returns the scheduled population futures."""
        return self.prefetcher.prefetch(configs)

    def teardown(self) -> None:
        """Stop the background sweep and prefetch workers. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self.sweeper.stop()
        self.prefetcher.shutdown(wait=True)
        logger.info("ArtifactCache closed")

    close = teardown

    def __enter__(self) -> "ArtifactCache":
        return self

    def __exit__(self, *exc_info) -> None:
        self.teardown()


if __name__ == "__main__":
    import tempfile

    logging.basicConfig(level=logging.DEBUG)

    with tempfile.TemporaryDirectory() as tmp:
        with ArtifactCache(CacheConfig(cache_directory=tmp, enable_memory_monitoring=False)) as cache:
            key = cache.generate_cache_key("popup", {"width": 360, "height": 600}, "light")
            cache.cache_artifact(key, b"\x89PNG" + b"\x00" * 5000)

            result = cache.get_cached_artifact(key)
            if result.success:
                print(f"Cache hit ({result.source}): {len(result.payload)} bytes")
            else:
                print("Cache miss")

            cache.print_report()
