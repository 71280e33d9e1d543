#!/usr/bin/env python3
"""
Unit tests for the in-memory tier: LRU order, byte bound, TTL, integrity
"""

import sys
import threading
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from artifact_cache.codec import IntegrityValidator
from artifact_cache.entry import CacheEntry, EntryMetadata
from artifact_cache.memory_tier import MemoryTier, PutStatus


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_entry(key, size=100, ttl=60.0, cached_at=1000.0):
    payload = bytes([len(key) % 256]) * size
    return CacheEntry(
        key=key,
        payload=payload,
        metadata=EntryMetadata(
            ttl_seconds=ttl,
            size_bytes=size,
            content_hash=IntegrityValidator.compute(payload),
            cached_at=cached_at,
        ),
    )


@pytest.fixture
def clock():
    return FakeClock()


class TestMemoryTierBasics:

    def test_put_get(self, clock):
        tier = MemoryTier(max_bytes=1000, max_entries=10, clock=clock)
        assert tier.put("a", make_entry("a")) is PutStatus.STORED

        entry = tier.get("a")
        assert entry is not None
        assert entry.key == "a"
        assert tier.size_bytes == 100

    def test_overwrite_keeps_accounting(self, clock):
        tier = MemoryTier(max_bytes=1000, max_entries=10, clock=clock)
        tier.put("a", make_entry("a", size=100))
        tier.put("a", make_entry("a", size=300))

        assert len(tier) == 1
        assert tier.size_bytes == 300

    def test_remove_and_clear(self, clock):
        tier = MemoryTier(max_bytes=1000, max_entries=10, clock=clock)
        tier.put("a", make_entry("a"))
        tier.put("b", make_entry("b"))

        assert tier.remove("a") is True
        assert tier.remove("a") is False
        assert tier.size_bytes == 100

        tier.clear()
        assert len(tier) == 0
        assert tier.size_bytes == 0

    def test_remove_if_checks_identity(self, clock):
        tier = MemoryTier(max_bytes=1000, max_entries=10, clock=clock)
        old = make_entry("a")
        new = make_entry("a")
        tier.put("a", old)
        tier.put("a", new)

        assert tier.remove_if("a", old) is False
        assert "a" in tier
        assert tier.remove_if("a", new) is True
        assert tier.size_bytes == 0

    def test_oversized_entry_rejected(self, clock):
        tier = MemoryTier(max_bytes=500, max_entries=10, clock=clock)
        tier.put("small", make_entry("small", size=100))

        assert tier.put("huge", make_entry("huge", size=501)) is PutStatus.TOO_LARGE
        assert "huge" not in tier
        assert "small" in tier
        assert tier.evictions == 0


class TestExpiryAndIntegrity:

    def test_ttl_expiry_is_lazy(self, clock):
        tier = MemoryTier(max_bytes=1000, max_entries=10, clock=clock)
        tier.put("a", make_entry("a", ttl=10, cached_at=clock.now))

        clock.advance(10)
        assert tier.get("a") is not None

        clock.advance(1)
        assert tier.get("a") is None
        assert "a" not in tier
        assert tier.size_bytes == 0

    def test_purge_expired(self, clock):
        tier = MemoryTier(max_bytes=1000, max_entries=10, clock=clock)
        tier.put("old", make_entry("old", ttl=5, cached_at=clock.now))
        tier.put("new", make_entry("new", ttl=500, cached_at=clock.now))
        clock.advance(6)

        assert tier.purge_expired() == 1
        assert "old" not in tier
        assert "new" in tier

    def test_hash_mismatch_is_a_miss(self, clock):
        tier = MemoryTier(max_bytes=1000, max_entries=10, clock=clock)
        entry = make_entry("a")
        entry.payload = b"tampered" + entry.payload[8:]
        tier.put("a", entry)

        assert tier.get("a") is None
        assert "a" not in tier

    def test_hash_validation_disabled(self, clock):
        tier = MemoryTier(max_bytes=1000, max_entries=10, validate_hashes=False, clock=clock)
        entry = make_entry("a")
        entry.payload = b"tampered" + entry.payload[8:]
        tier.put("a", entry)

        assert tier.get("a") is entry


class TestEviction:

    def test_lru_order(self, clock):
        tier = MemoryTier(max_bytes=10_000, max_entries=4, clock=clock)
        for key in "ABCD":
            tier.put(key, make_entry(key))
            clock.advance(1)

        tier.get("A")  # A becomes most recent
        clock.advance(1)
        tier.put("E", make_entry("E"))

        assert "B" not in tier
        assert all(k in tier for k in "ACDE")
        assert tier.evictions == 1

    def test_a_evicted_before_d(self, clock):
        tier = MemoryTier(max_bytes=10_000, max_entries=10, clock=clock)
        for key in "ABCD":
            tier.put(key, make_entry(key))
            clock.advance(1)

        tier.evict()

        assert "A" not in tier
        assert "D" in tier

    def test_batch_is_quarter_of_entries(self, clock):
        tier = MemoryTier(max_bytes=100_000, max_entries=100, clock=clock)
        for i in range(20):
            tier.put(f"k{i}", make_entry(f"k{i}"))

        assert tier.evict() == 5
        assert len(tier) == 15
        assert "k0" not in tier and "k4" not in tier and "k5" in tier

    def test_byte_bound_holds_after_every_put(self, clock):
        tier = MemoryTier(max_bytes=1000, max_entries=1000, clock=clock)
        for i in range(50):
            tier.put(f"k{i}", make_entry(f"k{i}", size=90 + i))
            assert tier.size_bytes <= 1000
        assert tier.evictions > 0
        assert "k49" in tier

    def test_evict_oldest(self, clock):
        tier = MemoryTier(max_bytes=10_000, max_entries=10, clock=clock)
        for key in "ABCD":
            tier.put(key, make_entry(key))

        assert tier.evict_oldest(2) == 2
        assert [e.key for e in tier.snapshot()] == ["C", "D"]
        assert tier.evict_oldest(10) == 2
        assert tier.evictions == 4


class TestConcurrency:

    def test_parallel_puts_keep_counter_consistent(self):
        tier = MemoryTier(max_bytes=20_000, max_entries=150)
        errors = []

        def worker(worker_id):
            try:
                for i in range(200):
                    key = f"w{worker_id}-{i % 40}"
                    tier.put(key, make_entry(key, size=50 + (i % 7) * 10, cached_at=1e12))
                    tier.get(f"w{(worker_id + 1) % 8}-{i % 40}")
                    if i % 25 == 0:
                        tier.evict()
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        entries = tier.snapshot()
        assert tier.size_bytes == sum(e.stored_size for e in entries)
        assert tier.size_bytes <= 20_000
        assert len(entries) <= 150
