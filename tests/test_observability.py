import pytest

from artifact_cache.observability import StatsSnapshot


def _snapshot(**overrides):
    values = dict(
        hits=3,
        misses=1,
        evictions=0,
        size_bytes=1024,
        memory_entry_count=2,
        compression_ratio_percent=42.123,
        config={"max_memory_size": 4096, "max_cache_entries": 10, "enable_compression": True},
    )
    values.update(overrides)
    return StatsSnapshot(**values)


def test_stats_schema_roundtrip():
    payload = _snapshot().to_dict()

    assert payload["hit_rate_percent"] == 75.0
    assert payload["compression_ratio_percent"] == 42.12
    assert payload["config"]["max_cache_entries"] == 10


def test_hit_rate_without_requests():
    assert _snapshot(hits=0, misses=0).hit_rate_percent == 0.0


def test_invalid_stats_rejected():
    with pytest.raises(ValueError):
        _snapshot(hits=-1).to_dict()
    with pytest.raises(ValueError):
        _snapshot(config={"max_memory_size": 4096}).to_dict()
