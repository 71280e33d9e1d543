"""Cache statistics schema enforcement."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from jsonschema import Draft7Validator

STATS_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": [
        "hits",
        "misses",
        "evictions",
        "size_bytes",
        "hit_rate_percent",
        "memory_entry_count",
        "compression_ratio_percent",
        "config",
    ],
    "properties": {
        "hits": {"type": "integer", "minimum": 0},
        "misses": {"type": "integer", "minimum": 0},
        "evictions": {"type": "integer", "minimum": 0},
        "size_bytes": {"type": "integer", "minimum": 0},
        "hit_rate_percent": {"type": "number", "minimum": 0, "maximum": 100},
        "memory_entry_count": {"type": "integer", "minimum": 0},
        "compression_ratio_percent": {"type": "number", "maximum": 100},
        "persistent_entry_count": {"type": "integer", "minimum": 0},
        "persistent_purged": {"type": "integer", "minimum": 0},
        "writes": {"type": "integer", "minimum": 0},
        "failed_writes": {"type": "integer", "minimum": 0},
        "uptime_seconds": {"type": "integer", "minimum": 0},
        "config": {
            "type": "object",
            "required": ["max_memory_size", "max_cache_entries", "enable_compression"],
            "properties": {
                "max_memory_size": {"type": "integer", "minimum": 1},
                "max_cache_entries": {"type": "integer", "minimum": 1},
                "enable_compression": {"type": "boolean"},
            },
        },
    },
}

_validator = Draft7Validator(STATS_SCHEMA)


def validate_stats(payload: Dict[str, Any]) -> None:
    errors = sorted(_validator.iter_errors(payload), key=lambda e: list(e.path))
    if errors:
        messages = ", ".join(error.message for error in errors)
        raise ValueError(f"cache stats validation failed: {messages}")


@dataclass
class StatsSnapshot:
    hits: int
    misses: int
    evictions: int
    size_bytes: int
    memory_entry_count: int
    compression_ratio_percent: float
    config: Dict[str, Any]
    persistent_entry_count: int = 0
    persistent_purged: int = 0
    writes: int = 0
    failed_writes: int = 0
    uptime_seconds: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def hit_rate_percent(self) -> float:
        total = self.hits + self.misses
        return round(self.hits / total * 100, 2) if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size_bytes": self.size_bytes,
            "hit_rate_percent": self.hit_rate_percent,
            "memory_entry_count": self.memory_entry_count,
            "compression_ratio_percent": round(self.compression_ratio_percent, 2),
            "persistent_entry_count": self.persistent_entry_count,
            "persistent_purged": self.persistent_purged,
            "writes": self.writes,
            "failed_writes": self.failed_writes,
            "uptime_seconds": self.uptime_seconds,
            "config": self.config,
            **self.extra,
        }
        validate_stats(payload)
        return payload
