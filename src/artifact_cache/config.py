"""Configuration loader for the artifact cache."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

MB = 1024 * 1024

# camelCase names used by the browser test harness config files
CAMEL_ALIASES = {
    "maxMemorySize": "max_memory_size",
    "maxCacheEntries": "max_cache_entries",
    "defaultTTL": "default_ttl",
    "compressionLevel": "compression_level",
    "cacheDirectory": "cache_directory",
    "enableCompression": "enable_compression",
    "enableMemoryMonitoring": "enable_memory_monitoring",
    "enablePersistentCache": "enable_persistent_cache",
    "enableHashValidation": "enable_hash_validation",
    "enableDependencyTracking": "enable_dependency_tracking",
    "sweepIntervalSec": "sweep_interval_sec",
    "highWaterMark": "high_water_mark",
    "prefetchWorkers": "prefetch_workers",
    "prefetchQueueSize": "prefetch_queue_size",
}

INT_FIELDS = {
    "max_memory_size",
    "max_cache_entries",
    "default_ttl",
    "compression_level",
    "prefetch_workers",
    "prefetch_queue_size",
}
FLOAT_FIELDS = {"sweep_interval_sec", "high_water_mark"}
BOOL_FIELDS = {
    "enable_compression",
    "enable_memory_monitoring",
    "enable_persistent_cache",
    "enable_hash_validation",
    "enable_dependency_tracking",
}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class CacheConfig:
    max_memory_size: int = 100 * MB
    max_cache_entries: int = 1000
    default_ttl: int = 3_600_000  # ms
    compression_level: int = 6
    cache_directory: Path = Path("test-results/artifact-cache")
    enable_compression: bool = True
    enable_memory_monitoring: bool = True
    enable_persistent_cache: bool = True
    enable_hash_validation: bool = True
    enable_dependency_tracking: bool = True
    sweep_interval_sec: float = 30.0
    high_water_mark: float = 0.8
    prefetch_workers: int = 4
    prefetch_queue_size: int = 64

    def __post_init__(self) -> None:
        object.__setattr__(self, "cache_directory", Path(self.cache_directory))
        if self.max_memory_size <= 0:
            raise ValueError("max_memory_size must be positive")
        if self.max_cache_entries <= 0:
            raise ValueError("max_cache_entries must be positive")
        if self.default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        if not 0 <= self.compression_level <= 9:
            raise ValueError("compression_level must be between 0 and 9")
        if not 0 < self.high_water_mark <= 1:
            raise ValueError("high_water_mark must be in (0, 1]")
        if self.sweep_interval_sec <= 0:
            raise ValueError("sweep_interval_sec must be positive")
        if self.prefetch_workers <= 0 or self.prefetch_queue_size <= 0:
            raise ValueError("prefetch pool sizes must be positive")

    @property
    def default_ttl_seconds(self) -> float:
        return self.default_ttl / 1000.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheConfig":
        values: Dict[str, Any] = {}
        for raw_key, value in data.items():
            name = CAMEL_ALIASES.get(raw_key, raw_key)
            if name not in cls.__dataclass_fields__ or value is None:
                continue
            if name in INT_FIELDS:
                value = int(value)
            elif name in FLOAT_FIELDS:
                value = float(value)
            elif name in BOOL_FIELDS:
                value = _to_bool(value)
            elif name == "cache_directory":
                value = Path(os.path.expanduser(str(value)))
            values[name] = value
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["cache_directory"] = str(self.cache_directory)
        return payload


ENV_MAP = {
    "max_memory_size": "ARTIFACT_CACHE_MAX_MEMORY_SIZE",
    "max_cache_entries": "ARTIFACT_CACHE_MAX_ENTRIES",
    "default_ttl": "ARTIFACT_CACHE_DEFAULT_TTL_MS",
    "compression_level": "ARTIFACT_CACHE_COMPRESSION_LEVEL",
    "cache_directory": "ARTIFACT_CACHE_DIR",
    "enable_compression": "ARTIFACT_CACHE_COMPRESSION",
    "enable_memory_monitoring": "ARTIFACT_CACHE_MEMORY_MONITORING",
    "enable_persistent_cache": "ARTIFACT_CACHE_PERSISTENT",
    "enable_hash_validation": "ARTIFACT_CACHE_HASH_VALIDATION",
    "enable_dependency_tracking": "ARTIFACT_CACHE_DEPENDENCY_TRACKING",
    "sweep_interval_sec": "ARTIFACT_CACHE_SWEEP_INTERVAL_SEC",
}


def load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    # allow the cache block to live under a top-level "artifact_cache" key
    if isinstance(data.get("artifact_cache"), dict):
        return data["artifact_cache"]
    return data


def merge_env_overrides(config_data: Dict[str, Any]) -> Dict[str, Any]:
    merged = json.loads(json.dumps(config_data, default=str))  # deep copy via json

    for key, env_name in ENV_MAP.items():
        if env_name not in os.environ:
            continue
        # env wins over both spellings of the same option
        for alias, name in CAMEL_ALIASES.items():
            if name == key:
                merged.pop(alias, None)
        merged[key] = os.environ[env_name]

    return merged


def load_config(config_path: str | Path = "config/artifact_cache.yml") -> CacheConfig:
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    data = load_yaml(path)
    data = merge_env_overrides(data)
    return CacheConfig.from_dict(data)
