"""
Artifact Cache
Two-tier (memory + disk) cache for rendered UI test artifacts:
TTL expiry, LRU eviction, gzip compression, dependency-aware keys.
"""

from .cache import ArtifactCache, GetResult, PutResult
from .config import CacheConfig, load_config
from .errors import (
    ArtifactCacheError,
    CacheIOError,
    CompressionError,
    IntegrityError,
    ResourceExhaustion,
    ValidationError,
)
from .key_generator import CacheKeyGenerator
from .prefetch import LookupDescriptor

__all__ = [
    'ArtifactCache',
    'ArtifactCacheError',
    'CacheConfig',
    'CacheIOError',
    'CacheKeyGenerator',
    'CompressionError',
    'GetResult',
    'IntegrityError',
    'LookupDescriptor',
    'PutResult',
    'ResourceExhaustion',
    'ValidationError',
    'load_config',
]
