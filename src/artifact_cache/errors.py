"""Error taxonomy for the artifact cache.

Only ValidationError reaches callers of ArtifactCache. Everything else is
raised inside a tier and turned into a miss, a no-op, or a failed put.
"""


class ArtifactCacheError(Exception):
    """Base class for all cache errors."""


class ValidationError(ArtifactCacheError, ValueError):
    """Caller misuse, e.g. a non-binary payload or an empty key."""


class CacheIOError(ArtifactCacheError):
    """Persistent tier read/write/permission failure or unreadable unit."""


class IntegrityError(ArtifactCacheError):
    """Stored payload does not match its recorded content hash."""


class CompressionError(ArtifactCacheError):
    """Codec failure while compressing or decompressing a payload."""


class ResourceExhaustion(ArtifactCacheError):
    """A single entry exceeds the configured memory bound."""
