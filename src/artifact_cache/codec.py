"""Payload compression and integrity hashing."""

import gzip
import hashlib
import logging
import zlib

from .errors import CompressionError

logger = logging.getLogger(__name__)


class Compressor:
    """gzip codec. decompress(compress(x)) == x for any bytes x."""

    def __init__(self, level: int = 6):
        self.level = level

    def compress(self, data: bytes) -> bytes:
        try:
            return gzip.compress(bytes(data), compresslevel=self.level)
        except (zlib.error, ValueError, TypeError) as e:
            raise CompressionError(f"compress failed: {e}") from e

    def decompress(self, data: bytes, was_compressed: bool) -> bytes:
        if not was_compressed:
            return bytes(data)
        try:
            return gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise CompressionError(f"decompress failed: {e}") from e

    @staticmethod
    def ratio_percent(original_size: int, stored_size: int) -> float:
        """Space saved by compression, in percent of the original size."""
        if original_size <= 0:
            return 0.0
        return (original_size - stored_size) / original_size * 100


class IntegrityValidator:
    """Content hash over the stored (possibly compressed) payload."""

    @staticmethod
    def compute(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    def verify(self, data: bytes, expected: str) -> bool:
        actual = self.compute(data)
        if actual != expected:
            logger.warning(f"Content hash mismatch (expected={expected[:12]}, got={actual[:12]})")
            return False
        return True
