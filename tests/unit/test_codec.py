#!/usr/bin/env python3
"""
Unit tests for payload compression, integrity hashing and the unit format
"""

import json
import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from artifact_cache.codec import Compressor, IntegrityValidator
from artifact_cache.entry import CacheEntry, EntryMetadata, decode_entry, encode_entry, MAGIC
from artifact_cache.errors import CacheIOError, CompressionError


def _entry(payload=b"pixels", **meta):
    return CacheEntry(
        key="popup-light",
        payload=payload,
        metadata=EntryMetadata(
            ttl_seconds=meta.pop("ttl_seconds", 60.0),
            size_bytes=len(payload),
            content_hash=IntegrityValidator.compute(payload),
            cached_at=meta.pop("cached_at", 1000.0),
            **meta,
        ),
    )


class TestCompressor:

    @pytest.mark.parametrize("payload", [b"", b"a", os.urandom(4096), b"\x00\xff" * 50000])
    def test_roundtrip(self, payload):
        codec = Compressor(level=6)
        assert codec.decompress(codec.compress(payload), True) == payload

    def test_uncompressed_passthrough(self):
        codec = Compressor()
        assert codec.decompress(b"raw bytes", False) == b"raw bytes"

    def test_repetitive_payload_shrinks(self):
        codec = Compressor(level=9)
        data = b"A" * 100_000
        compressed = codec.compress(data)

        assert len(compressed) < len(data)
        assert Compressor.ratio_percent(len(data), len(compressed)) > 90

    def test_garbage_raises_compression_error(self):
        with pytest.raises(CompressionError):
            Compressor().decompress(b"definitely not gzip", True)

    def test_ratio_without_original(self):
        assert Compressor.ratio_percent(0, 10) == 0.0


class TestIntegrityValidator:

    def test_verify_matches(self):
        validator = IntegrityValidator()
        digest = validator.compute(b"screenshot")
        assert validator.verify(b"screenshot", digest)

    def test_verify_detects_mutation(self):
        validator = IntegrityValidator()
        digest = validator.compute(b"screenshot")
        assert not validator.verify(b"screensh0t", digest)


class TestUnitFormat:

    def test_encode_decode(self):
        entry = _entry(b"\x89PNG\r\n\x1a\n" + b"\x00" * 100, extra={"test": "popup"})
        decoded = decode_entry(entry.key, encode_entry(entry))

        assert decoded.payload == entry.payload
        assert decoded.metadata.content_hash == entry.metadata.content_hash
        assert decoded.metadata.extra == {"test": "popup"}
        assert decoded.metadata.source_tier == "persistent"

    def test_bad_magic(self):
        with pytest.raises(CacheIOError):
            decode_entry("k", b"JSON" + encode_entry(_entry())[4:])

    def test_truncated_payload(self):
        blob = encode_entry(_entry(b"x" * 100))
        with pytest.raises(CacheIOError):
            decode_entry("k", blob[:-10])

    def test_truncated_header(self):
        with pytest.raises(CacheIOError):
            decode_entry("k", MAGIC + b"\x00")

    def test_trailing_bytes(self):
        with pytest.raises(CacheIOError):
            decode_entry("k", encode_entry(_entry()) + b"junk")

    def test_metadata_schema_violation(self):
        meta = json.dumps({"cached_at": 1, "ttl_seconds": -5, "size_bytes": 1,
                           "content_hash": "nothex", "compressed": "yes"}).encode()
        blob = MAGIC + len(meta).to_bytes(4, "big") + meta + (1).to_bytes(8, "big") + b"x"
        with pytest.raises(CacheIOError):
            decode_entry("k", blob)

    def test_expiry(self):
        meta = _entry(ttl_seconds=10, cached_at=100.0).metadata
        assert not meta.is_expired(110.0)
        assert meta.is_expired(110.5)
