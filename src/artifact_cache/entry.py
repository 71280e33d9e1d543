"""
Cache entries and their on-disk unit format.

A persisted unit is length-prefixed binary:

    b"ACE1" | u32 metadata length | metadata JSON (utf-8) | u64 payload length | payload

Integers are big-endian. Decoding rejects bad magic, short reads and
trailing bytes, and validates the metadata block against METADATA_SCHEMA.
"""

from __future__ import annotations

import json
import struct
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator

from .errors import CacheIOError

MAGIC = b"ACE1"
_META_LEN = struct.Struct(">I")
_PAYLOAD_LEN = struct.Struct(">Q")

SOURCE_MEMORY = "memory"
SOURCE_PERSISTENT = "persistent"

METADATA_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["cached_at", "ttl_seconds", "size_bytes", "content_hash", "compressed"],
    "properties": {
        "cached_at": {"type": "number", "minimum": 0},
        "ttl_seconds": {"type": "number", "exclusiveMinimum": 0},
        "size_bytes": {"type": "integer", "minimum": 0},
        "content_hash": {"type": "string", "pattern": "^[0-9a-f]{64}$"},
        "compressed": {"type": "boolean"},
        "original_size_bytes": {"type": ["integer", "null"], "minimum": 0},
        "source_tier": {"type": "string", "enum": [SOURCE_MEMORY, SOURCE_PERSISTENT]},
        "extra": {"type": "object"},
    },
}

_validator = Draft7Validator(METADATA_SCHEMA)


def validate_metadata(payload: Dict[str, Any]) -> None:
    errors = sorted(_validator.iter_errors(payload), key=lambda e: list(e.path))
    if errors:
        messages = ", ".join(error.message for error in errors)
        raise ValueError(f"entry metadata validation failed: {messages}")


@dataclass
class EntryMetadata:
    ttl_seconds: float
    size_bytes: int
    content_hash: str
    compressed: bool = False
    original_size_bytes: Optional[int] = None
    source_tier: str = SOURCE_MEMORY
    cached_at: float = field(default_factory=time.time)
    extra: Dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        return now - self.cached_at > self.ttl_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cached_at": self.cached_at,
            "ttl_seconds": self.ttl_seconds,
            "size_bytes": self.size_bytes,
            "content_hash": self.content_hash,
            "compressed": self.compressed,
            "original_size_bytes": self.original_size_bytes,
            "source_tier": self.source_tier,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntryMetadata":
        validate_metadata(data)
        return cls(
            cached_at=float(data["cached_at"]),
            ttl_seconds=float(data["ttl_seconds"]),
            size_bytes=int(data["size_bytes"]),
            content_hash=data["content_hash"],
            compressed=bool(data["compressed"]),
            original_size_bytes=data.get("original_size_bytes"),
            source_tier=data.get("source_tier", SOURCE_PERSISTENT),
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class CacheEntry:
    """A stored artifact. `payload` is the stored form (compressed if flagged)."""
    key: str
    payload: bytes
    metadata: EntryMetadata

    @property
    def stored_size(self) -> int:
        return len(self.payload)

    def with_source(self, source_tier: str) -> "CacheEntry":
        meta = replace(self.metadata, source_tier=source_tier, extra=dict(self.metadata.extra))
        return CacheEntry(key=self.key, payload=self.payload, metadata=meta)


def encode_entry(entry: CacheEntry) -> bytes:
    meta = json.dumps(entry.metadata.to_dict(), sort_keys=True, default=str).encode("utf-8")
    return b"".join([
        MAGIC,
        _META_LEN.pack(len(meta)),
        meta,
        _PAYLOAD_LEN.pack(len(entry.payload)),
        entry.payload,
    ])


def decode_entry(key: str, blob: bytes) -> CacheEntry:
    if not blob.startswith(MAGIC):
        raise CacheIOError(f"bad magic in unit for {key}")
    offset = len(MAGIC)

    try:
        (meta_len,) = _META_LEN.unpack_from(blob, offset)
        offset += _META_LEN.size
        meta_raw = blob[offset:offset + meta_len]
        if len(meta_raw) != meta_len:
            raise CacheIOError(f"truncated metadata in unit for {key}")
        offset += meta_len

        (payload_len,) = _PAYLOAD_LEN.unpack_from(blob, offset)
        offset += _PAYLOAD_LEN.size
    except struct.error as e:
        raise CacheIOError(f"truncated header in unit for {key}: {e}") from e

    payload = blob[offset:offset + payload_len]
    if len(payload) != payload_len:
        raise CacheIOError(f"truncated payload in unit for {key}")
    if offset + payload_len != len(blob):
        raise CacheIOError(f"trailing bytes in unit for {key}")

    try:
        metadata = EntryMetadata.from_dict(json.loads(meta_raw.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError, ValueError, TypeError) as e:
        raise CacheIOError(f"unreadable metadata in unit for {key}: {e}") from e

    metadata.source_tier = SOURCE_PERSISTENT
    return CacheEntry(key=key, payload=payload, metadata=metadata)
