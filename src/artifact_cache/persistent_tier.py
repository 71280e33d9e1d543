"""
On-disk tier: one unit file per key under the cache directory.

Best effort only. Every failure is logged and degrades to a miss or a
no-op. Writes go to a temp file in the same directory and are published
with os.replace, so readers and cleanup never see a partial unit.
"""

import hashlib
import logging
import os
import re
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .entry import CacheEntry, decode_entry, encode_entry
from .errors import CacheIOError

logger = logging.getLogger(__name__)

UNIT_SUFFIX = ".cache"
TEMP_PREFIX = ".unit-"
TEMP_SUFFIX = ".tmp"
# temp files older than this are leftovers of an interrupted write
STALE_TEMP_AGE_SEC = 300.0
_SAFE_KEY = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class PersistentTier:
    """File-per-key store bounded by unit count."""

    def __init__(
        self,
        directory: Path,
        max_entries: int,
        clock: Callable[[], float] = time.time,
        stale_temp_age: float = STALE_TEMP_AGE_SEC,
    ):
        self.directory = Path(directory)
        self.max_entries = max_entries
        self.stale_temp_age = stale_temp_age
        self._clock = clock
        self.purged = 0
        self._purge_lock = threading.Lock()
        self._ensure_directory()

    def _ensure_directory(self) -> bool:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            return True
        except OSError as e:
            logger.warning(f"Failed to create cache directory {self.directory}: {e}")
            return False

    def unit_path(self, key: str) -> Path:
        """Keys that are already filename-safe are used as-is; others are hashed."""
        if _SAFE_KEY.match(key) and not key.startswith("."):
            name = key
        else:
            name = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{name}{UNIT_SUFFIX}"

    # ── Operations ───────────────────────────────────────────────

    def put(self, key: str, entry: CacheEntry) -> bool:
        tmp_name = None
        try:
            blob = encode_entry(entry)
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX, dir=self.directory)
            with os.fdopen(fd, "wb") as handle:
                handle.write(blob)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.unit_path(key))
            tmp_name = None
            logger.debug(f"Persisted {key[:12]} ({len(blob)} bytes)")
            return True
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Failed to store in persistent cache: {e}")
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def get(self, key: str) -> Optional[CacheEntry]:
        path = self.unit_path(key)
        try:
            blob = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Failed to read persistent unit {path.name}: {e}")
            return None

        try:
            return decode_entry(key, blob)
        except CacheIOError as e:
            logger.warning(f"Discarding unreadable persistent unit {path.name}: {e}")
            self._unlink(path)
            return None

    def remove(self, key: str) -> bool:
        return self._unlink(self.unit_path(key))

    def clear(self) -> int:
        self.remove_stale_temps()
        removed = 0
        for path, _ in self._units():
            if self._unlink(path):
                removed += 1
        if removed:
            logger.info(f"Cleared {removed} persistent units")
        return removed

    def count(self) -> int:
        return len(self._units())

    def cleanup(self) -> int:
        """Delete oldest-by-mtime units until the count is within max_entries."""
        self.remove_stale_temps()
        units = self._units()
        excess = len(units) - self.max_entries
        if excess <= 0:
            return 0

        units.sort(key=lambda item: item[1])
        removed = 0
        for path, _ in units[:excess]:
            if self._unlink(path):
                removed += 1
        with self._purge_lock:
            self.purged += removed
        logger.info(f"Persistent cleanup removed {removed} units (limit={self.max_entries})")
        return removed

    def purge_expired(self) -> int:
        """Physically remove units whose TTL has passed."""
        now = self._clock()
        removed = 0
        for path, _ in self._units():
            try:
                entry = decode_entry(path.stem, path.read_bytes())
            except (OSError, CacheIOError):
                continue
            if entry.metadata.is_expired(now) and self._unlink(path):
                removed += 1
        with self._purge_lock:
            self.purged += removed
        if removed:
            logger.info(f"Purged {removed} expired persistent units")
        return removed

    def remove_stale_temps(self) -> int:
        """Delete temp files abandoned by writes that never reached os.replace."""
        # file mtimes are wall-clock time
        cutoff = time.time() - self.stale_temp_age
        removed = 0
        for path in self._listing():
            if not (path.name.startswith(TEMP_PREFIX) and path.name.endswith(TEMP_SUFFIX)):
                continue
            try:
                if path.stat().st_mtime >= cutoff:
                    continue
            except OSError:
                continue
            if self._unlink(path):
                removed += 1
        if removed:
            logger.info(f"Removed {removed} stale temp files from {self.directory}")
        return removed

    # ── Internals ────────────────────────────────────────────────

    def _listing(self) -> List[Path]:
        try:
            return list(self.directory.iterdir())
        except OSError as e:
            logger.warning(f"Failed to list cache directory {self.directory}: {e}")
            return []

    def _units(self) -> List[Tuple[Path, float]]:
        units = []
        for path in self._listing():
            if path.suffix != UNIT_SUFFIX:
                continue
            try:
                units.append((path, path.stat().st_mtime))
            except OSError:
                # removed by a concurrent cleanup
                continue
        return units

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to remove persistent unit {path.name}: {e}")
            return False
