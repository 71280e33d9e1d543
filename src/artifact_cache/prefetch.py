"""
Prefetching of anticipated artifact lookups.

Misses are handed to a bounded worker pool that calls the caller's
`populate` function and stores whatever it returns. Each item is
isolated: a failing lookup or population never affects the others.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional

if TYPE_CHECKING:
    from .cache import ArtifactCache

logger = logging.getLogger(__name__)


@dataclass
class LookupDescriptor:
    """Inputs to generate_cache_key for one anticipated capture."""
    component: str
    viewport: Mapping[str, int]
    theme: str
    options: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LookupDescriptor":
        return cls(
            component=data["component"],
            viewport=data["viewport"],
            theme=data.get("theme", "light"),
            options=dict(data.get("options") or {}),
            dependencies=list(data.get("dependencies") or []),
            metadata=dict(data.get("metadata") or {}),
        )


Populate = Callable[[LookupDescriptor], Optional[bytes]]


class Prefetcher:

    def __init__(
        self,
        cache: "ArtifactCache",
        populate: Optional[Populate] = None,
        max_workers: int = 4,
        max_pending: int = 64,
    ) -> None:
        self._cache = cache
        self._populate = populate
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="artifact-prefetch")
        self._slots = threading.BoundedSemaphore(max_pending)
        self._futures: "set[Future]" = set()
        self._futures_lock = threading.Lock()
        self._closed = False
        self.skipped = 0

    def prefetch(self, descriptors: Iterable[Any]) -> List[Future]:
        """Look up every descriptor; schedule population for misses."""
        scheduled = []
        for raw in descriptors:
            try:
                descriptor = raw if isinstance(raw, LookupDescriptor) else LookupDescriptor.from_dict(raw)
                key = self._cache.generate_cache_key(
                    descriptor.component,
                    descriptor.viewport,
                    descriptor.theme,
                    descriptor.options,
                    descriptor.dependencies,
                )
                result = self._cache.get_cached_artifact(key)
                if result.success:
                    continue
                future = self._schedule(key, descriptor)
                if future is not None:
                    scheduled.append(future)
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"Prefetch lookup failed for {raw!r}: {exc}")
        return scheduled

    def _schedule(self, key: str, descriptor: LookupDescriptor) -> Optional[Future]:
        if self._populate is None:
            logger.info(f"Background capture wanted for {descriptor.component} (no populate hook)")
            return None
        if self._closed:
            return None
        if not self._slots.acquire(blocking=False):
            self.skipped += 1
            logger.info(f"Prefetch queue full, skipping {descriptor.component}")
            return None

        try:
            future = self._executor.submit(self._populate_one, key, descriptor)
        except RuntimeError as exc:
            # executor shut down between the check and the submit
            self._slots.release()
            logger.debug(f"Prefetch rejected for {descriptor.component}: {exc}")
            return None

        with self._futures_lock:
            self._futures.add(future)
        future.add_done_callback(self._job_done)
        return future

    def _job_done(self, future: Future) -> None:
        self._slots.release()
        with self._futures_lock:
            self._futures.discard(future)

    def _populate_one(self, key: str, descriptor: LookupDescriptor) -> bool:
        try:
            payload = self._populate(descriptor)
            if payload is None:
                return False
            result = self._cache.cache_artifact(key, payload, descriptor.metadata)
            if not result.success:
                logger.warning(f"Prefetch store failed for {descriptor.component}: {result.error}")
            return result.success
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Prefetch population failed for {descriptor.component}: {exc}")
            return False

    def pending(self) -> int:
        with self._futures_lock:
            return len(self._futures)

    def shutdown(self, wait: bool = True) -> None:
        """Cancel queued jobs and wait for running ones."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=True)
        logger.debug("Prefetcher shut down")
