"""
Dependency fingerprints for cache invalidation.

A fingerprint hashes (path, mtime, size) per dependency, in the order
given. Unreadable paths contribute a "missing" or "error" token instead
of raising, so a fingerprint can always be produced.

Known limitation: this is a metadata proxy, not a content diff. Touching
a file without modifying it changes the fingerprint; rewriting a file
with the same size inside the filesystem's mtime resolution does not.
"""

import hashlib
import logging
import os
from typing import Iterable, List, Sequence

logger = logging.getLogger(__name__)

NO_DEPS = "no-deps"


class DependencyTracker:

    def describe(self, path: str) -> str:
        """Token for a single dependency path."""
        try:
            stats = os.stat(path)
            return f"{path}:{int(stats.st_mtime * 1000)}:{stats.st_size}"
        except FileNotFoundError:
            return f"{path}:missing"
        except OSError as e:
            logger.debug(f"stat failed for dependency {path}: {e}")
            return f"{path}:error:{e.strerror or e}"

    def describe_all(self, dependencies: Sequence[str]) -> List[str]:
        return [self.describe(os.fspath(dep)) for dep in dependencies]

    def fingerprint(self, dependencies: Iterable[str]) -> str:
        """
        Short fingerprint over the dependency list.

        Returns NO_DEPS for an empty list. Order matters: the same paths
        listed in a different order produce a different fingerprint.
        """
        deps = list(dependencies or [])
        if not deps:
            return NO_DEPS

        tokens = self.describe_all(deps)
        fp = hashlib.md5("|".join(tokens).encode("utf-8")).hexdigest()[:8]
        logger.debug(f"Dependency fingerprint {fp} over {len(deps)} paths")
        return fp
