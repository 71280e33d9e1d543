#!/usr/bin/env python3
"""
Cache Key Generation: Dependency-Aware Artifact Keys

Implements:
- generate_cache_key(component, viewport, theme, options, dependencies) → deterministic key
- Key changes when a dependency file changes (mtime or size)
- Same inputs + same dependency state = identical key = cache hit
"""

import hashlib
import json
import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from .dependency_tracker import NO_DEPS, DependencyTracker
from .errors import ValidationError

logger = logging.getLogger(__name__)

Viewport = Union[Mapping[str, int], Tuple[int, int]]


def viewport_label(viewport: Viewport) -> str:
    """Render a viewport as "WxH"."""
    try:
        if isinstance(viewport, Mapping):
            width, height = viewport["width"], viewport["height"]
        else:
            width, height = viewport
        return f"{int(width)}x{int(height)}"
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"viewport must have integer width and height: {viewport!r}") from e


def _canonical(value: Any) -> Any:
    """Reduce an option value to JSON types with a single stable layout."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Mapping):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if isinstance(value, (set, frozenset)):
        # set iteration order follows PYTHONHASHSEED
        items = [_canonical(v) for v in value]
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True, separators=(",", ":")))
    raise ValidationError(f"option value of type {type(value).__name__} has no canonical form: {value!r}")


def canonical_options(options: Optional[Mapping[str, Any]]) -> str:
    """
    Serialize options so equal option sets always give the same text.

    Keys are stringified and sorted, tuples become lists and sets become
    sorted lists. Anything else that is not plain JSON raises ValidationError.
    """
    if options is not None and not isinstance(options, Mapping):
        raise ValidationError(f"options must be a mapping, got {type(options).__name__}")
    return json.dumps(_canonical(options or {}), sort_keys=True, separators=(",", ":"))


class CacheKeyGenerator:
    """
    Generate deterministic cache keys for rendered artifacts.

    Design:
    - key = SHA256(component, "WxH", theme, canonical options, dependency fingerprint)
    - Options are serialized with sorted keys, so dict ordering never matters
    - No clock, no counters: identical inputs and file states give the same key
    """

    def __init__(self, tracker: DependencyTracker = None, track_dependencies: bool = True):
        self.tracker = tracker or DependencyTracker()
        self.track_dependencies = track_dependencies

    def generate_cache_key(
        self,
        component: str,
        viewport: Viewport,
        theme: str,
        options: Optional[Mapping[str, Any]] = None,
        dependencies: Optional[Iterable[str]] = None,
    ) -> str:
        """
        Generate deterministic cache key.

        Args:
            component: Component id (popup, settings, ...)
            viewport: {"width": w, "height": h} or (w, h)
            theme: Theme name (light, dark, ...)
            options: Arbitrary JSON-like option set
            dependencies: File paths whose mtime/size feed the key

        Returns:
            64-char hex digest
        """
        if dependencies and self.track_dependencies:
            dep_sig = self.tracker.fingerprint(dependencies)
        else:
            dep_sig = NO_DEPS

        key_data: Dict[str, str] = {
            "component": str(component),
            "viewport": viewport_label(viewport),
            "theme": str(theme),
            "options": canonical_options(options),
            "dependencies": dep_sig,
        }
        key = hashlib.sha256(json.dumps(key_data, sort_keys=True).encode("utf-8")).hexdigest()

        logger.debug(
            f"Generated key: {key[:12]} (component={component}, "
            f"viewport={key_data['viewport']}, theme={theme}, deps={dep_sig})"
        )
        return key


# Test
if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)

    gen = CacheKeyGenerator()

    key1 = gen.generate_cache_key("popup", {"width": 360, "height": 600}, "light")
    key2 = gen.generate_cache_key("popup", {"width": 360, "height": 600}, "light")
    key3 = gen.generate_cache_key("popup", {"width": 360, "height": 600}, "dark")

    print(f"\nSame inputs → same key: {key1 == key2} ({key1[:12]})")
    print(f"Different theme → different key: {key1 != key3} ({key1[:12]} vs {key3[:12]})")
