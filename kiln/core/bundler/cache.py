"""
Per-asset-class caches

Each asset class (scripts, styles, markup, assets) keeps its own map from a
stable key to the fingerprint that produced the current output and a
descriptor of that output.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from .utils import remove_file

logger = logging.getLogger(__name__)


@dataclass
class ArtifactDescriptor:
    """Where an output lives, plus anything needed to rewrite it without recomputing"""
    path: Path
    payload: Any = None


@dataclass
class CacheEntry:
    """Fingerprint of the inputs and the artifact they produced"""
    fingerprint: str
    artifact: ArtifactDescriptor
    created: float = 0.0
    hits: int = 0


class AssetCache:
    """Key -> CacheEntry map for one asset class"""

    def __init__(self, name: str, enabled: bool = True):
        self.name = name
        self.enabled = enabled
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def should_skip(self, key: str, fingerprint: str) -> bool:
        """
        Check whether the output for a key is current

        Args:
            key: Cache key (basename or relative path)
            fingerprint: Fingerprint of the current inputs

        Returns:
            True only when caching is on and the recorded fingerprint matches
        """
        if not self.enabled:
            self._misses += 1
            return False

        entry = self._entries.get(key)
        if entry is None or entry.fingerprint != fingerprint:
            self._misses += 1
            return False

        entry.hits += 1
        self._hits += 1
        logger.debug(f"[{self.name}] cache hit: {key}")
        return True

    def lookup(self, key: str, fingerprint: str) -> Optional[ArtifactDescriptor]:
        """Return the recorded artifact for a key if its fingerprint matches"""
        if self.should_skip(key, fingerprint):
            return self._entries[key].artifact
        return None

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def record(self, key: str, fingerprint: str, artifact: ArtifactDescriptor) -> Optional[Path]:
        """
        Replace the entry for a key

        When the new artifact lives at a different path than the previous one
        the previous file is deleted.

        Args:
            key: Cache key
            fingerprint: Fingerprint of the inputs that produced the artifact
            artifact: The new output

        Returns:
            Path of the removed previous artifact, if any
        """
        previous = self._entries.get(key)
        self._entries[key] = CacheEntry(
            fingerprint=fingerprint,
            artifact=artifact,
            created=time.time(),
        )

        if previous is not None and Path(previous.artifact.path) != Path(artifact.path):
            if remove_file(previous.artifact.path):
                logger.debug(f"[{self.name}] removed stale artifact {Path(previous.artifact.path).name}")
                return Path(previous.artifact.path)
        return None

    def invalidate(self, key: str) -> bool:
        """Forget one key; the artifact on disk is left alone"""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        if count:
            logger.debug(f"[{self.name}] cleared {count} cache entries")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        return {
            "name": self.name,
            "enabled": self.enabled,
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
        }


class CacheSet:
    """The four asset-class caches of one build process"""

    def __init__(self, enabled: bool = True):
        self.scripts = AssetCache("scripts", enabled)
        self.styles = AssetCache("styles", enabled)
        self.markup = AssetCache("markup", enabled)
        self.assets = AssetCache("assets", enabled)

    def __iter__(self) -> Iterator[AssetCache]:
        return iter((self.scripts, self.styles, self.markup, self.assets))

    def clear(self) -> None:
        for cache in self:
            cache.clear()

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        return {cache.name: cache.get_stats() for cache in self}
