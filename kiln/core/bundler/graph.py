"""
Module dependency graph construction

The graph maps absolute module paths to their transformed records and is
kept for the lifetime of the build process, so that a rebuild only
re-transpiles modules whose content changed.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from .abort import AbortSignal
from .compiler import Transpiler
from .config import BuildConfig
from .errors import AbortedError, BuildError, BundlerError
from .fingerprint import content_fingerprint
from .resolver import ModuleResolver, extract_imports
from .utils import read_file

logger = logging.getLogger(__name__)


@dataclass
class ModuleRecord:
    """The transformed representation of one source file"""
    path: Path
    code: str
    source_map: Optional[dict] = None
    dependencies: List[Path] = field(default_factory=list)
    # specifier as written in the code -> resolved path
    imports: Dict[str, Path] = field(default_factory=dict)


class DependencyGraph:
    """Absolute path -> ModuleRecord, plus the fingerprint each record was built from"""

    def __init__(self):
        self._records: Dict[Path, ModuleRecord] = {}
        self._fingerprints: Dict[Path, Optional[str]] = {}

    def __contains__(self, path: object) -> bool:
        return path in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Path]:
        return iter(self._records)

    def get(self, path: Path) -> Optional[ModuleRecord]:
        return self._records.get(path)

    def fingerprint_of(self, path: Path) -> Optional[str]:
        return self._fingerprints.get(path)

    def put(self, record: ModuleRecord, fingerprint: Optional[str]) -> None:
        """Store a record, replacing any previous record at the same path"""
        self._records[record.path] = record
        self._fingerprints[record.path] = fingerprint

    def clear(self) -> None:
        self._records.clear()
        self._fingerprints.clear()


class GraphBuilder:
    """Walks the imports reachable from an entry file"""

    def __init__(
        self,
        config: BuildConfig,
        transpiler: Transpiler,
        graph: Optional[DependencyGraph] = None,
        resolver: Optional[ModuleResolver] = None,
    ):
        self.config = config
        self.transpiler = transpiler
        self.graph = graph if graph is not None else DependencyGraph()
        self.resolver = resolver or ModuleResolver()
        self.stats = {"cache_hits": 0, "transforms": 0}

    def is_external(self, path: Path) -> bool:
        """A module is external when its stem names a configured package"""
        return path.stem in self.config.external

    async def fetch_module(self, path: Path, signal: AbortSignal) -> ModuleRecord:
        """
        Return the record for a module, transforming it only when needed

        Args:
            path: Absolute module path
            signal: Cancellation signal of the current build

        Returns:
            Current ModuleRecord for the path
        """
        if self.is_external(path):
            record = ModuleRecord(
                path=path,
                code=f"module.exports = require('{path.stem}');",
            )
            self.graph.put(record, None)
            return record

        fingerprint = None
        if self.config.cache:
            fingerprint = await signal.run_io(content_fingerprint, path)
            existing = self.graph.get(path)
            if existing is not None and self.graph.fingerprint_of(path) == fingerprint:
                self.stats["cache_hits"] += 1
                logger.debug(f"Module unchanged: {path.name}")
                return existing

        source = await signal.run_io(read_file, path)
        result = await signal.guard(self.transpiler.transform(source, path))
        self.stats["transforms"] += 1

        imports = {
            specifier: self.resolver.resolve(path.parent, specifier)
            for specifier in sorted(extract_imports(result.code))
        }

        record = ModuleRecord(
            path=path,
            code=result.code,
            source_map=result.map,
            dependencies=list(dict.fromkeys(imports.values())),
            imports=imports,
        )
        self.graph.put(record, fingerprint)
        return record

    async def build(
        self,
        entry: Union[str, Path],
        signal: Optional[AbortSignal] = None,
    ) -> List[ModuleRecord]:
        """
        Build the dependency graph for an entry file

        Traversal is depth-first using a stack; each path is visited once, so
        import cycles terminate. Records are returned in visitation order,
        entry first.

        Args:
            entry: Entry file
            signal: Cancellation signal of the current build

        Returns:
            Records of every module reachable from the entry

        Raises:
            BuildError: If any reachable module fails to resolve or transform
            AbortedError: If the signal fires during the traversal
        """
        signal = signal or AbortSignal()
        entry_path = Path(entry).resolve()
        if not entry_path.is_file():
            raise BuildError(entry_path, FileNotFoundError(f"Entry file not found: {entry_path}"))

        stack = [entry_path]
        visited: Dict[Path, None] = {}

        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited[current] = None

            try:
                record = await self.fetch_module(current, signal)
            except AbortedError:
                raise
            except (BundlerError, OSError) as e:
                logger.error(f"Error processing {current}: {e}")
                raise BuildError(current, e) from e

            # Reversed so the first import is the next one visited
            stack.extend(reversed(record.dependencies))

        logger.debug(f"Dependency graph for {entry_path.name}: {len(visited)} modules")
        return [self.graph.get(path) for path in visited]
