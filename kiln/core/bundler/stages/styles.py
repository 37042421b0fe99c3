"""
Style stage: every matching style source compiled into one hashed bundle
"""

import logging
from pathlib import Path
from typing import List, Optional

from ..abort import AbortSignal
from ..cache import ArtifactDescriptor
from ..constants import ASSET_BATCH_SIZE, PRECOMPRESSED_SUFFIXES
from ..errors import CollaboratorDegradedError
from ..fingerprint import content_fingerprint, content_hash
from ..styles import StyleCompiler, combine, dialect_for, minify_css
from ..utils import find_files, get_relative_path, in_batches, read_file, remove_file, write_file_atomic
from .base import BuildContext, StageProcessor

logger = logging.getLogger(__name__)

BUNDLE_PREFIX = "styles-"
CACHE_KEY = "styles.css"


def remove_stale_bundles(out_dir: Path, keep: Path) -> List[Path]:
    """Delete every ``styles-*.css`` in the output directory except ``keep``"""
    removed = []
    for candidate in out_dir.glob(f"{BUNDLE_PREFIX}*.css"):
        if candidate == keep:
            continue
        if remove_file(candidate):
            removed.append(candidate)
        for suffix in PRECOMPRESSED_SUFFIXES:
            remove_file(candidate.with_name(f"{candidate.name}{suffix}"))
    return removed


class StyleStage(StageProcessor):
    """Compiles and combines style sources"""

    name = "styles"

    def __init__(self, context: BuildContext, compiler: Optional[StyleCompiler] = None):
        super().__init__(context)
        self.compiler = compiler or StyleCompiler(context.config.project_root)

    def discover(self) -> List[Path]:
        """Every style source the include and exclude globs select, partials included"""
        css = self.config.css
        return find_files(self.config.project_root, css.include, css.exclude)

    @staticmethod
    def entry_points(sources: List[Path]) -> List[Path]:
        """Sources compiled on their own; partials are only reachable through imports"""
        return [path for path in sources if not path.name.startswith("_")]

    async def _compile(self, path: Path, signal: AbortSignal) -> str:
        text = await signal.run_io(read_file, path)
        inlined = await signal.run_io(
            self.compiler.inline_imports, text, path.parent, dialect_for(path), {path.resolve()}
        )
        return await signal.guard(
            self.compiler.compile(inlined, dialect_for(path), self.config.minify.css, path)
        )

    async def _autoprefix(self, css: str, signal: AbortSignal) -> str:
        try:
            return await signal.guard(self.compiler.autoprefix(css))
        except CollaboratorDegradedError as e:
            logger.warning(f"{e}; styles left unprefixed")
            return css

    async def run(self, signal: AbortSignal) -> Optional[Path]:
        config = self.config
        sources = await signal.run_io(self.discover)
        files = self.entry_points(sources)
        if not files:
            logger.debug("No style sources found")
            self.set_outputs([])
            return None

        fingerprint = await signal.run_io(content_fingerprint, *sources)
        cached = self.caches.styles.lookup(CACHE_KEY, fingerprint)
        if cached is not None:
            if not cached.path.exists():
                await signal.run_io(write_file_atomic, cached.path, cached.payload)
            logger.debug(f"Style bundle up to date: {cached.path.name}")
            self.set_outputs([cached.path])
            return cached.path

        chunks = await in_batches(files, ASSET_BATCH_SIZE, lambda path: self._compile(path, signal))
        names = [get_relative_path(path, config.project_root) for path in files]
        css = combine(chunks, names)
        if config.css.autoprefix:
            css = await self._autoprefix(css, signal)
        if config.minify.css:
            css = minify_css(css)

        output = config.out_dir / f"{BUNDLE_PREFIX}{content_hash(css)}.css"
        await signal.run_io(write_file_atomic, output, css)
        self.caches.styles.record(CACHE_KEY, fingerprint, ArtifactDescriptor(output, css))
        removed = await signal.run_io(remove_stale_bundles, config.out_dir, output)
        if removed:
            logger.debug(f"Removed {len(removed)} stale style bundles")

        self.set_outputs([output])
        logger.info(f"Updated CSS bundle: {output.name}")
        return output
