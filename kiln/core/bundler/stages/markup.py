"""
Markup stage: HTML documents rewritten to load the built scripts and styles
"""

import logging
from pathlib import Path
from typing import List, Tuple

from ..abort import AbortSignal
from ..cache import ArtifactDescriptor
from ..constants import ASSET_BATCH_SIZE
from ..fingerprint import content_hash, mtime_fingerprint
from ..markup import asset_tags, inject_assets, minify_html
from ..utils import find_files, get_relative_path, in_batches, read_file, write_file_atomic
from .base import StageProcessor

logger = logging.getLogger(__name__)


class MarkupStage(StageProcessor):
    """Injects hashed asset references into every HTML file under the source directory"""

    name = "markup"

    def discover(self) -> List[Path]:
        return find_files(self.config.src_dir, "**/*.html")

    def built_assets(self) -> Tuple[List[Path], List[Path]]:
        """Scripts and stylesheets currently in the output tree, outside the static copy"""
        config = self.config
        exclude = [f"{config.static_dir.name}/**"]
        scripts = find_files(config.out_dir, "**/*.js", exclude)
        styles = find_files(config.out_dir, "**/*.css", exclude)
        return scripts, styles

    async def run(self, signal: AbortSignal) -> List[Path]:
        config = self.config
        documents = await signal.run_io(self.discover)
        if not documents:
            self.set_outputs([])
            return []

        scripts, styles = await signal.run_io(self.built_assets)
        script_tags, style_tags = asset_tags(config.out_dir, scripts, styles)
        tags_hash = content_hash(script_tags + style_tags)

        async def render(document: Path) -> Path:
            key = get_relative_path(document, config.src_dir)
            target = config.out_dir / key
            fingerprint = f"{await signal.run_io(mtime_fingerprint, document)}:{tags_hash}"

            cached = self.caches.markup.lookup(key, fingerprint)
            if cached is not None:
                await signal.run_io(write_file_atomic, target, cached.payload)
                return target

            html = await signal.run_io(read_file, document)
            html = inject_assets(html, script_tags, style_tags, config.static_dir.name)
            if config.minify.html:
                html = await signal.guard(minify_html(html))

            await signal.run_io(write_file_atomic, target, html)
            self.caches.markup.record(key, fingerprint, ArtifactDescriptor(target, html))
            return target

        written = await in_batches(documents, ASSET_BATCH_SIZE, render)
        self.set_outputs(written)
        logger.info(f"Processed {len(written)} HTML files")
        return written
