"""
Script stage: dependency graph, bundle generation and hashed output
"""

import logging
from pathlib import Path
from typing import Optional

from ..abort import AbortSignal
from ..cache import ArtifactDescriptor
from ..fingerprint import content_fingerprint
from ..generator import BundleOutput, BundleStrategy, select_strategy, write_bundle
from ..graph import GraphBuilder
from .base import BuildContext, StageProcessor

logger = logging.getLogger(__name__)


class ScriptStage(StageProcessor):
    """Bundles the entry point and everything it imports"""

    name = "scripts"

    def __init__(
        self,
        context: BuildContext,
        graph_builder: GraphBuilder,
        strategy: Optional[BundleStrategy] = None,
    ):
        super().__init__(context)
        self.graph_builder = graph_builder
        self.strategy = strategy or select_strategy(context.config.format)

    async def run(self, signal: AbortSignal) -> Path:
        config = self.config
        out_file = config.script_output
        key = out_file.name

        modules = await self.graph_builder.build(config.entry, signal)
        sources = [
            record.path for record in modules
            if not self.graph_builder.is_external(record.path)
        ]
        fingerprint = await signal.run_io(content_fingerprint, *sources)

        cached = self.caches.scripts.lookup(key, fingerprint)
        if cached is not None:
            if not cached.path.exists():
                written = await signal.run_io(write_bundle, config, cached.payload, out_file)
                cached.path = written.file_path
            logger.debug(f"Script bundle up to date: {cached.path.name}")
            self.set_outputs([cached.path])
            return cached.path

        output: BundleOutput = self.strategy.generate(modules, config.entry)
        signal.check()
        written = await signal.run_io(write_bundle, config, output, out_file)
        self.caches.scripts.record(key, fingerprint, ArtifactDescriptor(written.file_path, output))

        self.set_outputs([written.file_path])
        logger.info(f"Bundled {len(modules)} modules into {written.file_path.name}")
        return written.file_path
