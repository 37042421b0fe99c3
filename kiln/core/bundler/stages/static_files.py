"""
Static copy stage: ``public/`` into the output root, ``static/`` into ``<out>/static``
"""

import logging
from pathlib import Path
from typing import List, Tuple

from ..abort import AbortSignal
from ..constants import ASSET_BATCH_SIZE
from ..utils import copy_file, find_files, get_relative_path, in_batches
from .base import StageProcessor

logger = logging.getLogger(__name__)


class StaticStage(StageProcessor):
    """Copies passthrough directories verbatim"""

    name = "static"

    def copy_plan(self) -> List[Tuple[Path, Path]]:
        """(source directory, destination directory) pairs that exist"""
        config = self.config
        plan = [
            (config.public_dir, config.out_dir),
            (config.static_dir, config.out_dir / config.static_dir.name),
        ]
        return [(src, dst) for src, dst in plan if src.is_dir()]

    async def copy_directory(self, source: Path, destination: Path, signal: AbortSignal) -> List[Path]:
        files = await signal.run_io(find_files, source, "**/*")

        async def copy(path: Path) -> Path:
            target = destination / get_relative_path(path, source)
            await signal.run_io(copy_file, path, target)
            return target

        copied = await in_batches(files, ASSET_BATCH_SIZE, copy)
        if copied:
            logger.info(f"Copied {len(copied)} files from {source.name}")
        return copied

    async def run(self, signal: AbortSignal) -> List[Path]:
        copied: List[Path] = []
        for source, destination in self.copy_plan():
            copied.extend(await self.copy_directory(source, destination, signal))
        self.set_outputs(copied)
        return copied
