"""
Asset stage: images, SVGs, fonts and other files under ``src/assets``
"""

import logging
from collections import Counter
from pathlib import Path
from typing import List, Optional

from ..abort import AbortSignal
from ..cache import ArtifactDescriptor
from ..constants import (
    ASSET_BATCH_SIZE, FONT_EXTENSIONS, IMAGE_EXTENSIONS, RASTER_OPTIMIZE_EXTENSIONS,
    SCRIPT_EXTENSIONS, STYLE_EXTENSIONS, SUBSET_FONT_EXTENSIONS, SVG_EXTENSIONS,
    UNHASHED_ASSET_EXTENSIONS,
)
from ..errors import CollaboratorDegradedError
from ..fingerprint import content_hash, mtime_fingerprint
from ..optimizers import FontSubsetter, ImageOptimizer, SvgOptimizer
from ..utils import find_files, get_relative_path, in_batches, read_bytes, write_file_atomic
from .base import BuildContext, StageProcessor

logger = logging.getLogger(__name__)


def output_name(path: Path, data: bytes) -> str:
    """Images, icons and fonts keep their name; anything else gets ``name-<hash>.ext``"""
    suffix = path.suffix.lower()
    if suffix in UNHASHED_ASSET_EXTENSIONS:
        return path.name
    return f"{path.stem}-{content_hash(data)}{path.suffix}"


class AssetStage(StageProcessor):
    """Copies assets into the output tree, optimising what it can"""

    name = "assets"

    def __init__(
        self,
        context: BuildContext,
        images: Optional[ImageOptimizer] = None,
        svgs: Optional[SvgOptimizer] = None,
        fonts: Optional[FontSubsetter] = None,
    ):
        super().__init__(context)
        self.images = images or ImageOptimizer(context.config.image)
        self.svgs = svgs or SvgOptimizer()
        self.fonts = fonts or FontSubsetter()
        self.stats: Counter = Counter()

    def discover(self) -> List[Path]:
        """Everything under the assets source directory except script and style sources"""
        skipped = SCRIPT_EXTENSIONS | STYLE_EXTENSIONS
        return [
            path for path in find_files(self.config.assets_src_dir, "**/*")
            if path.suffix.lower() not in skipped
        ]

    def kind_of(self, path: Path) -> str:
        suffix = path.suffix.lower()
        if suffix in FONT_EXTENSIONS:
            return "fonts"
        if suffix in SVG_EXTENSIONS:
            return "svgs"
        if suffix in IMAGE_EXTENSIONS:
            return "images"
        return "others"

    async def run(self, signal: AbortSignal) -> List[Path]:
        self.stats = Counter()
        files = await signal.run_io(self.discover)
        if not files:
            self.set_outputs([])
            return []

        outputs = await in_batches(files, ASSET_BATCH_SIZE, lambda path: self.process(path, signal))
        self.set_outputs(outputs)

        summary = ", ".join(f"{count} {kind}" for kind, count in sorted(self.stats.items()))
        logger.info(f"Processed {len(files)} assets ({summary})")
        return outputs

    async def process(self, path: Path, signal: AbortSignal) -> Path:
        """
        Produce the output for one asset unless its cache entry is current

        Args:
            path: Source file
            signal: Cancellation signal of the current build

        Returns:
            Path of the main output file
        """
        key = get_relative_path(path, self.config.assets_src_dir)
        kind = self.kind_of(path)
        self.stats[kind] += 1

        fingerprint = await signal.run_io(mtime_fingerprint, path)
        cached = self.caches.assets.lookup(key, fingerprint)
        if cached is not None and cached.path.exists():
            return cached.path

        data = await signal.run_io(read_bytes, path)
        target = self.config.assets_out_dir / Path(key).parent / output_name(path, data)

        raster = kind == "images" and path.suffix.lower() in RASTER_OPTIMIZE_EXTENSIONS
        original = data
        if kind == "fonts":
            data = await self._font(path, data, signal)
        elif kind == "svgs":
            data = await self._svg(path, data, signal)
        elif raster and self.config.image.reencode:
            data = await self._reencode(path, data, signal)

        await signal.run_io(write_file_atomic, target, data)

        variants = []
        if raster:
            variants = await self._variants(path, original, target, signal)

        self.caches.assets.record(key, fingerprint, ArtifactDescriptor(target, variants))
        return target

    async def _svg(self, path: Path, data: bytes, signal: AbortSignal) -> bytes:
        try:
            return await signal.guard(self.svgs.optimize(data, path))
        except CollaboratorDegradedError as e:
            logger.warning(f"{e}; copying original")
            return data

    async def _font(self, path: Path, data: bytes, signal: AbortSignal) -> bytes:
        if not self.config.fonts.subset or path.suffix.lower() not in SUBSET_FONT_EXTENSIONS:
            return data
        try:
            subset = await signal.guard(self.fonts.optimize(data, path.suffix, path))
        except CollaboratorDegradedError as e:
            logger.warning(f"Font subsetting failed for {path.name}: {e}")
            return data
        logger.debug(f"Subset font created: {path.name}")
        return subset

    async def _reencode(self, path: Path, data: bytes, signal: AbortSignal) -> bytes:
        try:
            encoded = await signal.guard(self.images.reencode(data, path.suffix, path))
        except CollaboratorDegradedError as e:
            logger.warning(f"{e}; copying original")
            return data
        if len(encoded) >= len(data):
            return data
        logger.debug(f"Re-encoded {path.name}: {len(data)} -> {len(encoded)} bytes")
        return encoded

    async def _variants(self, path: Path, data: bytes, target: Path, signal: AbortSignal) -> List[Path]:
        """Extra encodings of a raster image next to the original"""
        written = []
        for fmt in self.config.image.formats:
            if path.suffix.lower() == f".{fmt}":
                continue
            try:
                encoded = await signal.guard(self.images.optimize(data, fmt, path.suffix, path))
            except CollaboratorDegradedError as e:
                logger.warning(f"Skipping {fmt} variant of {path.name}: {e}")
                continue
            variant = target.with_suffix(f".{fmt}")
            await signal.run_io(write_file_atomic, variant, encoded)
            written.append(variant)
        return written
