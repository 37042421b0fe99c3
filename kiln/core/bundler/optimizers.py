"""
Image, SVG and font optimisers

Each optimiser shells out to a command-line codec. They are optional: any
failure is reported as ``CollaboratorDegradedError`` and the caller keeps the
original bytes.
"""

import asyncio
import logging
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Union

from .config import ImageOptions
from .constants import DEFAULT_TOOL_TIMEOUT, FONT_SUBSET_TEXT
from .errors import CollaboratorDegradedError
from .utils import describe_process_error, run_command

logger = logging.getLogger(__name__)

ArgsBuilder = Callable[[Path, Path], List[str]]


async def _run_codec(
    tool: str,
    build_args: ArgsBuilder,
    data: bytes,
    input_suffix: str,
    output_suffix: str,
    timeout: int,
    source: Optional[Union[str, Path]] = None,
) -> bytes:
    """Run a file-to-file codec on some bytes through a temporary directory"""
    with tempfile.TemporaryDirectory(prefix="kiln-") as temp:
        input_file = Path(temp) / f"input{input_suffix}"
        output_file = Path(temp) / f"output{output_suffix}"
        await asyncio.to_thread(input_file.write_bytes, data)

        try:
            await run_command([tool, *build_args(input_file, output_file)], timeout=timeout)
        except (FileNotFoundError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            raise CollaboratorDegradedError(tool, describe_process_error(e), source) from e

        if not await asyncio.to_thread(output_file.exists):
            raise CollaboratorDegradedError(tool, "no output produced", source)
        return await asyncio.to_thread(output_file.read_bytes)


class ImageOptimizer:
    """Produces modern-format variants of raster images"""

    def __init__(self, options: ImageOptions, timeout: int = DEFAULT_TOOL_TIMEOUT):
        self.options = options
        self.timeout = timeout

    def _webp_args(self, source: Path, target: Path) -> List[str]:
        return [
            "-quiet",
            "-q", str(self.options.quality),
            str(source),
            "-o", str(target),
        ]

    def _avif_args(self, source: Path, target: Path) -> List[str]:
        return ["-q", str(self.options.quality), str(source), str(target)]

    async def optimize(
        self,
        data: bytes,
        fmt: str,
        source_suffix: str,
        source: Optional[Union[str, Path]] = None,
    ) -> bytes:
        """
        Encode image bytes into a target format

        Args:
            data: Original image bytes
            fmt: Target format, ``webp`` or ``avif``
            source_suffix: Extension of the original, e.g. ``.png``
            source: Original path, for messages

        Returns:
            Encoded bytes

        Raises:
            CollaboratorDegradedError: If the codec is missing or fails
        """
        if fmt == "webp":
            return await _run_codec("cwebp", self._webp_args, data, source_suffix, ".webp", self.timeout, source)
        if fmt == "avif":
            return await _run_codec("avifenc", self._avif_args, data, source_suffix, ".avif", self.timeout, source)
        raise CollaboratorDegradedError("image", f"unsupported format '{fmt}'", source)

    def _reencode_args(self, source: Path, target: Path) -> List[str]:
        return [str(source), "-strip", "-quality", str(self.options.quality), str(target)]

    async def reencode(self, data: bytes, suffix: str, source: Optional[Union[str, Path]] = None) -> bytes:
        """
        Re-encode an image in its own format at the configured quality

        Metadata is stripped. The caller decides whether the result is kept.

        Raises:
            CollaboratorDegradedError: If ImageMagick is missing or fails
        """
        return await _run_codec("magick", self._reencode_args, data, suffix, suffix, self.timeout, source)


class SvgOptimizer:
    """Minifies SVG documents with svgo"""

    def __init__(self, timeout: int = DEFAULT_TOOL_TIMEOUT):
        self.timeout = timeout

    async def optimize(self, data: bytes, source: Optional[Union[str, Path]] = None) -> bytes:
        try:
            output = await run_command(["svgo", "-i", "-", "-o", "-"], input_data=data, timeout=self.timeout)
        except (FileNotFoundError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            raise CollaboratorDegradedError("svgo", describe_process_error(e), source) from e

        if not output.strip():
            raise CollaboratorDegradedError("svgo", "empty output", source)
        logger.debug(f"Optimized SVG {Path(source).name if source else ''}: {len(data)} -> {len(output)} bytes")
        return output


class FontSubsetter:
    """Cuts fonts down to a fixed character set with fontTools' pyftsubset"""

    def __init__(self, text: str = FONT_SUBSET_TEXT, timeout: int = DEFAULT_TOOL_TIMEOUT):
        self.text = text
        self.timeout = timeout

    def _args(self, source: Path, target: Path) -> List[str]:
        return [str(source), f"--text={self.text}", f"--output-file={target}"]

    async def optimize(self, data: bytes, suffix: str, source: Optional[Union[str, Path]] = None) -> bytes:
        return await _run_codec("pyftsubset", self._args, data, suffix, suffix, self.timeout, source)
