"""
Pre-compressed siblings for text outputs

Every script, stylesheet and document gets a ``.br`` and a ``.gz`` copy so a
static host can serve whichever encoding the client accepts.
"""

import gzip
import logging
from pathlib import Path
from typing import List, Union

import brotli

from .abort import AbortSignal
from .constants import COMPRESS_BATCH_SIZE, COMPRESSIBLE_EXTENSIONS
from .utils import find_files, in_batches, measure_time, read_bytes, write_file_atomic

logger = logging.getLogger(__name__)


def gzip_file(file_path: Union[str, Path]) -> Path:
    """
    Write ``<file>.gz`` next to a file

    The gzip header carries no timestamp, so unchanged input gives
    byte-identical output.
    """
    file_path = Path(file_path)
    target = file_path.with_name(f"{file_path.name}.gz")
    write_file_atomic(target, gzip.compress(read_bytes(file_path), compresslevel=9, mtime=0))
    return target


def brotli_file(file_path: Union[str, Path]) -> Path:
    """Write ``<file>.br`` next to a file at the highest quality"""
    file_path = Path(file_path)
    target = file_path.with_name(f"{file_path.name}.br")
    write_file_atomic(target, brotli.compress(read_bytes(file_path), quality=11))
    return target


def compress_file(file_path: Union[str, Path]) -> List[Path]:
    """Write both pre-compressed siblings of a file"""
    return [brotli_file(file_path), gzip_file(file_path)]


@measure_time
async def compress_outputs(out_dir: Union[str, Path], signal: AbortSignal) -> List[Path]:
    """
    Brotli- and gzip-compress every script, stylesheet and document in the output directory

    Args:
        out_dir: Output directory
        signal: Cancellation signal of the current build

    Returns:
        Paths of the written ``.br`` and ``.gz`` files
    """
    patterns = [f"**/*{ext}" for ext in sorted(COMPRESSIBLE_EXTENSIONS)]
    files = await signal.run_io(find_files, out_dir, patterns)
    if not files:
        return []

    async def compress(path: Path) -> List[Path]:
        return await signal.run_io(compress_file, path)

    written = await in_batches(files, COMPRESS_BATCH_SIZE, compress)
    logger.info(f"Compressed {len(written)} files (Brotli + gzip)")
    return [path for pair in written for path in pair]
