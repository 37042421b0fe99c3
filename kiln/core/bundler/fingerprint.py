"""
Content fingerprints used by every cache and by hashed output filenames
"""

import hashlib
import logging
import re
from pathlib import Path
from typing import List, Union

from .constants import HASH_LENGTH, PRECOMPRESSED_SUFFIXES
from .utils import remove_file

logger = logging.getLogger(__name__)


def mtime_fingerprint(file_path: Union[str, Path]) -> str:
    """
    Fast fingerprint from the file's modification time

    Args:
        file_path: File to fingerprint

    Returns:
        Nanosecond mtime as a string
    """
    return str(Path(file_path).stat().st_mtime_ns)


def content_fingerprint(*file_paths: Union[str, Path]) -> str:
    """
    Cryptographic fingerprint over the bytes of one or more files

    The files are hashed in the order given, so reordering the inputs of a
    combined output changes the fingerprint.

    Args:
        file_paths: Files to hash

    Returns:
        sha256 hex digest
    """
    hasher = hashlib.sha256()
    for file_path in file_paths:
        hasher.update(str(file_path).encode('utf-8'))
        hasher.update(b'\0')
        with open(file_path, 'rb') as f:
            for chunk in iter(lambda: f.read(8192), b''):
                hasher.update(chunk)
        hasher.update(b'\0')
    return hasher.hexdigest()


def content_hash(content: Union[str, bytes], length: int = HASH_LENGTH) -> str:
    """Short sha256 prefix of some content"""
    if isinstance(content, str):
        content = content.encode('utf-8')
    return hashlib.sha256(content).hexdigest()[:length]


def hashed_filename(file_path: Union[str, Path], content: Union[str, bytes]) -> str:
    """
    Build a ``name.<hash>.ext`` filename for an output file

    Args:
        file_path: Unhashed output path
        content: Final content of the file

    Returns:
        Filename embedding a hash of the content
    """
    path = Path(file_path)
    return f"{path.stem}.{content_hash(content)}{path.suffix}"


def clean_old_hashes(directory: Union[str, Path], base_name: str, ext: str) -> List[Path]:
    """
    Remove earlier hashed versions of an output file, with their maps and compressed copies

    Args:
        directory: Output directory
        base_name: Filename without hash or extension
        ext: Extension including the dot

    Returns:
        Paths that were removed
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    pattern = re.compile(rf"^{re.escape(base_name)}\.[a-f0-9]+{re.escape(ext)}$")
    removed = []
    for candidate in directory.iterdir():
        if not pattern.match(candidate.name):
            continue
        if remove_file(candidate):
            removed.append(candidate)
        for suffix in (".map", *PRECOMPRESSED_SUFFIXES):
            sibling = f"{candidate.name}{suffix}"
            if remove_file(candidate.with_name(sibling)):
                removed.append(candidate.with_name(sibling))

    if removed:
        logger.debug(f"Removed {len(removed)} stale artifacts for {base_name}{ext}")
    return removed
