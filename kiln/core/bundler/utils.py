"""
Common utility functions for the bundler
"""

import asyncio
import fnmatch
import functools
import json
import logging
import re
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, TypeVar, Union

from .constants import LOG_FORMAT

# Setup module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_BRACE_PATTERN = re.compile(r"\{([^{}]*)\}")


def read_file(file_path: Union[str, Path], encoding: str = 'utf-8') -> str:
    """
    Read file content safely

    Args:
        file_path: Path to file
        encoding: File encoding

    Returns:
        File content as string

    Raises:
        IOError: If file cannot be read or is not valid text in the encoding
    """
    try:
        with open(file_path, 'r', encoding=encoding) as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Failed to read file {file_path}: {e}")
        raise IOError(f"Cannot read file {file_path}: {e}") from e


def read_bytes(file_path: Union[str, Path]) -> bytes:
    """Read a file as bytes, raising IOError with the path on failure"""
    try:
        return Path(file_path).read_bytes()
    except OSError as e:
        raise IOError(f"Cannot read file {file_path}: {e}") from e


def write_file_atomic(file_path: Union[str, Path], content: Union[str, bytes], encoding: str = 'utf-8') -> None:
    """
    Write file content atomically (write to temp, then move)

    Args:
        file_path: Target file path
        content: Text or bytes to write
        encoding: File encoding for text content

    Raises:
        IOError: If file cannot be written
    """
    path = Path(file_path)
    tmp_path: Optional[str] = None
    try:
        # Ensure parent directory exists
        safe_mkdir(path.parent)

        if isinstance(content, bytes):
            handle = tempfile.NamedTemporaryFile(mode='wb', dir=path.parent, delete=False)
        else:
            handle = tempfile.NamedTemporaryFile(
                mode='w', encoding=encoding, dir=path.parent, delete=False, newline=''
            )
        with handle as tmp_file:
            tmp_path = tmp_file.name
            tmp_file.write(content)

        # Atomic move
        shutil.move(tmp_path, path)

    except OSError as e:
        if tmp_path is not None:
            Path(tmp_path).unlink(missing_ok=True)
        logger.error(f"Failed to write file {file_path}: {e}")
        raise IOError(f"Cannot write file {file_path}: {e}") from e


def safe_mkdir(directory: Union[str, Path]) -> Path:
    """
    Create directory safely (no error if exists)

    Args:
        directory: Directory path to create

    Returns:
        Path object of created directory
    """
    path = Path(directory)
    try:
        path.mkdir(parents=True, exist_ok=True)
        return path
    except OSError as e:
        logger.error(f"Failed to create directory {directory}: {e}")
        raise OSError(f"Cannot create directory {directory}: {e}") from e


def safe_rmdir(directory: Union[str, Path], ignore_errors: bool = True) -> bool:
    """
    Remove directory safely

    Args:
        directory: Directory to remove
        ignore_errors: Whether to ignore errors

    Returns:
        True if removed successfully
    """
    try:
        path = Path(directory)
        if path.exists():
            shutil.rmtree(path)
        return True
    except OSError as e:
        if not ignore_errors:
            logger.error(f"Failed to remove directory {directory}: {e}")
            raise
        return False


def remove_file(file_path: Union[str, Path]) -> bool:
    """Delete a file if it exists; returns True when something was removed"""
    try:
        Path(file_path).unlink()
        return True
    except FileNotFoundError:
        return False


def get_file_size(file_path: Union[str, Path]) -> int:
    """
    Get file size in bytes

    Args:
        file_path: Path to file

    Returns:
        File size in bytes, 0 if file doesn't exist
    """
    try:
        return Path(file_path).stat().st_size
    except OSError:
        return 0


def get_relative_path(file_path: Union[str, Path], base_path: Union[str, Path]) -> str:
    """
    Get relative path from base path, always with forward slashes

    Args:
        file_path: Target file path
        base_path: Base path

    Returns:
        Relative path as string
    """
    try:
        return Path(file_path).relative_to(Path(base_path)).as_posix()
    except ValueError:
        # If not relative, return absolute path
        return Path(file_path).resolve().as_posix()


def copy_file(src: Union[str, Path], dst: Union[str, Path], preserve_metadata: bool = True) -> None:
    """
    Copy file safely

    Args:
        src: Source file path
        dst: Destination file path
        preserve_metadata: Whether to preserve file metadata

    Raises:
        IOError: If copy fails
    """
    try:
        src_path = Path(src)
        dst_path = Path(dst)

        # Ensure destination directory exists
        safe_mkdir(dst_path.parent)

        if preserve_metadata:
            shutil.copy2(src_path, dst_path)
        else:
            shutil.copy(src_path, dst_path)

    except OSError as e:
        logger.error(f"Failed to copy {src} to {dst}: {e}")
        raise IOError(f"Cannot copy file: {e}") from e


def expand_braces(pattern: str) -> List[str]:
    """
    Expand shell-style brace alternatives

    Example:
        >>> expand_braces("src/style.{css,scss}")
        ['src/style.css', 'src/style.scss']
    """
    match = _BRACE_PATTERN.search(pattern)
    if not match:
        return [pattern]

    head, tail = pattern[:match.start()], pattern[match.end():]
    expanded = []
    for option in match.group(1).split(','):
        expanded.extend(expand_braces(f"{head}{option}{tail}"))
    return expanded


def find_files(
    directory: Union[str, Path],
    patterns: Union[str, Sequence[str]] = "**/*",
    exclude: Sequence[str] = (),
) -> List[Path]:
    """
    Find files matching glob patterns in directory

    Args:
        directory: Directory the patterns are relative to
        patterns: One or more glob patterns (``**`` and ``{a,b}`` supported)
        exclude: Glob patterns of files to leave out

    Returns:
        Sorted list of matching file paths
    """
    base = Path(directory)
    if not base.exists():
        return []

    if isinstance(patterns, str):
        patterns = [patterns]

    found = set()
    for pattern in patterns:
        for expanded in expand_braces(pattern):
            try:
                for path in base.glob(expanded):
                    if path.is_file():
                        found.add(path)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to find files for {expanded} in {directory}: {e}")

    if exclude:
        found = {
            path for path in found
            if not matches_any(get_relative_path(path, base), exclude)
        }

    return sorted(found)


def matches_any(relative_path: str, patterns: Iterable[str]) -> bool:
    """Check a forward-slash relative path against glob patterns"""
    for pattern in patterns:
        for expanded in expand_braces(pattern):
            if fnmatch.fnmatch(relative_path, expanded):
                return True
            # "src/**/*.css" should also match "src/a.css"
            if "**/" in expanded and fnmatch.fnmatch(relative_path, expanded.replace("**/", "")):
                return True
    return False


def load_json_file(file_path: Union[str, Path], default: Optional[dict] = None) -> dict:
    """
    Load JSON file safely

    Args:
        file_path: Path to JSON file
        default: Default value if file doesn't exist or is invalid

    Returns:
        Parsed JSON data or default value
    """
    path = Path(file_path)

    if not path.exists():
        return default or {}

    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        logger.warning(f"Failed to load JSON file {file_path}: {e}")
        return default or {}


def setup_logging(level: int = logging.INFO, format_str: Optional[str] = None) -> None:
    """
    Setup logging for the bundler

    Args:
        level: Logging level
        format_str: Custom format string
    """
    if format_str is None:
        format_str = LOG_FORMAT

    # Configure the package logger
    kiln_logger = logging.getLogger('kiln')

    if not kiln_logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(format_str)
        handler.setFormatter(formatter)
        kiln_logger.addHandler(handler)
        kiln_logger.propagate = False
    kiln_logger.setLevel(level)


def format_bytes(size_bytes: int) -> str:
    """
    Format byte size as human readable string

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., "1.2 MB")
    """
    if size_bytes == 0:
        return "0 B"

    units = ['B', 'KB', 'MB', 'GB', 'TB']
    unit_index = 0
    size = float(size_bytes)

    while size >= 1024.0 and unit_index < len(units) - 1:
        size /= 1024.0
        unit_index += 1

    return f"{size:.1f} {units[unit_index]}"


def measure_time(func):
    """
    Decorator to measure function execution time

    Works for both plain functions and coroutines.

    Args:
        func: Function to measure

    Returns:
        Decorated function that logs execution time
    """
    if asyncio.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                logger.debug(f"{func.__name__} executed in {time.perf_counter() - start_time:.3f}s")

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            logger.debug(f"{func.__name__} executed in {time.perf_counter() - start_time:.3f}s")

    return wrapper


async def run_command(
    cmd: Sequence[str],
    input_data: Optional[bytes] = None,
    timeout: Optional[float] = None,
    cwd: Optional[Union[str, Path]] = None,
) -> bytes:
    """
    Run an external tool and return its stdout

    Args:
        cmd: Command and arguments
        input_data: Bytes written to the tool's stdin
        timeout: Seconds before the tool is killed
        cwd: Working directory

    Returns:
        Captured stdout

    Raises:
        FileNotFoundError: If the tool is not installed
        subprocess.CalledProcessError: On a non-zero exit code
        subprocess.TimeoutExpired: If the timeout elapses
    """
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=subprocess.PIPE if input_data is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=str(cwd) if cwd else None,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(input_data), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise subprocess.TimeoutExpired(list(cmd), timeout)
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    if process.returncode != 0:
        raise subprocess.CalledProcessError(
            process.returncode, list(cmd), output=stdout, stderr=stderr
        )
    return stdout


async def in_batches(
    items: Sequence[T],
    size: int,
    func: Callable[[T], Awaitable[R]],
) -> List[R]:
    """
    Run an async function over items, at most ``size`` at a time

    Args:
        items: Items to process
        size: Batch size
        func: Coroutine function applied to each item

    Returns:
        Results in input order
    """
    results: List[R] = []
    for start in range(0, len(items), size):
        batch = items[start:start + size]
        results.extend(await asyncio.gather(*(func(item) for item in batch)))
    return results


def describe_process_error(error: BaseException) -> str:
    """Human readable message for a failed external tool"""
    if isinstance(error, subprocess.CalledProcessError):
        stderr = error.stderr.decode('utf-8', 'replace') if isinstance(error.stderr, bytes) else (error.stderr or '')
        return f"exit code {error.returncode}: {stderr.strip() or 'no stderr'}"
    if isinstance(error, subprocess.TimeoutExpired):
        return f"timed out after {error.timeout} seconds"
    if isinstance(error, FileNotFoundError):
        return f"command not found: {error.filename or error}"
    return str(error)
