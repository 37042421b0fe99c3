"""
Output size report
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Union

from .utils import format_bytes, get_file_size, get_relative_path, measure_time

logger = logging.getLogger(__name__)


@measure_time
def analyze_outputs(out_dir: Union[str, Path], outputs: Iterable[Union[str, Path]]) -> Dict[str, Any]:
    """
    Summarise the sizes of built files

    Args:
        out_dir: Output directory, for relative names
        outputs: Files to report on

    Returns:
        ``{"files": [{"file", "size", "gzip_size"}], "total_size": int}``
    """
    files = []
    total = 0
    for output in outputs:
        path = Path(output)
        size = get_file_size(path)
        gzip_size = get_file_size(path.with_name(f"{path.name}.gz"))
        files.append({
            "file": get_relative_path(path, out_dir),
            "size": size,
            "gzip_size": gzip_size or None,
        })
        total += size

    files.sort(key=lambda item: item["size"], reverse=True)
    return {"files": files, "total_size": total}


def log_report(analysis: Dict[str, Any]) -> None:
    """Log a size table built by analyze_outputs"""
    if not analysis["files"]:
        return

    width = max(len(item["file"]) for item in analysis["files"])
    logger.info("Bundle sizes:")
    for item in analysis["files"]:
        gzip_note = f" (gzip {format_bytes(item['gzip_size'])})" if item["gzip_size"] else ""
        logger.info(f"  {item['file']:<{width}}  {format_bytes(item['size']):>10}{gzip_note}")
    logger.info(f"  {'total':<{width}}  {format_bytes(analysis['total_size']):>10}")
