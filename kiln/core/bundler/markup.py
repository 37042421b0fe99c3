"""
HTML rewriting: swap source asset references for the built, hashed ones
"""

import logging
import re
import subprocess
from pathlib import Path
from typing import Iterable, Tuple, Union

from .constants import DEFAULT_TOOL_TIMEOUT
from .utils import describe_process_error, get_relative_path, run_command

logger = logging.getLogger(__name__)

STYLESHEET_LINK = re.compile(r"""<link[^>]*rel=["']stylesheet["'][^>]*>""", re.IGNORECASE)
MODULE_SCRIPT = re.compile(r"""<script[^>]*type=["']module["'][^>]*>.*?</script>""", re.IGNORECASE | re.DOTALL)

HTML_MINIFIER_ARGS = [
    "--collapse-whitespace",
    "--remove-comments",
    "--minify-css", "true",
    "--minify-urls", "true",
    "--process-conditional-comments",
]


def strip_source_assets(html: str, static_prefix: str) -> str:
    """
    Remove stylesheet links and module scripts that the build replaces

    References into the static directory are kept since static files are
    copied verbatim.
    """
    def keep_static(match: "re.Match") -> str:
        return match.group(0) if f"{static_prefix}/" in match.group(0) else ""

    html = STYLESHEET_LINK.sub(keep_static, html)
    return MODULE_SCRIPT.sub(keep_static, html)


def asset_tags(out_dir: Union[str, Path], scripts: Iterable[Path], styles: Iterable[Path]) -> Tuple[str, str]:
    """Build the script and stylesheet tags for built outputs, as root-relative URLs"""
    script_tags = "\n".join(
        f'\t<script type="module" src="/{get_relative_path(path, out_dir)}"></script>'
        for path in scripts
    )
    style_tags = "\n".join(
        f'\t<link rel="stylesheet" href="/{get_relative_path(path, out_dir)}">'
        for path in styles
    )
    return script_tags, style_tags


def insert_tags(html: str, tags: str, closing_tag: str, prepend_if_missing: bool) -> str:
    """Insert tags before a closing tag, or at the start/end when it is absent"""
    position = html.find(closing_tag)
    if position > -1:
        return f"{html[:position]}{tags}\n{html[position:]}"
    if prepend_if_missing:
        return f"{tags}\n{html}"
    return f"{html}\n{tags}"


def inject_assets(html: str, script_tags: str, style_tags: str, static_prefix: str) -> str:
    """Rewrite one document to reference the built scripts and styles"""
    html = strip_source_assets(html, static_prefix)
    if style_tags:
        html = insert_tags(html, style_tags, "</head>", True)
    if script_tags:
        html = insert_tags(html, script_tags, "</body>", False)
    return html


async def minify_html(html: str, timeout: int = DEFAULT_TOOL_TIMEOUT) -> str:
    """
    Minify a document with html-minifier-terser

    Falls back to the unminified text on any failure.
    """
    try:
        output = await run_command(
            ["html-minifier-terser", *HTML_MINIFIER_ARGS],
            input_data=html.encode("utf-8"),
            timeout=timeout,
        )
    except (FileNotFoundError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        logger.warning(f"HTML minification skipped: {describe_process_error(e)}")
        return html

    return output.decode("utf-8") or html
