"""
Style compilation

Preprocessor dialects are compiled through their command-line tools; plain
CSS passes through. Local ``@import`` rules are inlined before compilation so
that the combined bundle does not depend on the output layout.
"""

import logging
import re
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Set, Union

from .constants import DEFAULT_TOOL_TIMEOUT, NODE_MODULES_DIR
from .errors import CollaboratorDegradedError, TransformError
from .utils import describe_process_error, read_file, run_command

logger = logging.getLogger(__name__)

IMPORT_RULE = re.compile(r"""@import\s+(?:url\()?\s*["']([^"']+)["']\s*\)?[^;]*;""")
REMOTE_IMPORT = re.compile(r"^(?:https?:)?//", re.IGNORECASE)

DIALECTS = {
    ".css": "css",
    ".scss": "scss",
    ".sass": "sass",
    ".less": "less",
    ".styl": "stylus",
}

# Extensions an extensionless import may refer to, per dialect
IMPORT_EXTENSIONS = {
    "css": (".css",),
    "scss": (".scss", ".sass", ".css"),
    "sass": (".sass", ".scss", ".css"),
    "less": (".less", ".css"),
    "stylus": (".styl", ".css"),
}


def dialect_for(path: Union[str, Path]) -> str:
    """Dialect name for a style file, by extension"""
    return DIALECTS.get(Path(path).suffix.lower(), "css")


STRING_OR_COMMENT = re.compile(r""""(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*'|/\*.*?\*/""", re.DOTALL)
# A declaration sits after "{" or ";" and ends at ";" or "}"; selectors end at "{"
DECLARATION = re.compile(r"(?<=[{;])([^{};]*)(?=[;}])")


def minify_css(css: str) -> str:
    """
    Conservative whitespace and comment stripping

    Quoted strings and ``/*!`` comments are left untouched. Space around a
    colon is only removed inside declarations, so ``.card :first-child``
    keeps its descendant combinator.

    Args:
        css: Compiled CSS

    Returns:
        Minified CSS
    """
    strings: List[str] = []

    def hold(match: "re.Match") -> str:
        token = match.group(0)
        if token.startswith("/*") and not token.startswith("/*!"):
            return ""
        strings.append(token)
        return f"\x00{len(strings) - 1}\x00"

    css = STRING_OR_COMMENT.sub(hold, css)
    css = re.sub(r"\s+", " ", css)
    css = re.sub(r"\s*([{};,>~])\s*", r"\1", css)
    css = DECLARATION.sub(lambda m: re.sub(r"\s*:\s*", ":", m.group(1), count=1), css)
    css = css.replace(";}", "}")
    return re.sub(r"\x00(\d+)\x00", lambda m: strings[int(m.group(1))], css).strip()


class StyleCompiler:
    """Compiles style sources into CSS text"""

    def __init__(self, project_root: Union[str, Path], timeout: int = DEFAULT_TOOL_TIMEOUT):
        self.project_root = Path(project_root)
        self.timeout = timeout

    def import_candidates(self, base_dir: Path, specifier: str, dialect: str) -> List[Path]:
        """
        Files an ``@import`` may refer to, in lookup order

        SCSS-style partials are tried first: ``_name.scss``, ``name.scss``,
        then ``_name`` and ``name`` as written.
        """
        if specifier.startswith("~"):
            target = self.project_root / NODE_MODULES_DIR / specifier[1:]
        else:
            target = base_dir / specifier

        directory, name = target.parent, target.name
        candidates = []
        if not Path(name).suffix:
            for ext in IMPORT_EXTENSIONS.get(dialect, (".css",)):
                candidates.append(directory / f"_{name}{ext}")
                candidates.append(directory / f"{name}{ext}")
        candidates.append(directory / f"_{name}")
        candidates.append(directory / name)
        return candidates

    def resolve_import(self, base_dir: Path, specifier: str, dialect: str) -> Optional[Path]:
        for candidate in self.import_candidates(base_dir, specifier, dialect):
            if candidate.is_file():
                return candidate.resolve()
        return None

    def inline_imports(
        self,
        text: str,
        base_dir: Union[str, Path],
        dialect: str = "css",
        seen: Optional[Set[Path]] = None,
    ) -> str:
        """
        Replace local ``@import`` rules with the imported file's text

        Remote imports are dropped. Imports that cannot be found are replaced
        with nothing and logged as a warning; the build carries on.

        Args:
            text: Style source
            base_dir: Directory of the file the text came from
            dialect: Dialect of the importing file
            seen: Files already inlined on this path, to stop import cycles

        Returns:
            Source with imports inlined
        """
        base_dir = Path(base_dir)
        seen = set() if seen is None else seen

        def replace(match: "re.Match") -> str:
            specifier = match.group(1)
            if REMOTE_IMPORT.match(specifier):
                logger.debug(f"Dropping remote @import {specifier}")
                return ""

            resolved = self.resolve_import(base_dir, specifier, dialect)
            if resolved is None:
                logger.warning(f"Could not resolve @import \"{specifier}\" in {base_dir}")
                return ""
            if resolved in seen:
                logger.warning(f"Circular @import \"{specifier}\" in {base_dir}")
                return ""

            imported = read_file(resolved)
            nested = self.inline_imports(imported, resolved.parent, dialect, seen | {resolved})
            return f"/* {specifier} */\n{nested}"

        return IMPORT_RULE.sub(replace, text)

    def command_for(self, dialect: str, filename: Path, compressed: bool) -> Optional[List[str]]:
        """Command line that compiles stdin to stdout, or None for plain CSS"""
        include = [str(filename.parent), str(self.project_root / NODE_MODULES_DIR)]
        if dialect in ("scss", "sass"):
            cmd = ["sass", "--stdin", "--no-source-map"]
            if dialect == "sass":
                cmd.append("--indented")
            cmd += [f"--load-path={path}" for path in include]
            cmd.append(f"--style={'compressed' if compressed else 'expanded'}")
            return cmd
        if dialect == "less":
            cmd = ["lessc", f"--include-path={':'.join(include)}"]
            if compressed:
                cmd.append("--clean-css")
            return cmd + ["-"]
        if dialect == "stylus":
            cmd = ["stylus", "--print"]
            for path in include:
                cmd += ["--include", path]
            if compressed:
                cmd.append("--compress")
            return cmd
        return None

    async def compile(
        self,
        text: str,
        dialect: str,
        compressed: bool = False,
        filename: Optional[Union[str, Path]] = None,
    ) -> str:
        """
        Compile one style source to CSS

        Args:
            text: Source text, imports already inlined
            dialect: One of css, scss, sass, less, stylus
            compressed: Ask the preprocessor for compressed output
            filename: Source path, for include paths and error messages

        Returns:
            CSS text

        Raises:
            TransformError: If the preprocessor is missing or rejects the input
        """
        filename = Path(filename) if filename else self.project_root / f"input.{dialect}"
        cmd = self.command_for(dialect, filename, compressed)
        if cmd is None:
            return text

        try:
            output = await run_command(
                cmd,
                input_data=text.encode("utf-8"),
                timeout=self.timeout,
                cwd=self.project_root,
            )
        except FileNotFoundError as e:
            raise TransformError(filename, f"{cmd[0]} is not installed or not in PATH") from e
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            raise TransformError(filename, f"{cmd[0]} {describe_process_error(e)}") from e

        return output.decode("utf-8")

    async def autoprefix(self, css: str, filename: Optional[Union[str, Path]] = None) -> str:
        """
        Add vendor prefixes through postcss-cli with the autoprefixer plugin

        Browser targets come from the project's browserslist configuration,
        since postcss runs in the project root.

        Raises:
            CollaboratorDegradedError: If postcss is missing or fails
        """
        cmd = ["postcss", "--use", "autoprefixer", "--no-map"]
        try:
            output = await run_command(
                cmd,
                input_data=css.encode("utf-8"),
                timeout=self.timeout,
                cwd=self.project_root,
            )
        except (FileNotFoundError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            raise CollaboratorDegradedError("postcss", describe_process_error(e), filename) from e

        if not output.strip() and css.strip():
            raise CollaboratorDegradedError("postcss", "empty output", filename)
        return output.decode("utf-8")


def combine(chunks: Sequence[str], names: Sequence[str]) -> str:
    """Join compiled files into one bundle, each under a comment naming its source"""
    return "\n\n".join(f"/* {name} */\n{css.strip()}" for name, css in zip(names, chunks)) + "\n"
