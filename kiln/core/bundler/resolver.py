"""
Import specifier extraction and module path resolution
"""

import functools
import logging
import re
from pathlib import Path
from typing import FrozenSet, Sequence, Union

from .constants import INDEX_FILE_NAME, RESOLVE_EXTENSIONS
from .errors import ModuleResolutionError

logger = logging.getLogger(__name__)

# import x from "y" / import {a} from "y" / import * as n from "y" / import "y"
# export {a} from "y" / export * from "y"
STATIC_IMPORT_PATTERN = re.compile(
    r"""(?:import|export)\s*(?:(?:[\w$]+\s*,?\s*)?(?:\{[^}]*\}|\*\s*as\s+[\w$]+|\*)?\s*from\s*)?['"]([^'"\n]+)['"]"""
)
DYNAMIC_IMPORT_PATTERN = re.compile(r"""import\s*\(\s*['"]([^'"\n]+)['"]\s*\)""")
REQUIRE_PATTERN = re.compile(r"""\brequire\s*\(\s*['"]([^'"\n]+)['"]\s*\)""")

IMPORT_PATTERNS = (STATIC_IMPORT_PATTERN, DYNAMIC_IMPORT_PATTERN, REQUIRE_PATTERN)


def is_relative_specifier(specifier: str) -> bool:
    """Local modules are addressed with a path-relative marker"""
    return specifier.startswith(".")


@functools.lru_cache(maxsize=1024)
def extract_imports(source: str) -> FrozenSet[str]:
    """
    Collect the local import specifiers referenced by a piece of source

    Static imports, re-exports, dynamic ``import()`` and CommonJS
    ``require()`` are recognised. Package specifiers are externals and are
    left out.

    Args:
        source: Raw or transpiled source text

    Returns:
        Distinct relative specifiers, unordered
    """
    specifiers = set()
    for pattern in IMPORT_PATTERNS:
        for match in pattern.finditer(source):
            specifiers.add(match.group(1))

    return frozenset(spec for spec in specifiers if is_relative_specifier(spec))


class ModuleResolver:
    """Maps an import specifier plus the importing file's directory to a file"""

    def __init__(self, extensions: Sequence[str] = RESOLVE_EXTENSIONS):
        self.extensions = tuple(extensions)

    def candidates(self, base_dir: Union[str, Path], specifier: str):
        """Yield candidate paths in resolution order"""
        base = Path(base_dir)
        for stem in (base / specifier, base / specifier / INDEX_FILE_NAME):
            for ext in self.extensions:
                yield Path(f"{stem}{ext}") if ext else stem

    def resolve(self, base_dir: Union[str, Path], specifier: str) -> Path:
        """
        Resolve a specifier to an absolute path

        Args:
            base_dir: Directory of the importing file
            specifier: Import specifier as written in source

        Returns:
            Absolute path of the first candidate that exists

        Raises:
            ModuleResolutionError: If no candidate exists
        """
        for candidate in self.candidates(base_dir, specifier):
            if candidate.is_file():
                return candidate.resolve()

        raise ModuleResolutionError(specifier, base_dir)
