"""
Bundle generation

Two output strategies turn a list of module records into one artifact:

* ``ClosureBundle`` - a self-invoking function holding a private module
  registry with a lazy, memoizing ``require``. This is the reference
  semantics and handles circular imports the way CommonJS does.
* ``EsmBundle`` - top-level bindings, one per module, plus an import map.
  Best-effort only: modules are emitted dependencies-first, so a synchronous
  import cycle reads a binding before it is initialised.
"""

import base64
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .config import BuildConfig
from .fingerprint import clean_old_hashes, content_hash, hashed_filename
from .graph import ModuleRecord
from .resolver import REQUIRE_PATTERN
from .utils import safe_mkdir, write_file_atomic

logger = logging.getLogger(__name__)

SCRIPT_SUFFIX = re.compile(r"\.(js|ts)x?$")
IDENTIFIER_UNSAFE = re.compile(r"[^A-Za-z0-9_$]")

CLOSURE_PRELUDE = """(function() {
  'use strict';

  var hostRequire = typeof require === 'function' ? require : null;
  var modules = {};

  function __kiln_require(id) {
    if (!Object.prototype.hasOwnProperty.call(modules, id)) {
      if (hostRequire && id.charAt(0) !== '.') return hostRequire(id);
      throw new Error('Module not found: ' + id);
    }
    var entry = modules[id];
    if (entry.cache) return entry.cache.exports;
    var module = { exports: {} };
    entry.cache = module;
    entry.factory.call(module.exports, module.exports, __kiln_require, module);
    return module.exports;
  }

"""


@dataclass
class BundleOutput:
    """Generated bundle, before it is written"""
    code: str
    source_map: Optional[dict] = None
    import_map: Optional[dict] = None


@dataclass
class WrittenBundle:
    """Files produced by write_bundle"""
    file_path: Path
    map_path: Optional[Path] = None
    import_map_path: Optional[Path] = None


def normalize_module_id(file_path: Union[str, Path], base_dir: Union[str, Path]) -> str:
    """
    Module identifier: path relative to the entry directory, forward slashes,
    script extension stripped

    Example:
        >>> normalize_module_id("/app/src/lib/util.ts", "/app/src")
        './lib/util'
    """
    relative = os.path.relpath(str(file_path), str(base_dir)).replace("\\", "/")
    relative = SCRIPT_SUFFIX.sub("", relative)
    return relative if relative.startswith("../") else f"./{relative}"


def _rewrite_requires(record: ModuleRecord, replace) -> str:
    """Apply ``replace(target_path)`` to every local require() in a module"""

    def substitute(match: "re.Match") -> str:
        target = record.imports.get(match.group(1))
        if target is None:
            return match.group(0)
        return replace(target)

    return REQUIRE_PATTERN.sub(substitute, record.code)


def _indent(code: str, prefix: str) -> str:
    return "\n".join(f"{prefix}{line}" if line else line for line in code.splitlines())


def _entry_map(modules: Sequence[ModuleRecord], entry: Path) -> Optional[dict]:
    for record in modules:
        if record.path == entry:
            return record.source_map
    return None


class ClosureBundle:
    """Self-executing closure with a private module registry"""

    kind = "iife"

    def generate(self, modules: Sequence[ModuleRecord], entry: Union[str, Path]) -> BundleOutput:
        entry = Path(entry).resolve()
        base_dir = entry.parent

        parts = [CLOSURE_PRELUDE]
        for record in modules:
            module_id = normalize_module_id(record.path, base_dir)
            code = _rewrite_requires(
                record,
                lambda target: f"require({json.dumps(normalize_module_id(target, base_dir))})",
            )
            parts.append(f"  // Module: {module_id}\n")
            parts.append(f"  modules[{json.dumps(module_id)}] = {{\n")
            parts.append("    factory: function(exports, require, module) {\n")
            parts.append(_indent(code, "      ") + "\n")
            parts.append("    }\n  };\n\n")

        entry_id = normalize_module_id(entry, base_dir)
        parts.append("  // Entry point\n")
        parts.append(f"  __kiln_require({json.dumps(entry_id)});\n")
        parts.append("})();\n")

        return BundleOutput(code="".join(parts), source_map=_entry_map(modules, entry))


class EsmBundle:
    """Module-per-binding output with an import map"""

    kind = "esm"

    def _ordered(self, modules: Sequence[ModuleRecord], entry: Path) -> List[ModuleRecord]:
        """Dependencies before dependents; warns when a cycle makes that impossible"""
        by_path = {record.path: record for record in modules}
        ordered: List[ModuleRecord] = []
        state: Dict[Path, str] = {}
        cyclic = False

        def visit(path: Path) -> None:
            nonlocal cyclic
            if state.get(path) == "done":
                return
            if state.get(path) == "active":
                cyclic = True
                return
            state[path] = "active"
            for dependency in by_path[path].dependencies:
                if dependency in by_path:
                    visit(dependency)
            state[path] = "done"
            ordered.append(by_path[path])

        if entry in by_path:
            visit(entry)
        for record in modules:
            visit(record.path)

        if cyclic:
            logger.warning(
                "ESM output does not support circular imports; "
                "a module in the cycle will see an uninitialised binding. Use format 'iife'."
            )
        return ordered

    def generate(self, modules: Sequence[ModuleRecord], entry: Union[str, Path]) -> BundleOutput:
        entry = Path(entry).resolve()
        base_dir = entry.parent
        ordered = self._ordered(modules, entry)

        bindings: Dict[Path, str] = {}
        for index, record in enumerate(ordered):
            slug = IDENTIFIER_UNSAFE.sub("_", normalize_module_id(record.path, base_dir).lstrip("./"))
            bindings[record.path] = f"__kiln{index}_{slug}"

        import_map: Dict[str, Dict[str, str]] = {"imports": {}}
        parts = []
        for record in ordered:
            module_id = normalize_module_id(record.path, base_dir)
            binding = bindings[record.path]
            code = _rewrite_requires(record, lambda target: bindings.get(target, "undefined"))

            parts.append(f"// {module_id}\n")
            parts.append(f"const {binding} = (() => {{\n")
            parts.append("  const module = { exports: {} };\n")
            parts.append("  const exports = module.exports;\n")
            parts.append(_indent(code, "  ") + "\n")
            parts.append("  return module.exports;\n")
            parts.append("})();\n\n")

            import_map["imports"][module_id] = f"./{entry.stem}.js#{binding}"

        parts.append("// Entry point\n")
        parts.append(f"export default {bindings[entry]};\n")

        return BundleOutput(
            code="".join(parts),
            source_map=_entry_map(modules, entry),
            import_map=import_map,
        )


BundleStrategy = Union[ClosureBundle, EsmBundle]


def select_strategy(fmt: str) -> BundleStrategy:
    """Pick the generator for a configured output format"""
    if fmt == "esm":
        return EsmBundle()
    return ClosureBundle()


def write_bundle(config: BuildConfig, output: BundleOutput, out_file: Union[str, Path]) -> WrittenBundle:
    """
    Write a bundle under a content-hashed name

    Earlier hashed versions of the same bundle (and their maps) are removed
    first so that stale artifacts do not accumulate.

    Args:
        config: Build configuration (source map mode)
        output: Generated bundle
        out_file: Unhashed output path, e.g. ``dist/main.js``

    Returns:
        Paths of the files that were written
    """
    out_file = Path(out_file)
    directory = out_file.parent
    file_name = hashed_filename(out_file, output.code)
    file_path = directory / file_name

    clean_old_hashes(directory, out_file.stem, out_file.suffix)
    safe_mkdir(directory)

    final_code = output.code
    map_path = None
    if output.source_map:
        if config.sourcemap == "inline":
            encoded = base64.b64encode(json.dumps(output.source_map).encode("utf-8")).decode("ascii")
            final_code += f"\n//# sourceMappingURL=data:application/json;base64,{encoded}"
        elif config.sourcemap == "external":
            map_path = directory / f"{file_name}.map"
            write_file_atomic(map_path, json.dumps(output.source_map, indent=2))
            final_code += f"\n//# sourceMappingURL={map_path.name}"

    write_file_atomic(file_path, final_code)

    import_map_path = None
    if output.import_map:
        clean_old_hashes(directory, "import-map", ".json")
        serialized = json.dumps(output.import_map, indent=2)
        import_map_path = directory / f"import-map.{content_hash(serialized)}.json"
        write_file_atomic(import_map_path, serialized)

    logger.debug(f"Wrote bundle {file_path.name}")
    return WrittenBundle(file_path=file_path, map_path=map_path, import_map_path=import_map_path)
