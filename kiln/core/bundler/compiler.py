"""
SWC transpiler integration

Each module is transpiled on its own by the SWC CLI into CommonJS so that the
bundle generator can wire modules together through ``require``.
"""

import asyncio
import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .config import BuildConfig
from .errors import TransformError
from .utils import describe_process_error, run_command

logger = logging.getLogger(__name__)

SOURCE_MAP_COMMENT = re.compile(r"^\s*//[#@] sourceMappingURL=.*$", re.MULTILINE)

INSTALL_HINT = (
    "SWC is not installed or not available in PATH. "
    "Install it with `npm install -g @swc/cli @swc/core` "
    "or point KILN_SWC_CMD at your SWC binary."
)


@dataclass
class TranspileResult:
    """Output of one transpiler invocation"""
    code: str
    map: Optional[Dict[str, Any]] = None


class Transpiler(Protocol):
    """Source text in, compiled CommonJS plus source map out"""

    async def transform(self, source: str, filename: Path) -> TranspileResult:
        ...


def find_swc_command(configured: Optional[str] = None) -> str:
    """
    Pick the SWC executable

    Order: explicit setting, KILN_SWC_CMD, ``swc`` on PATH, bare ``swc``.
    """
    if configured and configured != "swc":
        return configured
    return os.getenv("KILN_SWC_CMD") or shutil.which("swc") or "swc"


def read_swc_output(output_file: Path, filename: Path) -> TranspileResult:
    """
    Collect SWC's output file and its sibling ``.map``, if any

    The trailing ``sourceMappingURL`` comment is dropped; the map's sources
    are pointed at the original module path.

    Raises:
        TransformError: If SWC did not write the output file
    """
    if not output_file.exists():
        raise TransformError(filename, "SWC compilation did not produce output file")

    code = SOURCE_MAP_COMMENT.sub("", output_file.read_text(encoding="utf-8")).rstrip() + "\n"
    map_file = output_file.with_name(f"{output_file.name}.map")
    source_map = None
    if map_file.exists():
        source_map = json.loads(map_file.read_text(encoding="utf-8"))
        source_map["sources"] = [str(filename)]
    return TranspileResult(code=code, map=source_map)


class SWCTranspiler:
    """Transpiles single modules with the SWC CLI"""

    def __init__(self, config: BuildConfig):
        self.config = config
        self.command = find_swc_command(config.swc_command)
        self.timeout = config.swc_timeout
        self._stats = {"transforms": 0, "failures": 0}

    def get_swc_config(self, filename: Path) -> dict:
        """Get SWC configuration for one module, keyed off its extension"""
        suffix = filename.suffix.lower()
        if suffix in (".ts", ".tsx"):
            parser = {"syntax": "typescript", "tsx": suffix == ".tsx", "dynamicImport": True}
        else:
            parser = {"syntax": "ecmascript", "jsx": suffix == ".jsx", "dynamicImport": True}

        return {
            "jsc": {
                "parser": parser,
                "target": self.config.target,
                "transform": {
                    "optimizer": {"simplify": True}
                },
                "minify": {"compress": True, "mangle": True} if self.config.minify.js else None,
            },
            "module": {
                "type": "commonjs"
            },
            "minify": self.config.minify.js,
            "sourceMaps": bool(self.config.sourcemap),
        }

    async def transform(self, source: str, filename: Path) -> TranspileResult:
        """
        Transpile a module

        Args:
            source: Module source text
            filename: Path of the module, used for parser selection and maps

        Returns:
            Compiled code and optional source map

        Raises:
            TransformError: If SWC is missing or rejects the input
        """
        swc_config = self.get_swc_config(filename)
        if swc_config["jsc"]["minify"] is None:
            del swc_config["jsc"]["minify"]

        with tempfile.TemporaryDirectory(prefix="kiln-swc-") as temp:
            temp_dir = Path(temp)
            input_file = temp_dir / filename.name
            output_file = temp_dir / "out" / f"{filename.stem}.js"
            config_file = temp_dir / ".swcrc"

            await asyncio.to_thread(input_file.write_text, source, encoding="utf-8")
            await asyncio.to_thread(
                config_file.write_text, json.dumps(swc_config, indent=2), encoding="utf-8"
            )

            cmd = [
                self.command,
                str(input_file),
                "-o", str(output_file),
                "--config-file", str(config_file),
                "--no-swcrc",
            ]
            if swc_config["sourceMaps"]:
                cmd += ["--source-maps", "true"]

            try:
                await run_command(cmd, timeout=self.timeout, cwd=self.config.project_root)
            except FileNotFoundError as e:
                self._stats["failures"] += 1
                raise TransformError(filename, INSTALL_HINT) from e
            except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
                self._stats["failures"] += 1
                raise TransformError(filename, f"SWC {describe_process_error(e)}") from e

            result = await asyncio.to_thread(read_swc_output, output_file, filename)

        self._stats["transforms"] += 1
        logger.debug(f"Transpiled {filename.name}")
        return result

    def get_stats(self) -> Dict[str, Any]:
        return {"command": self.command, **self._stats}
