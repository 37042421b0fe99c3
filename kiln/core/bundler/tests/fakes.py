"""
Test doubles shared by the bundler tests
"""

from pathlib import Path
from typing import Any, List, Optional, Union

from ..compiler import TranspileResult
from ..config import BuildConfig, load_config
from ..errors import TransformError


class PassthroughTranspiler:
    """Returns module source unchanged and records what it was asked to transform"""

    def __init__(self, fail_on: Optional[str] = None):
        self.calls: List[Path] = []
        self.fail_on = fail_on

    async def transform(self, source: str, filename: Path) -> TranspileResult:
        self.calls.append(filename)
        if self.fail_on and filename.name == self.fail_on:
            raise TransformError(filename, "Unexpected token")
        return TranspileResult(code=source)


def make_config(project_root: Union[str, Path], **overrides: Any) -> BuildConfig:
    """Development config for a temporary project: no watching, serving or env lookups"""
    settings = {"watch": False, "serve": False, "sourcemap": False}
    settings.update(overrides)
    return load_config(project_root, settings, environ={})


def write(root: Path, relative_path: str, content: Union[str, bytes] = "") -> Path:
    path = root / relative_path
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path
