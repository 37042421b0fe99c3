"""
Exception types raised by the bundler
"""

from pathlib import Path
from typing import Optional, Union


class BundlerError(Exception):
    """Base class for all bundler errors"""


class ConfigError(BundlerError):
    """Invalid build configuration"""


class ModuleResolutionError(BundlerError):
    """An import specifier could not be mapped to a file on disk"""

    def __init__(self, specifier: str, base_dir: Union[str, Path]):
        self.specifier = specifier
        self.base_dir = Path(base_dir)
        super().__init__(f"Cannot resolve module '{specifier}' from '{base_dir}'")


class TransformError(BundlerError):
    """A transpiler or compiler rejected its input"""

    def __init__(self, path: Union[str, Path], message: str):
        self.path = Path(path)
        self.message = message
        super().__init__(f"Failed to transform {path}: {message}")


class BuildError(BundlerError):
    """The dependency graph for an entry could not be built"""

    def __init__(self, path: Union[str, Path], cause: BaseException):
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"Error processing {path}: {cause}")


class AbortedError(BundlerError):
    """Work was cancelled because a newer build superseded it"""


class CollaboratorDegradedError(BundlerError):
    """An optional optimisation step failed and the original bytes should be used"""

    def __init__(self, tool: str, message: str, path: Optional[Union[str, Path]] = None):
        self.tool = tool
        self.path = Path(path) if path is not None else None
        self.message = message
        where = f" for {path}" if path is not None else ""
        super().__init__(f"{tool} failed{where}: {message}")


class PipelineError(BundlerError):
    """A pipeline stage failed"""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {cause}")
