"""
Kiln Core Bundler - Python-driven front-end build pipeline

Bundles scripts through SWC, compiles stylesheets, optimizes assets and
rewrites HTML to load the hashed outputs. Watch mode rebuilds only the
asset classes a change touches.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union
import asyncio
import logging

from .builder import Builder, BuildResult
from .config import BuildConfig, load_config
from .errors import (
    AbortedError, BuildError, BundlerError, CollaboratorDegradedError, ConfigError,
    ModuleResolutionError, PipelineError, TransformError,
)
from .hooks import BuildHooks

logger = logging.getLogger(__name__)

__version__ = "0.1.0"
__all__ = [
    "get_builder", "build", "dev", "clean",
    "Builder", "BuildResult", "BuildConfig", "BuildHooks", "load_config",
    "BundlerError", "ConfigError", "ModuleResolutionError", "TransformError",
    "BuildError", "AbortedError", "CollaboratorDegradedError", "PipelineError",
]


def get_builder(
    project_root: Union[str, Path] = ".",
    overrides: Optional[Mapping[str, Any]] = None,
    hooks: Optional[Iterable[BuildHooks]] = None,
    verbose: bool = False,
) -> Builder:
    """
    Get a configured builder instance

    Args:
        project_root: Path to the project root directory
        overrides: Settings that take precedence over kiln.config.json
        hooks: Lifecycle hooks to register
        verbose: Forwarded to the development server's access log

    Returns:
        Configured Builder instance
    """
    config = load_config(project_root, overrides)
    return Builder(config, hooks=hooks, verbose=verbose)


def build(project_root: Union[str, Path] = ".", **overrides: Any) -> BuildResult:
    """
    Build the project once, without watching or serving

    Args:
        project_root: Path to the project root directory
        **overrides: Configuration overrides

    Returns:
        Build result
    """
    builder = get_builder(project_root, {**overrides, "watch": False, "serve": False})
    return asyncio.run(builder.build())


def dev(project_root: Union[str, Path] = ".", port: Optional[int] = None, **overrides: Any) -> None:
    """
    Build, then watch and serve until interrupted

    Args:
        project_root: Path to the project root directory
        port: Development server port
        **overrides: Configuration overrides
    """
    settings: Dict[str, Any] = {**overrides, "watch": True, "serve": True}
    if port is not None:
        settings["server"] = {"port": port}
    builder = get_builder(project_root, settings)
    try:
        asyncio.run(builder.run())
    except KeyboardInterrupt:
        logger.info("Development server stopped")


def clean(project_root: Union[str, Path] = ".") -> None:
    """
    Remove build output

    Args:
        project_root: Path to the project root directory
    """
    config = load_config(project_root)
    Builder(config).clean()
