"""
Build configuration

The configuration is resolved once at startup into an immutable
``BuildConfig`` and passed by reference to every component.
Precedence: built-in defaults < ``kiln.config.json`` < explicit overrides.
"""

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .constants import (
    ASSETS_DIR, BUILD_FORMATS, CONFIG_FILE_NAME, DEFAULT_DEBOUNCE,
    DEFAULT_DEV_HOST, DEFAULT_DEV_PORT, DEFAULT_SWC_COMMAND, DEFAULT_SWC_TIMEOUT,
    DIST_DIR, PUBLIC_DIR, SOURCEMAP_MODES, SRC_DIR, STATIC_DIR,
)
from .errors import ConfigError
from .utils import load_json_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CssOptions:
    include: Tuple[str, ...] = ("src/**/*.{css,scss,sass,less,styl}",)
    exclude: Tuple[str, ...] = ()
    autoprefix: bool = False


@dataclass(frozen=True)
class MinifyOptions:
    js: bool = False
    css: bool = False
    html: bool = False


@dataclass(frozen=True)
class ImageOptions:
    formats: Tuple[str, ...] = ("webp", "avif")
    quality: int = 80
    reencode: bool = False


@dataclass(frozen=True)
class FontOptions:
    subset: bool = False


@dataclass(frozen=True)
class ServerOptions:
    host: str = DEFAULT_DEV_HOST
    port: int = DEFAULT_DEV_PORT


@dataclass(frozen=True)
class BuildConfig:
    """Resolved, read-only build configuration"""
    project_root: Path
    entry: Path
    out_dir: Path
    outfile: Optional[Path] = None
    src_dir: Path = Path(SRC_DIR)
    assets_dir: str = ASSETS_DIR
    static_dir: Path = Path(STATIC_DIR)
    public_dir: Path = Path(PUBLIC_DIR)
    format: str = "iife"
    sourcemap: Optional[str] = "external"
    target: str = "es2022"
    external: Tuple[str, ...] = ()
    production: bool = False
    cache: bool = True
    parallel: bool = True
    watch: bool = False
    serve: bool = False
    compress: bool = False
    debounce: float = DEFAULT_DEBOUNCE
    swc_command: str = DEFAULT_SWC_COMMAND
    swc_timeout: int = DEFAULT_SWC_TIMEOUT
    css: CssOptions = field(default_factory=CssOptions)
    minify: MinifyOptions = field(default_factory=MinifyOptions)
    image: ImageOptions = field(default_factory=ImageOptions)
    fonts: FontOptions = field(default_factory=FontOptions)
    server: ServerOptions = field(default_factory=ServerOptions)

    @property
    def script_output(self) -> Path:
        """Unhashed path of the script bundle"""
        if self.outfile is not None:
            return self.outfile
        return self.out_dir / f"{self.entry.stem}.js"

    @property
    def assets_src_dir(self) -> Path:
        return self.src_dir / ASSETS_DIR

    @property
    def assets_out_dir(self) -> Path:
        return self.out_dir / self.assets_dir


def default_settings(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Built-in defaults, switched by NODE_ENV and CI like most front-end tools

    Args:
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Nested settings dictionary
    """
    environ = os.environ if environ is None else environ
    production = environ.get("NODE_ENV") == "production"
    is_ci = environ.get("CI") == "true"
    cache_default = environ.get("KILN_CACHE", "").lower() not in ("0", "false", "no")

    return {
        "entry": "src/main.js",
        "out_dir": DIST_DIR,
        "outfile": None,
        "src_dir": SRC_DIR,
        "assets_dir": ASSETS_DIR,
        "static_dir": STATIC_DIR,
        "public_dir": PUBLIC_DIR,
        "format": "iife",
        "sourcemap": None if production else "external",
        "target": "es2022",
        "external": [],
        "production": production,
        "cache": cache_default and not production,
        "parallel": True,
        "watch": not production and not is_ci,
        "serve": not production and not is_ci,
        "compress": production,
        "debounce": DEFAULT_DEBOUNCE,
        "swc_command": DEFAULT_SWC_COMMAND,
        "swc_timeout": DEFAULT_SWC_TIMEOUT,
        "css": {"include": list(CssOptions.include), "exclude": [], "autoprefix": production},
        "minify": {"js": production, "css": production, "html": production},
        "image": {"formats": ["webp", "avif"] if production else [], "reencode": production},
        "fonts": {"subset": production},
        "server": {},
    }


def _deep_merge(base: Dict[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _resolve(root: Path, value: Union[str, Path]) -> Path:
    path = Path(value)
    return path if path.is_absolute() else (root / path).resolve()


def _section(cls, values: Mapping[str, Any], name: str):
    known = set(cls.__dataclass_fields__)
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown {name} option(s): {', '.join(sorted(unknown))}")
    converted = {
        key: tuple(value) if isinstance(value, list) else value
        for key, value in values.items()
    }
    return cls(**converted)


def validate_settings(settings: Mapping[str, Any]) -> None:
    """
    Reject settings that cannot produce a build

    Raises:
        ConfigError: On the first invalid value
    """
    if not settings.get("entry"):
        raise ConfigError("Entry point is required")
    if not settings.get("out_dir") and not settings.get("outfile"):
        raise ConfigError("Either outfile or out_dir must be specified")
    if settings.get("format") not in BUILD_FORMATS:
        raise ConfigError(
            f"Unknown format '{settings.get('format')}', expected one of {sorted(BUILD_FORMATS)}"
        )
    sourcemap = settings.get("sourcemap")
    if sourcemap not in (None, False) and sourcemap not in SOURCEMAP_MODES:
        raise ConfigError(
            f"Unknown sourcemap mode '{sourcemap}', expected one of {sorted(SOURCEMAP_MODES)}"
        )
    if float(settings.get("debounce", 0)) < 0:
        raise ConfigError("debounce must not be negative")


def load_config(
    project_root: Union[str, Path] = ".",
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BuildConfig:
    """
    Resolve the build configuration for a project

    Args:
        project_root: Project directory; relative paths are resolved against it
        overrides: Settings that take precedence over the config file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Immutable BuildConfig

    Raises:
        ConfigError: If the merged settings are invalid
    """
    root = Path(project_root).resolve()
    production = (overrides or {}).get("production")
    if production is not None:
        # An explicit production flag selects the matching defaults
        environ = dict(os.environ if environ is None else environ)
        environ["NODE_ENV"] = "production" if production else "development"
    settings = default_settings(environ)

    config_file = root / CONFIG_FILE_NAME
    file_settings = load_json_file(config_file)
    if file_settings:
        logger.debug(f"Loaded configuration from {config_file}")
        settings = _deep_merge(settings, file_settings)

    if overrides:
        settings = _deep_merge(settings, {k: v for k, v in overrides.items() if v is not None})

    validate_settings(settings)

    top_level = {
        "css", "minify", "image", "fonts", "server",
    } | set(BuildConfig.__dataclass_fields__)
    unknown = set(settings) - top_level
    if unknown:
        raise ConfigError(f"Unknown option(s): {', '.join(sorted(unknown))}")

    outfile = settings.get("outfile")
    config = BuildConfig(
        project_root=root,
        entry=_resolve(root, settings["entry"]),
        out_dir=_resolve(root, settings["out_dir"]),
        outfile=_resolve(root, outfile) if outfile else None,
        src_dir=_resolve(root, settings["src_dir"]),
        assets_dir=settings["assets_dir"],
        static_dir=_resolve(root, settings["static_dir"]),
        public_dir=_resolve(root, settings["public_dir"]),
        format=settings["format"],
        sourcemap=settings["sourcemap"] or None,
        target=settings["target"],
        external=tuple(settings["external"]),
        production=bool(settings["production"]),
        cache=bool(settings["cache"]),
        parallel=bool(settings["parallel"]),
        watch=bool(settings["watch"]),
        serve=bool(settings["serve"]),
        compress=bool(settings["compress"]),
        debounce=float(settings["debounce"]),
        swc_command=settings["swc_command"],
        swc_timeout=int(settings["swc_timeout"]),
        css=_section(CssOptions, settings["css"], "css"),
        minify=_section(MinifyOptions, settings["minify"], "minify"),
        image=_section(ImageOptions, settings["image"], "image"),
        fonts=_section(FontOptions, settings["fonts"], "fonts"),
        server=_section(ServerOptions, settings["server"], "server"),
    )

    if config.outfile and settings.get("out_dir") != DIST_DIR:
        logger.warning("Both outfile and out_dir specified - using outfile for scripts")

    return config
