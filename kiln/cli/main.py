"""Kiln CLI - build, watch and serve a front-end project.

Usage::

    kiln build [options]
    kiln dev [options]
    kiln clean

Options::

    --root DIR            Project root (default: current directory)
    --entry FILE          Script entry point
    --out-dir DIR         Output directory
    --format FORMAT       Bundle format: iife or esm
    --sourcemap MODE      inline, external or none
    --production          Production defaults (minify, compress, no cache)
    --no-cache            Disable build caches
    --sequential          Run stages one after the other
    --port PORT           Development server port (dev only)
    --verbose / -v        Enable verbose logging
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from kiln.core.bundler import Builder, BundlerError, ConfigError, load_config
from kiln.core.bundler.constants import BUILD_FORMATS, SOURCEMAP_MODES
from kiln.core.bundler.utils import setup_logging

logger = logging.getLogger(__name__)


def _add_build_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--entry", default=None, help="Script entry point")
    parser.add_argument("--out-dir", dest="out_dir", default=None, help="Output directory")
    parser.add_argument(
        "--format",
        choices=sorted(BUILD_FORMATS),
        default=None,
        help="Bundle format",
    )
    parser.add_argument(
        "--sourcemap",
        choices=sorted(SOURCEMAP_MODES) + ["none"],
        default=None,
        help="Source map mode",
    )
    parser.add_argument(
        "--production",
        action="store_true",
        default=None,
        help="Use production defaults: minify, compress and no cache",
    )
    parser.add_argument(
        "--no-cache",
        dest="cache",
        action="store_false",
        default=None,
        help="Disable build caches",
    )
    parser.add_argument(
        "--sequential",
        dest="parallel",
        action="store_false",
        default=None,
        help="Run pipeline stages one after the other",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="kiln",
        description="Kiln - bundle scripts, compile styles and optimize assets.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=Path("."),
        help="Project root directory",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False,
        help="Enable verbose logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_cmd = subparsers.add_parser("build", help="Build the project once")
    _add_build_options(build_cmd)
    build_cmd.add_argument(
        "--watch",
        action="store_true",
        default=False,
        help="Keep watching for changes after the build",
    )

    dev_cmd = subparsers.add_parser("dev", help="Build, watch and serve")
    _add_build_options(dev_cmd)
    dev_cmd.add_argument("--port", type=int, default=None, help="Development server port")
    dev_cmd.add_argument("--host", default=None, help="Development server host")

    subparsers.add_parser("clean", help="Remove the output directory")
    return parser


def collect_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Configuration overrides from parsed arguments; unset options are left out"""
    overrides: Dict[str, Any] = {}
    for name in ("entry", "out_dir", "format", "production", "cache", "parallel"):
        value = getattr(args, name, None)
        if value is not None:
            overrides[name] = value

    sourcemap = getattr(args, "sourcemap", None)
    if sourcemap is not None:
        overrides["sourcemap"] = False if sourcemap == "none" else sourcemap

    if args.command == "build":
        overrides["watch"] = args.watch
        overrides["serve"] = False
    elif args.command == "dev":
        overrides["watch"] = True
        overrides["serve"] = True
        server = {k: v for k, v in (("port", args.port), ("host", args.host)) if v is not None}
        if server:
            overrides["server"] = server
    return overrides


def install_signal_handlers(builder: Builder) -> None:
    """Stop the builder on SIGINT/SIGTERM"""
    loop = asyncio.get_running_loop()

    def request_stop() -> None:
        asyncio.ensure_future(builder.stop())

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, request_stop)
        except (NotImplementedError, RuntimeError):
            signal.signal(signum, lambda s, f: loop.call_soon_threadsafe(request_stop))


async def run_builder(builder: Builder) -> bool:
    install_signal_handlers(builder)
    result = await builder.run()
    # A watch session ends through stop(), which is not a failure
    return result.success or builder.config.watch


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point.  Returns exit code (0=success, 1=failure)."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    project = Path(args.root).resolve()
    if not project.is_dir():
        print(f"Error: Project root is not a directory: {project}", file=sys.stderr)
        return 1

    try:
        if args.command == "clean":
            Builder(load_config(project, {"watch": False, "serve": False})).clean()
            return 0

        config = load_config(project, collect_overrides(args))
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (BundlerError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1

    builder = Builder(config, verbose=args.verbose)
    try:
        success = asyncio.run(run_builder(builder))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
