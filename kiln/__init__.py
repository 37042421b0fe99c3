"""
Kiln - front-end build tool

Kiln combines:
- SWC-powered script bundling into a single hashed file
- Sass, Less and Stylus compilation into one stylesheet
- Image, SVG and font optimization through their native CLIs
- A watch loop that rebuilds only what a change touches
"""

from .core import bundler as Bundler
from .core.bundler import Builder, BuildConfig, BuildHooks, BuildResult, load_config

__version__ = "0.1.0"
__author__ = "Kiln Developers"
__description__ = "Front-end build tool with SWC bundling, asset pipelines and watch mode"

__all__ = [
    "Bundler",
    "Builder",
    "BuildConfig",
    "BuildHooks",
    "BuildResult",
    "load_config",
]
