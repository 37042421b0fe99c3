"""
Kiln CLI Package

Command-line interface for building, watching and serving front-end projects.
"""

__version__ = "0.1.0"
__author__ = "Kiln Developers"

from .main import main

__all__ = ["main"]
