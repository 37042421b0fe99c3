"""
Constants and default values for the Kiln bundler
"""

import os

# Directory names
SRC_DIR = "src"
DIST_DIR = "dist"
ASSETS_DIR = "assets"
STATIC_DIR = "static"
PUBLIC_DIR = "public"
NODE_MODULES_DIR = "node_modules"
CONFIG_FILE_NAME = "kiln.config.json"

# Module resolution order
RESOLVE_EXTENSIONS = (".js", ".jsx", ".ts", ".tsx", ".json", "")
INDEX_FILE_NAME = "index"

# File extensions by asset class
SCRIPT_EXTENSIONS = {".js", ".jsx", ".ts", ".tsx"}
STYLE_EXTENSIONS = {".css", ".scss", ".sass", ".less", ".styl"}
MARKUP_EXTENSIONS = {".html"}
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".avif", ".gif"}
RASTER_OPTIMIZE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".avif"}
SVG_EXTENSIONS = {".svg"}
FONT_EXTENSIONS = {".woff", ".woff2", ".ttf", ".eot", ".otf"}
SUBSET_FONT_EXTENSIONS = {".ttf", ".otf"}
ASSET_EXTENSIONS = IMAGE_EXTENSIONS | SVG_EXTENSIONS | FONT_EXTENSIONS

# Assets consumed by fixed URLs keep their original basename
UNHASHED_ASSET_EXTENSIONS = IMAGE_EXTENSIONS | SVG_EXTENSIONS | FONT_EXTENSIONS | {".ico"}

COMPRESSIBLE_EXTENSIONS = {".js", ".css", ".html"}
PRECOMPRESSED_SUFFIXES = (".gz", ".br")

# Build configuration
BUILD_FORMATS = {"iife", "esm"}
SOURCEMAP_MODES = {"inline", "external"}

# Environment variable defaults
DEFAULT_SWC_TIMEOUT = int(os.getenv("KILN_SWC_TIMEOUT", "30"))
DEFAULT_SWC_COMMAND = os.getenv("KILN_SWC_CMD", "swc")
DEFAULT_TOOL_TIMEOUT = int(os.getenv("KILN_TOOL_TIMEOUT", "60"))
DEFAULT_DEV_PORT = int(os.getenv("KILN_DEV_PORT", "3000"))
DEFAULT_DEV_HOST = os.getenv("KILN_DEV_HOST", "0.0.0.0")

# Concurrency limits
ASSET_BATCH_SIZE = 10
COMPRESS_BATCH_SIZE = 5

# Watch settings (seconds)
DEFAULT_DEBOUNCE = 0.1

# Hashes embedded in output filenames
HASH_LENGTH = 8

# Characters kept when subsetting fonts
FONT_SUBSET_TEXT = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"

# Logging format
LOG_FORMAT = "[kiln] %(levelname)s: %(message)s"
