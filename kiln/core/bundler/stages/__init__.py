"""
Asset-class pipeline stages
"""

from .assets import AssetStage
from .base import BuildContext, StageProcessor
from .markup import MarkupStage
from .scripts import ScriptStage
from .static_files import StaticStage
from .styles import StyleStage

__all__ = [
    "AssetStage",
    "BuildContext",
    "MarkupStage",
    "ScriptStage",
    "StageProcessor",
    "StaticStage",
    "StyleStage",
]
