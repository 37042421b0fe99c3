"""
Shared state and base class for pipeline stages
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from ..abort import AbortSignal
from ..cache import CacheSet
from ..config import BuildConfig
from ..pipeline import Stage

logger = logging.getLogger(__name__)


@dataclass
class BuildContext:
    """What every stage of one build process shares"""
    config: BuildConfig
    caches: CacheSet
    # stage name -> files written by its latest run
    outputs: Dict[str, List[Path]] = field(default_factory=dict)


class StageProcessor:
    """One asset class's processing step"""

    name = "stage"

    def __init__(self, context: BuildContext):
        self.context = context

    @property
    def config(self) -> BuildConfig:
        return self.context.config

    @property
    def caches(self) -> CacheSet:
        return self.context.caches

    def set_outputs(self, paths: List[Path]) -> None:
        self.context.outputs[self.name] = list(paths)

    async def run(self, signal: AbortSignal) -> Any:
        raise NotImplementedError

    def as_stage(self) -> Stage:
        return Stage(self.name, self.run)
