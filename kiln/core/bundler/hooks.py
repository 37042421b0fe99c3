"""
Build lifecycle hooks

Subclass ``BuildHooks`` and override the phases you care about; every method
is a coroutine and the defaults do nothing. The builder calls each registered
hooks object in registration order.
"""

import logging
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence

if TYPE_CHECKING:
    from .builder import BuildResult
    from .config import BuildConfig
    from .watcher import ChangeBatch

logger = logging.getLogger(__name__)


class BuildHooks:
    """One method per build phase"""

    name = "hooks"

    async def before_build(self, config: "BuildConfig") -> None:
        pass

    async def after_stage(self, stage: str, elapsed: float) -> None:
        pass

    async def after_build(self, result: "BuildResult") -> None:
        pass

    async def after_rebuild(self, batch: "ChangeBatch", stages: Sequence[str]) -> None:
        pass

    async def on_error(self, error: BaseException) -> None:
        pass


class HookDispatcher:
    """Calls a list of hooks objects for each phase"""

    def __init__(self, hooks: Optional[Iterable[BuildHooks]] = None):
        self.hooks: List[BuildHooks] = list(hooks or [])

    def add(self, hooks: BuildHooks) -> None:
        self.hooks.append(hooks)

    async def before_build(self, config: "BuildConfig") -> None:
        for hooks in self.hooks:
            await hooks.before_build(config)

    async def after_stage(self, stage: str, elapsed: float) -> None:
        for hooks in self.hooks:
            await hooks.after_stage(stage, elapsed)

    async def after_build(self, result: "BuildResult") -> None:
        for hooks in self.hooks:
            await hooks.after_build(result)

    async def after_rebuild(self, batch: "ChangeBatch", stages: Sequence[str]) -> None:
        for hooks in self.hooks:
            await hooks.after_rebuild(batch, stages)

    async def on_error(self, error: BaseException) -> None:
        """Failures inside error hooks are logged, not raised"""
        for hooks in self.hooks:
            try:
                await hooks.on_error(error)
            except Exception as e:
                logger.error(f"Error in {hooks.name} on_error hook: {e}")
