"""
Build orchestration

The ``Builder`` owns everything one build process shares: the resolved
configuration, the asset-class caches, the module graph, the task pipeline
and the current abort signal. A full build runs the producer stages
(static, styles, scripts, assets) and then the markup stage, which needs the
hashed names the producers wrote. In watch mode the change coalescer calls
``rebuild`` with the stages a batch of changes touches.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .abort import AbortSignal
from .cache import CacheSet
from .compiler import SWCTranspiler, Transpiler
from .compression import compress_outputs
from .config import BuildConfig
from .devserver import DevServer
from .errors import AbortedError, BundlerError
from .graph import DependencyGraph, GraphBuilder
from .hooks import BuildHooks, HookDispatcher
from .pipeline import TaskPipeline
from .report import analyze_outputs, log_report
from .stages import (
    AssetStage, BuildContext, MarkupStage, ScriptStage, StageProcessor, StaticStage, StyleStage,
)
from .styles import StyleCompiler
from .utils import safe_mkdir, safe_rmdir
from .watcher import (
    STAGE_ASSETS, STAGE_MARKUP, STAGE_SCRIPTS, STAGE_STATIC, STAGE_STYLES,
    ChangeBatch, ChangeCoalescer, FileWatcher,
)

logger = logging.getLogger(__name__)

ALL_STAGES = (STAGE_STATIC, STAGE_STYLES, STAGE_SCRIPTS, STAGE_ASSETS, STAGE_MARKUP)


@dataclass
class BuildResult:
    """Outcome of one full build"""
    success: bool
    elapsed: float
    outputs: Dict[str, List[Path]] = field(default_factory=dict)
    error: Optional[BaseException] = None


class Builder:
    """Coordinates stages, caches, watching and serving for one project"""

    def __init__(
        self,
        config: BuildConfig,
        hooks: Optional[Iterable[BuildHooks]] = None,
        transpiler: Optional[Transpiler] = None,
        style_compiler: Optional[StyleCompiler] = None,
        verbose: bool = False,
    ):
        self.config = config
        self.verbose = verbose
        self.hooks = HookDispatcher(hooks)
        self.caches = CacheSet(enabled=config.cache)
        self.graph = DependencyGraph()
        self.transpiler = transpiler or SWCTranspiler(config)
        self.graph_builder = GraphBuilder(config, self.transpiler, self.graph)
        self.context = BuildContext(config, self.caches)

        self.stages: Dict[str, StageProcessor] = {
            STAGE_STATIC: StaticStage(self.context),
            STAGE_STYLES: StyleStage(self.context, style_compiler),
            STAGE_SCRIPTS: ScriptStage(self.context, self.graph_builder),
            STAGE_ASSETS: AssetStage(self.context),
            STAGE_MARKUP: MarkupStage(self.context),
        }
        self.pipeline = TaskPipeline(parallel=config.parallel, after_stage=self.hooks.after_stage)
        self.signal = AbortSignal()
        self.coalescer = ChangeCoalescer(config, self.rebuild, self.caches)
        self.watcher: Optional[FileWatcher] = None
        self.server: Optional[DevServer] = None

        self.builds = 0
        self.rebuilds = 0
        self._stop_event: Optional[asyncio.Event] = None
        self._stopping = False

    def current_signal(self) -> AbortSignal:
        """The signal for new work; an aborted generation is replaced"""
        if self.signal.aborted:
            self.signal = AbortSignal()
        return self.signal

    def clean(self) -> None:
        """Remove the output directory and forget every cached artifact"""
        safe_rmdir(self.config.out_dir)
        safe_mkdir(self.config.assets_out_dir)
        self.caches.clear()
        logger.info(f"Cleaned {self.config.out_dir}")

    async def run_stages(self, names: Sequence[str], signal: AbortSignal) -> None:
        """
        Run the named stages: producers first, markup after them

        Args:
            names: Stage names to run
            signal: Cancellation signal of the current generation
        """
        producers = [self.stages[name].as_stage() for name in ALL_STAGES if name in names and name != STAGE_MARKUP]
        await self.pipeline.run(producers, signal)
        if STAGE_MARKUP in names:
            await self.pipeline.run([self.stages[STAGE_MARKUP].as_stage()], signal)

    def script_and_style_outputs(self) -> List[Path]:
        outputs = self.context.outputs
        return list(outputs.get(STAGE_SCRIPTS, [])) + list(outputs.get(STAGE_STYLES, []))

    async def build(self, clean: Optional[bool] = None) -> BuildResult:
        """
        Run a full build

        The output directory is cleaned before the first build of this
        process, or whenever ``clean`` is true; later builds reuse the caches.

        Args:
            clean: Force (True) or skip (False) cleaning the output directory

        Returns:
            BuildResult; failures are reported in it rather than raised
        """
        start_time = time.perf_counter()
        signal = self.current_signal()
        should_clean = self.builds == 0 if clean is None else clean

        try:
            await self.hooks.before_build(self.config)
            if should_clean:
                await signal.run_io(self.clean)

            await self.run_stages(ALL_STAGES, signal)
            if self.config.compress:
                await compress_outputs(self.config.out_dir, signal)
        except AbortedError as e:
            logger.debug(f"Build aborted: {e}")
            return BuildResult(False, time.perf_counter() - start_time, error=e)
        except (BundlerError, OSError) as e:
            elapsed = time.perf_counter() - start_time
            logger.error(f"Build failed after {elapsed:.2f}s: {e}")
            await self.hooks.on_error(e)
            return BuildResult(False, elapsed, error=e)

        self.builds += 1
        elapsed = time.perf_counter() - start_time
        result = BuildResult(True, elapsed, {k: list(v) for k, v in self.context.outputs.items()})
        logger.info(f"Build completed in {elapsed:.2f}s")

        if self.config.production:
            analysis = await asyncio.to_thread(
                analyze_outputs, self.config.out_dir, self.script_and_style_outputs()
            )
            log_report(analysis)

        await self.hooks.after_build(result)
        return result

    async def rebuild(self, batch: ChangeBatch) -> None:
        """
        Rebuild the stages a batch of changes touches

        Raises:
            PipelineError: If a stage failed; the coalescer logs it and keeps watching
            AbortedError: If the build process is stopping
        """
        stages = batch.stages()
        if not stages:
            return

        start_time = time.perf_counter()
        signal = self.current_signal()
        try:
            await self.run_stages(stages, signal)
            if self.config.compress:
                await compress_outputs(self.config.out_dir, signal)
        except AbortedError:
            raise
        except BundlerError as e:
            await self.hooks.on_error(e)
            raise

        self.rebuilds += 1
        logger.info(f"Rebuilt {', '.join(stages)} in {time.perf_counter() - start_time:.2f}s")
        await self.hooks.after_rebuild(batch, stages)

    async def watch(self) -> None:
        """Start forwarding file-system changes to the coalescer"""
        if self.watcher is None:
            self.watcher = FileWatcher(self.config, self.coalescer.notify)
        await self.watcher.start()

    async def serve(self) -> None:
        """Start the development server for the output directory"""
        if self.server is None:
            self.server = DevServer(self.config, verbose=self.verbose)
        await self.server.start()

    async def run(self) -> BuildResult:
        """
        Build once, then watch and serve as configured until ``stop()``

        A failed initial build does not prevent watching, so fixing the
        source triggers a rebuild. A ``stop()`` that arrives during the
        initial build ends the session before anything is started.
        """
        self._stopping = False
        result = await self.build()
        if self._stopping or not (self.config.watch or self.config.serve):
            return result

        self._stop_event = asyncio.Event()
        if self.config.watch:
            await self.watch()
        if self.config.serve:
            await self.serve()

        await self._stop_event.wait()
        return result

    async def stop(self) -> None:
        """
        Stop watching, cancel in-flight work and wait for it to settle

        Afterwards a fresh abort signal is in place and every cache is
        empty, so the builder can be used again.
        """
        logger.info("Stopping build process...")
        self._stopping = True
        if self.watcher is not None:
            await self.watcher.stop()
            self.watcher = None

        self.signal.abort("Build process stopping")
        await self.coalescer.close()
        await self.signal.wait_idle()
        await self.pipeline.wait_idle()

        if self.server is not None:
            await self.server.stop()
            self.server = None

        self.signal = AbortSignal()
        self.caches.clear()
        self.graph.clear()

        if self._stop_event is not None:
            self._stop_event.set()
        logger.info("Build process stopped")

    def get_stats(self) -> Dict[str, Any]:
        """Counters for caches, pipeline runs and the module graph"""
        return {
            "builds": self.builds,
            "rebuilds": self.rebuilds,
            "rebuild_passes": self.coalescer.passes,
            "stage_runs": dict(self.pipeline.runs),
            "coalesced_stage_runs": self.pipeline.coalesced,
            "modules": len(self.graph),
            "graph": dict(self.graph_builder.stats),
            "caches": self.caches.get_stats(),
        }
