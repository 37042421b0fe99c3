"""
Task pipeline

Runs the asset-class stages of a build either concurrently or one after the
other. A stage is never run twice at the same time: asking for a stage that
is already running queues one follow-up run, and every request made while
the stage is busy shares that single follow-up.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .abort import AbortSignal
from .errors import AbortedError, PipelineError

logger = logging.getLogger(__name__)

StageCallback = Callable[[str, float], Awaitable[None]]


@dataclass(frozen=True)
class Stage:
    """A named unit of pipeline work"""
    name: str
    run: Callable[[AbortSignal], Awaitable[Any]]


class TaskPipeline:
    """Schedules stages with per-stage exclusivity"""

    def __init__(self, parallel: bool = True, after_stage: Optional[StageCallback] = None):
        self.parallel = parallel
        self.after_stage = after_stage
        self._active: Set[str] = set()
        self._follow_ups: Dict[str, Tuple[Stage, AbortSignal, "asyncio.Future"]] = {}
        self._background: Set["asyncio.Task"] = set()
        self.runs: Counter = Counter()
        self.coalesced = 0

    def is_running(self, name: str) -> bool:
        return name in self._active

    async def run(self, stages: Sequence[Stage], signal: AbortSignal) -> None:
        """
        Run a set of stages

        Parallel mode is fail-fast: the first stage failure aborts the signal,
        cancels the remaining stages and waits for them to settle before the
        error is raised. Sequential mode stops at the first failure.

        Args:
            stages: Stages to run
            signal: Cancellation signal of the current build generation

        Raises:
            PipelineError: If a stage failed
            AbortedError: If the signal was aborted by someone else
        """
        if not stages:
            return

        if self.parallel:
            await self._run_parallel(stages, signal)
        else:
            await self._run_sequential(stages, signal)

    async def _run_sequential(self, stages: Sequence[Stage], signal: AbortSignal) -> None:
        for stage in stages:
            signal.check()
            try:
                await self.run_stage(stage, signal)
            except AbortedError:
                raise
            except Exception as e:
                logger.error(f"Stage '{stage.name}' failed: {e}")
                raise PipelineError(stage.name, e) from e

    async def _run_parallel(self, stages: Sequence[Stage], signal: AbortSignal) -> None:
        tasks: Dict["asyncio.Task", Stage] = {}
        for stage in stages:
            task = asyncio.ensure_future(self.run_stage(stage, signal))
            tasks[signal.track(task)] = stage

        pending: Set["asyncio.Task"] = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                failed = self._first_failure(done, tasks)
                if failed is None:
                    continue

                stage, error = failed
                if not isinstance(error, AbortedError):
                    logger.error(f"Stage '{stage.name}' failed: {error}")
                    signal.abort(f"Stage '{stage.name}' failed")
                await self._settle(pending)
                pending = set()
                if isinstance(error, AbortedError):
                    raise error
                raise PipelineError(stage.name, error) from error
        except asyncio.CancelledError:
            await self._settle(pending)
            raise

    @staticmethod
    def _first_failure(done: Set["asyncio.Task"], tasks: Dict["asyncio.Task", Stage]):
        """First failed task in stage order, preferring real failures over aborts"""
        failures: List[Tuple[Stage, BaseException]] = []
        for task, stage in tasks.items():
            if task in done and not task.cancelled() and task.exception() is not None:
                failures.append((stage, task.exception()))
        for stage, error in failures:
            if not isinstance(error, AbortedError):
                return stage, error
        return failures[0] if failures else None

    @staticmethod
    async def _settle(tasks: Set["asyncio.Task"]) -> None:
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def run_stage(self, stage: Stage, signal: AbortSignal) -> None:
        """
        Run one stage, or wait for its follow-up run if it is already busy

        Args:
            stage: Stage to run
            signal: Cancellation signal for this request
        """
        if stage.name in self._active:
            return await self._enqueue(stage, signal)

        self._active.add(stage.name)
        await self._own(stage, signal)

    async def _enqueue(self, stage: Stage, signal: AbortSignal) -> None:
        queued = self._follow_ups.get(stage.name)
        if queued is None:
            future = asyncio.get_running_loop().create_future()
            self._follow_ups[stage.name] = (stage, signal, future)
            logger.debug(f"Stage '{stage.name}' is busy, queued a follow-up run")
        else:
            # Later requests share the queued run but bring the newest signal
            future = queued[2]
            self._follow_ups[stage.name] = (stage, signal, future)
            self.coalesced += 1
            logger.debug(f"Stage '{stage.name}' follow-up already queued")
        await future

    async def _own(self, stage: Stage, signal: AbortSignal) -> None:
        """Run a stage the caller has reserved; hands the reservation to a queued follow-up"""
        try:
            await self._execute(stage, signal)
        finally:
            queued = self._follow_ups.pop(stage.name, None)
            if queued is None:
                self._active.discard(stage.name)
            else:
                task = asyncio.ensure_future(self._run_follow_up(*queued))
                self._background.add(task)
                task.add_done_callback(self._background.discard)

    async def _run_follow_up(self, stage: Stage, signal: AbortSignal, future: "asyncio.Future") -> None:
        try:
            await self._own(stage, signal)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(None)

    async def _execute(self, stage: Stage, signal: AbortSignal) -> None:
        signal.check()
        self.runs[stage.name] += 1
        start_time = time.perf_counter()
        logger.debug(f"Stage '{stage.name}' started")

        await stage.run(signal)

        elapsed = time.perf_counter() - start_time
        logger.debug(f"Stage '{stage.name}' finished in {elapsed:.3f}s")
        if self.after_stage is not None:
            await self.after_stage(stage.name, elapsed)

    async def wait_idle(self) -> None:
        """Wait for queued follow-up runs to finish"""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
