"""
Cancellation signal shared by all in-flight work of one build generation
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .errors import AbortedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AbortSignal:
    """One-shot cancellation flag for a build generation.

    Every file-system operation and every collaborator call checks the
    signal before and after it suspends. Once aborted a signal stays
    aborted; the builder replaces it with a fresh one for later work.
    """

    def __init__(self):
        self._aborted = False
        self._reason = "Build aborted"
        self._tasks: "set[asyncio.Task]" = set()

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> str:
        return self._reason

    def abort(self, reason: Optional[str] = None) -> None:
        """Abort the signal and cancel every task registered with it"""
        if self._aborted:
            return
        self._aborted = True
        if reason:
            self._reason = reason
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
        logger.debug(f"Abort signal fired: {self._reason}")

    def check(self) -> None:
        """Raise AbortedError if the signal has been aborted"""
        if self._aborted:
            raise AbortedError(self._reason)

    def track(self, task: "asyncio.Task") -> "asyncio.Task":
        """Register a task so that abort() cancels it"""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if self._aborted:
            task.cancel()
        return task

    async def wait_idle(self) -> None:
        """Wait for all tracked tasks to finish"""
        pending = [t for t in self._tasks if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await something under this signal, mapping cancellation to AbortedError"""
        if self._aborted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise AbortedError(self._reason)
        try:
            result = await awaitable
        except asyncio.CancelledError:
            if self._aborted:
                raise AbortedError(self._reason)
            raise
        self.check()
        return result

    async def run_io(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking file-system call in a worker thread under this signal"""
        return await self.guard(asyncio.to_thread(func, *args, **kwargs))


def is_aborted(error: BaseException) -> bool:
    """True for errors that only mean the work was superseded"""
    return isinstance(error, (AbortedError, asyncio.CancelledError))
