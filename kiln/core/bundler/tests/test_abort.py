"""
Tests for the abort signal and hook dispatch
"""

import asyncio
import pytest
from unittest.mock import AsyncMock

from ..abort import AbortSignal, is_aborted
from ..errors import AbortedError
from ..hooks import BuildHooks, HookDispatcher


class TestAbortSignal:

    def test_check(self):
        signal = AbortSignal()
        signal.check()

        signal.abort("Superseded")

        with pytest.raises(AbortedError) as exc_info:
            signal.check()
        assert "Superseded" in str(exc_info.value)

    def test_abort_cancels_tracked_tasks(self):
        async def scenario():
            signal = AbortSignal()
            task = signal.track(asyncio.create_task(asyncio.sleep(10)))
            await asyncio.sleep(0)
            signal.abort()
            await signal.wait_idle()
            return task

        assert asyncio.run(scenario()).cancelled()

    def test_guard_maps_cancellation(self):
        async def scenario():
            signal = AbortSignal()
            guarded = asyncio.create_task(signal.guard(asyncio.sleep(10)))
            signal.track(guarded)
            await asyncio.sleep(0)
            signal.abort()
            with pytest.raises(AbortedError):
                await guarded

        asyncio.run(scenario())

    def test_guard_after_abort_closes_coroutine(self):
        async def scenario():
            signal = AbortSignal()
            signal.abort()
            coro = asyncio.sleep(0)
            with pytest.raises(AbortedError):
                await signal.guard(coro)
            assert coro.cr_frame is None

        asyncio.run(scenario())

    def test_run_io(self):
        assert asyncio.run(AbortSignal().run_io(sum, [1, 2, 3])) == 6

    def test_is_aborted(self):
        assert is_aborted(AbortedError("x"))
        assert is_aborted(asyncio.CancelledError())
        assert not is_aborted(ValueError("x"))


class TestHookDispatcher:

    def test_hooks_called_in_order(self):
        calls = []

        class Recorder(BuildHooks):
            def __init__(self, name):
                self.name = name

            async def after_stage(self, stage, elapsed):
                calls.append((self.name, stage))

        dispatcher = HookDispatcher([Recorder("first")])
        dispatcher.add(Recorder("second"))

        asyncio.run(dispatcher.after_stage("scripts", 0.1))

        assert calls == [("first", "scripts"), ("second", "scripts")]

    def test_on_error_failures_are_logged(self, caplog):
        broken = BuildHooks()
        broken.on_error = AsyncMock(side_effect=RuntimeError("hook broke"))
        following = BuildHooks()
        following.on_error = AsyncMock()

        with caplog.at_level("ERROR"):
            asyncio.run(HookDispatcher([broken, following]).on_error(ValueError("build broke")))

        following.on_error.assert_awaited_once()
        assert "hook broke" in caplog.text
