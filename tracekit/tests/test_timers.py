"""Tests for the named timer registry on a real event loop."""

from __future__ import annotations

import asyncio

import pytest

from tracekit.sync.timers import TimerRegistry


class TestTimerRegistry:
    @pytest.mark.asyncio
    async def test_one_shot_fires_once(self) -> None:
        timers = TimerRegistry()
        fired: list[str] = []

        timers.arm("once", 0.01, lambda: fired.append("x"))
        assert timers.is_armed("once")
        await asyncio.sleep(0.05)

        assert fired == ["x"]
        assert not timers.is_armed("once")

    @pytest.mark.asyncio
    async def test_rearming_replaces_previous_handle(self) -> None:
        timers = TimerRegistry()
        fired: list[str] = []

        timers.arm("debounce", 0.01, lambda: fired.append("first"))
        timers.arm("debounce", 0.02, lambda: fired.append("second"))
        await asyncio.sleep(0.06)

        assert fired == ["second"]

    @pytest.mark.asyncio
    async def test_cancel(self) -> None:
        timers = TimerRegistry()
        fired: list[str] = []

        timers.arm("t", 0.01, lambda: fired.append("x"))
        assert timers.cancel("t") is True
        assert timers.cancel("t") is False
        await asyncio.sleep(0.03)

        assert fired == []

    @pytest.mark.asyncio
    async def test_repeating_until_cancelled(self) -> None:
        timers = TimerRegistry()
        ticks: list[int] = []

        timers.arm_repeating("beat", 0.01, lambda: ticks.append(1))
        await asyncio.sleep(0.055)
        timers.cancel("beat")
        seen = len(ticks)
        await asyncio.sleep(0.03)

        assert seen >= 2
        assert len(ticks) == seen

    @pytest.mark.asyncio
    async def test_coroutine_callbacks_are_tracked(self) -> None:
        timers = TimerRegistry()
        done = asyncio.Event()

        async def work() -> None:
            await asyncio.sleep(0.01)
            done.set()

        timers.arm("async", 0, work)
        await asyncio.sleep(0.005)
        await timers.drain()

        assert done.is_set()

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_registry(self) -> None:
        timers = TimerRegistry()
        fired: list[str] = []

        def boom() -> None:
            raise RuntimeError("callback failed")

        timers.arm("bad", 0, boom)
        timers.arm("good", 0.01, lambda: fired.append("ok"))
        await asyncio.sleep(0.03)

        assert fired == ["ok"]

    def test_non_positive_interval_rejected(self) -> None:
        with pytest.raises(ValueError):
            TimerRegistry().arm_repeating("x", 0, lambda: None)

    @pytest.mark.asyncio
    async def test_cancel_all(self) -> None:
        timers = TimerRegistry()
        timers.arm("a", 1, lambda: None)
        timers.arm_repeating("b", 1, lambda: None)
        assert timers.names == ["a", "b"]

        timers.cancel_all()
        assert timers.names == []
