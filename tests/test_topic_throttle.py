"""
Topic throttle tests
"""

import asyncio
import pytest
from unittest.mock import AsyncMock

from integrations.discord_sync import TopicThrottle


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestTopicThrottle:

    @pytest.fixture
    def apply(self):
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_first_change_applies_immediately(self, apply):
        throttle = TopicThrottle(apply, cooldown=300)

        assert await throttle.request("1/10 players online") is True

        apply.assert_awaited_once_with("1/10 players online")
        assert throttle.current == "1/10 players online"
        assert throttle.pending is None

    @pytest.mark.asyncio
    async def test_burst_collapses_to_last_value(self, apply):
        throttle = TopicThrottle(apply, cooldown=0.05)
        await throttle.request("W")
        apply.reset_mock()

        for value in ("X", "Y", "Z"):
            await throttle.request(value)

        assert throttle.pending == "Z"
        assert throttle.timer_armed
        apply.assert_not_awaited()

        await asyncio.sleep(0.15)

        apply.assert_awaited_once_with("Z")
        assert throttle.current == "Z"
        assert throttle.pending is None
        assert not throttle.timer_armed

    @pytest.mark.asyncio
    async def test_single_timer_while_pending(self, apply):
        throttle = TopicThrottle(apply, cooldown=10)
        await throttle.request("A")

        await throttle.request("B")
        first_timer = throttle._timer
        await throttle.request("C")

        assert throttle._timer is first_timer
        throttle.cancel()

    @pytest.mark.asyncio
    async def test_change_back_to_current_clears_pending(self, apply):
        throttle = TopicThrottle(apply, cooldown=0.05)
        await throttle.request("A")
        apply.reset_mock()

        await throttle.request("B")
        await throttle.request("A")
        assert throttle.pending is None

        await asyncio.sleep(0.15)
        apply.assert_not_awaited()
        assert throttle.current == "A"

    @pytest.mark.asyncio
    async def test_applies_directly_after_cooldown(self, apply):
        clock = FakeClock()
        throttle = TopicThrottle(apply, cooldown=300, clock=clock)
        await throttle.request("A")

        clock.now += 301
        assert await throttle.request("B") is True
        assert throttle.current == "B"
        assert not throttle.timer_armed

    @pytest.mark.asyncio
    async def test_remaining_cooldown(self, apply):
        clock = FakeClock()
        throttle = TopicThrottle(apply, cooldown=300, clock=clock)
        assert throttle.remaining_cooldown() == 0.0

        await throttle.request("A")
        clock.now += 100
        assert throttle.remaining_cooldown() == pytest.approx(200)

    @pytest.mark.asyncio
    async def test_failed_apply_keeps_current(self, apply):
        apply.side_effect = RuntimeError("missing permission")
        throttle = TopicThrottle(apply, cooldown=300)

        await throttle.request("A")

        assert throttle.current is None
        assert throttle.get_stats()['failed'] == 1

    @pytest.mark.asyncio
    async def test_force_ignores_cooldown(self, apply):
        throttle = TopicThrottle(apply, cooldown=300)
        await throttle.request("A")
        await throttle.request("B")
        assert throttle.timer_armed

        assert await throttle.force(" ", timeout=1.0) is True

        assert throttle.current == " "
        assert not throttle.timer_armed
        apply.assert_awaited_with(" ")

    @pytest.mark.asyncio
    async def test_force_gives_up_after_timeout(self):
        async def slow_apply(value):
            await asyncio.sleep(5)

        throttle = TopicThrottle(slow_apply, cooldown=300)

        assert await throttle.force(" ", timeout=0.05) is False
