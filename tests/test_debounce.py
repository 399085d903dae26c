from __future__ import annotations

import asyncio

import pytest

from cryptoflash.utils.debounce import DebounceState, Debouncer


class Counter:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> None:
        self.calls += 1


class TestDebouncer:
    @pytest.mark.asyncio
    async def test_state_machine(self):
        action = Counter()
        debouncer = Debouncer(action, 0.01)
        assert debouncer.state is DebounceState.IDLE

        debouncer.schedule()
        assert debouncer.state is DebounceState.PENDING
        assert debouncer.deadline is not None

        await debouncer.wait()
        assert debouncer.state is DebounceState.FIRED
        assert debouncer.deadline is None
        assert action.calls == 1

    @pytest.mark.asyncio
    async def test_reschedule_coalesces(self):
        action = Counter()
        debouncer = Debouncer(action, 0.05)

        debouncer.schedule()
        await asyncio.sleep(0.01)
        first_deadline = debouncer.deadline
        debouncer.schedule()
        debouncer.schedule()

        assert debouncer.deadline > first_deadline
        await debouncer.wait()
        assert action.calls == 1

    @pytest.mark.asyncio
    async def test_cancel_returns_to_idle(self):
        action = Counter()
        debouncer = Debouncer(action, 0.01)

        debouncer.schedule()
        debouncer.cancel()
        await asyncio.sleep(0.03)

        assert debouncer.state is DebounceState.IDLE
        assert action.calls == 0

    @pytest.mark.asyncio
    async def test_flush_fires_immediately(self):
        action = Counter()
        debouncer = Debouncer(action, 10)

        debouncer.schedule()
        await debouncer.flush()

        assert action.calls == 1
        assert debouncer.state is DebounceState.FIRED

    @pytest.mark.asyncio
    async def test_failing_action_is_logged_not_raised(self):
        async def boom() -> None:
            raise RuntimeError("boom")

        debouncer = Debouncer(boom, 0.01)
        debouncer.schedule()
        await debouncer.wait()

        assert debouncer.state is DebounceState.FIRED
