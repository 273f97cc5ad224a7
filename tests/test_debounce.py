from __future__ import annotations

import asyncio

from bot.utils.debounce import Debouncer


def test_newest_schedule_replaces_pending_one() -> None:
    fired: list[str] = []

    async def scenario() -> None:
        debouncer = Debouncer("test")
        debouncer.schedule(1, 0.02, lambda: fired.append("first"))
        debouncer.schedule(1, 0.02, lambda: fired.append("second"))
        assert len(debouncer) == 1
        await asyncio.sleep(0.08)
        assert not debouncer.is_pending(1)

    asyncio.run(scenario())
    assert fired == ["second"]


def test_cancel_prevents_the_action() -> None:
    fired: list[int] = []

    async def scenario() -> None:
        debouncer = Debouncer("test")
        debouncer.schedule("a", 0.02, lambda: fired.append(1))
        assert debouncer.cancel("a") is True
        assert debouncer.cancel("a") is False
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert fired == []


def test_keys_are_independent_and_async_actions_are_awaited() -> None:
    fired: list[int] = []

    async def record(value: int) -> None:
        await asyncio.sleep(0)
        fired.append(value)

    async def scenario() -> None:
        debouncer = Debouncer("test")
        debouncer.schedule(1, 0.01, lambda: record(1))
        debouncer.schedule(2, 0.01, lambda: record(2))
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert sorted(fired) == [1, 2]


def test_failing_action_is_logged_and_does_not_break_later_schedules(caplog) -> None:
    fired: list[int] = []

    def explode() -> None:
        raise ValueError("nope")

    async def scenario() -> None:
        debouncer = Debouncer("test")
        debouncer.schedule(1, 0.0, explode)
        await asyncio.sleep(0.02)
        debouncer.schedule(1, 0.0, lambda: fired.append(1))
        await asyncio.sleep(0.02)

    asyncio.run(scenario())
    assert fired == [1]
    assert "test action for 1 failed" in caplog.text


def test_flush_runs_pending_actions_immediately() -> None:
    fired: list[int] = []

    async def scenario() -> int:
        debouncer = Debouncer("test")
        debouncer.schedule(1, 60, lambda: fired.append(1))
        debouncer.schedule(2, 60, lambda: fired.append(2))
        flushed = await debouncer.flush()
        assert len(debouncer) == 0
        return flushed

    assert asyncio.run(scenario()) == 2
    assert sorted(fired) == [1, 2]


def test_cancel_all_drops_every_pending_action() -> None:
    fired: list[int] = []

    async def scenario() -> int:
        debouncer = Debouncer("test")
        for key in range(3):
            debouncer.schedule(key, 0.01, lambda: fired.append(1))
        cancelled = debouncer.cancel_all()
        await asyncio.sleep(0.03)
        return cancelled

    assert asyncio.run(scenario()) == 3
    assert fired == []
