from __future__ import annotations

import asyncio

from marker_editor.shifting import ParentLockRegistry


def test_hold_locks_each_parent_once_in_order() -> None:
    registry = ParentLockRegistry()

    async def _scenario():
        async with registry.hold([12, 10, 12]) as held:
            return held, [registry.locked(item) for item in (10, 11, 12)]

    held, states = asyncio.run(_scenario())

    assert held == [10, 12]
    assert states == [True, False, True]
    assert not registry.locked(10)
    assert not registry.locked(12)


def test_overlapping_holds_are_serialised() -> None:
    registry = ParentLockRegistry()
    events = []

    async def _shift(name: str, parent_ids, delay: float) -> None:
        async with registry.hold(parent_ids):
            events.append(f"{name} start")
            await asyncio.sleep(delay)
            events.append(f"{name} end")

    async def _scenario() -> None:
        first = asyncio.create_task(_shift("first", [10, 11], 0.05))
        await asyncio.sleep(0)
        await asyncio.gather(first, _shift("second", [11, 12], 0))

    asyncio.run(_scenario())

    assert events == ["first start", "first end", "second start", "second end"]


def test_disjoint_holds_run_concurrently() -> None:
    registry = ParentLockRegistry()
    events = []

    async def _shift(name: str, parent_id: int) -> None:
        async with registry.hold([parent_id]):
            events.append(f"{name} start")
            await asyncio.sleep(0.01)
            events.append(f"{name} end")

    async def _scenario() -> None:
        await asyncio.gather(_shift("first", 10), _shift("second", 20))

    asyncio.run(_scenario())

    assert events[:2] == ["first start", "second start"]


def test_locks_are_released_after_errors() -> None:
    registry = ParentLockRegistry()

    async def _scenario() -> None:
        try:
            async with registry.hold([10]):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        async with registry.hold([10]):
            pass

    asyncio.run(_scenario())

    assert not registry.locked(10)


def test_idle_locks_are_dropped() -> None:
    registry = ParentLockRegistry()
    sizes = []

    async def _shift(parent_ids, delay: float) -> None:
        async with registry.hold(parent_ids):
            await asyncio.sleep(delay)
            sizes.append(len(registry))

    async def _scenario() -> None:
        first = asyncio.create_task(_shift([10, 11], 0.02))
        await asyncio.sleep(0)
        await asyncio.gather(first, _shift([11, 12], 0))

    asyncio.run(_scenario())

    assert sizes == [3, 2]
    assert len(registry) == 0
    assert not registry.locked(11)
