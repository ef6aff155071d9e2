import asyncio

import pytest

from trade_sync.pacing import RequestPacer


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(round(delay, 6))
        self.now += delay


@pytest.mark.asyncio
async def test_first_request_is_not_delayed() -> None:
    clock = FakeClock()
    pacer = RequestPacer(0.5, sleep=clock.sleep, clock=clock)

    await pacer.wait()

    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_consecutive_requests_are_spaced() -> None:
    clock = FakeClock()
    pacer = RequestPacer(0.5, sleep=clock.sleep, clock=clock)

    await pacer.wait()
    clock.now += 0.2
    await pacer.wait()
    clock.now += 1.0
    await pacer.wait()

    assert clock.sleeps == [0.3]


@pytest.mark.asyncio
async def test_concurrent_waiters_queue_up() -> None:
    clock = FakeClock()
    pacer = RequestPacer(0.25, sleep=clock.sleep, clock=clock)

    await asyncio.gather(*(pacer.wait() for _ in range(4)))

    assert clock.sleeps == [0.25, 0.25, 0.25]


@pytest.mark.asyncio
async def test_zero_interval_never_sleeps() -> None:
    clock = FakeClock()
    pacer = RequestPacer(0, sleep=clock.sleep, clock=clock)

    for _ in range(3):
        await pacer.wait()

    assert clock.sleeps == []
    assert RequestPacer(-1).interval == 0.0
