from __future__ import annotations

import asyncio
import threading
import time

import pytest

from price_pulse.utils.asyncio import set_thread_limit, to_thread_limited
from price_pulse.utils.logger import get_logger


@pytest.mark.asyncio
async def test_to_thread_limited_returns_result_off_loop() -> None:
    logger = get_logger("tests.utils.asyncio")
    main_thread = threading.get_ident()

    def work(a: int, *, b: int) -> tuple[int, int]:
        return a + b, threading.get_ident()

    total, thread_id = await to_thread_limited(work, 2, b=3, logger=logger, op="add")

    assert total == 5
    assert thread_id != main_thread


@pytest.mark.asyncio
async def test_to_thread_limited_timeout() -> None:
    logger = get_logger("tests.utils.asyncio")

    def slow() -> None:
        time.sleep(0.05)

    with pytest.raises(asyncio.TimeoutError):
        await to_thread_limited(slow, logger=logger, op="slow", timeout_s=0.01)


@pytest.mark.asyncio
async def test_thread_limit_caps_concurrency() -> None:
    logger = get_logger("tests.utils.asyncio")
    set_thread_limit(1)
    active = 0
    peak = 0
    lock = threading.Lock()

    def work() -> None:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1

    await asyncio.gather(*(to_thread_limited(work, logger=logger, op="work") for _ in range(3)))

    assert peak == 1


def test_invalid_thread_limit() -> None:
    with pytest.raises(ValueError):
        set_thread_limit(0)
