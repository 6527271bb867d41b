from __future__ import annotations

import asyncio
import functools
import time
import weakref
from logging import Logger
from typing import Any, Callable, TypeVar

from price_pulse.utils.logger import log_debug, log_warn

T = TypeVar("T")

_DEFAULT_LIMIT = 4
_SEMAPHORES: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Semaphore]" = weakref.WeakKeyDictionary()
_limit = _DEFAULT_LIMIT


def set_thread_limit(limit: int) -> None:
    """Cap concurrent blocking calls dispatched through `to_thread_limited`."""
    global _limit
    if int(limit) < 1:
        raise ValueError("thread limit must be >= 1")
    _limit = int(limit)
    _SEMAPHORES.clear()


def _semaphore() -> asyncio.Semaphore:
    # one semaphore per running loop; asyncio primitives are loop-bound
    loop = asyncio.get_running_loop()
    sem = _SEMAPHORES.get(loop)
    if sem is None:
        sem = asyncio.Semaphore(_limit)
        _SEMAPHORES[loop] = sem
    return sem


async def to_thread_limited(
    fn: Callable[..., T],
    *args: Any,
    logger: Logger,
    op: str,
    timeout_s: float | None = None,
    **kwargs: Any,
) -> T:
    """
    Run a blocking callable in the default executor.

    At most `set_thread_limit(...)` calls run at once per event loop.
    Raises asyncio.TimeoutError if `timeout_s` elapses; the thread itself
    cannot be interrupted and finishes in the background.
    """
    call = functools.partial(fn, *args, **kwargs)
    async with _semaphore():
        started = time.monotonic()
        try:
            if timeout_s is None:
                result = await asyncio.to_thread(call)
            else:
                result = await asyncio.wait_for(asyncio.to_thread(call), timeout=timeout_s)
        except asyncio.TimeoutError:
            log_warn(logger, "io.thread_timeout", op=op, timeout_s=timeout_s)
            raise
        log_debug(
            logger,
            "io.thread_done",
            op=op,
            elapsed_ms=round((time.monotonic() - started) * 1000, 3),
        )
        return result
