"""Run CPU-heavy work (signing) off the event loop.

Each job gets its own single-worker executor that is shut down as soon as
the one reply has been delivered; no worker state survives between jobs.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_isolated(
    fn: Callable[..., T],
    *args: Any,
    cancel: threading.Event | None = None,
) -> T:
    """Run ``fn(*args)`` in a one-shot worker and await its single reply.

    Args:
        fn: Synchronous callable to execute.
        *args: Positional arguments for *fn*.
        cancel: Token checked before the job is dispatched; once the job
            is running it completes and its reply is discarded by the caller.

    Raises:
        asyncio.CancelledError: If *cancel* is set before dispatch.
    """
    if cancel is not None and cancel.is_set():
        msg = f"{getattr(fn, '__name__', 'job')} cancelled before dispatch"
        raise asyncio.CancelledError(msg)

    loop = asyncio.get_running_loop()
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="nos2bch-isolated")
    try:
        return await loop.run_in_executor(executor, fn, *args)
    finally:
        executor.shutdown(wait=False)
        logger.debug("Isolated worker for %s torn down", getattr(fn, "__name__", "job"))
