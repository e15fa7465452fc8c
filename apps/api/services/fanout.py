"""Settle-all join barrier over independent named coroutines."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskOutcome:
    key: str
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None
    elapsed_ms: int = 0

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__


async def _timed(coro: Awaitable[Any]) -> tuple[Any, int]:
    started = time.perf_counter()
    value = await coro
    return value, int((time.perf_counter() - started) * 1000)


async def settle_all(
    tasks: Mapping[str, Awaitable[Any]],
    timeout: Optional[float] = None,
) -> List[TaskOutcome]:
    """
    Run every awaitable concurrently and wait until all of them settle.

    A failing task never cancels its siblings. When `timeout` is set and
    elapses, tasks still running are cancelled and reported as failed with
    a TimeoutError. Outcomes come back in the input order.
    """
    started = time.perf_counter()
    running: Dict[str, asyncio.Task] = {
        key: asyncio.ensure_future(_timed(coro)) for key, coro in tasks.items()
    }
    if not running:
        return []

    wait_timeout = timeout if timeout and timeout > 0 else None
    try:
        _, pending = await asyncio.wait(running.values(), timeout=wait_timeout)
    except asyncio.CancelledError:
        for task in running.values():
            task.cancel()
        raise

    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    outcomes: List[TaskOutcome] = []
    for key, task in running.items():
        if task in pending:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            logger.warning("Task %s did not settle within %.1fs; treated as failed", key, timeout or 0)
            outcomes.append(
                TaskOutcome(
                    key=key,
                    ok=False,
                    error=asyncio.TimeoutError(f"did not settle within {timeout}s"),
                    elapsed_ms=elapsed_ms,
                )
            )
            continue
        if task.cancelled():
            outcomes.append(TaskOutcome(key=key, ok=False, error=asyncio.CancelledError(), elapsed_ms=0))
            continue
        exc = task.exception()
        if exc is not None:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            outcomes.append(TaskOutcome(key=key, ok=False, error=exc, elapsed_ms=elapsed_ms))
            continue
        value, elapsed_ms = task.result()
        outcomes.append(TaskOutcome(key=key, ok=True, value=value, elapsed_ms=elapsed_ms))
    return outcomes
