from __future__ import annotations

import logging
import typing as tp

import anyio
import anyio.abc

logger = logging.getLogger("swrproxy.background")

__all__ = (
    "BackgroundScheduler",
    "ImmediateScheduler",
    "TaskGroupScheduler",
)

BackgroundWork = tp.Callable[..., tp.Awaitable[tp.Any]]


@tp.runtime_checkable
class BackgroundScheduler(tp.Protocol):
    """
    Registers work that must keep running after the response has been sent.

    The caller never awaits the outcome. Implementations are responsible for
    keeping the work alive and for containing its failures.
    """

    def schedule(self, func: BackgroundWork, *args: tp.Any) -> None: ...


async def _run_contained(func: BackgroundWork, *args: tp.Any) -> None:
    try:
        await func(*args)
    except Exception:
        logger.warning("Background task %s failed", getattr(func, "__qualname__", func), exc_info=True)


class TaskGroupScheduler:
    """
    Runs background work in an anyio task group owned by the hosting boundary.

    The task group outlives individual requests, so work scheduled while
    answering one request keeps running after that response is sent. Leaving
    the task group waits for everything still in flight.

    Example:
        ```python
        async with anyio.create_task_group() as tg:
            scheduler = TaskGroupScheduler(tg)
            cache = AsyncSWRCache(request_sender=sender, scheduler=scheduler)
            ...
        ```
    """

    def __init__(self, task_group: anyio.abc.TaskGroup) -> None:
        self._task_group = task_group

    def schedule(self, func: BackgroundWork, *args: tp.Any) -> None:
        self._task_group.start_soon(_run_contained, func, *args)


class ImmediateScheduler:
    """
    Collects background work and runs it only when asked to.

    Useful in tests and scripts that want to observe the state before and
    after the background work completes.
    """

    def __init__(self) -> None:
        self._pending: tp.List[tp.Tuple[BackgroundWork, tp.Tuple[tp.Any, ...]]] = []

    def schedule(self, func: BackgroundWork, *args: tp.Any) -> None:
        self._pending.append((func, args))

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def run_pending(self) -> int:
        """Run every collected task, including those scheduled meanwhile. Returns how many ran."""
        count = 0
        while self._pending:
            func, args = self._pending.pop(0)
            await _run_contained(func, *args)
            count += 1
        return count
