"""Bounded-concurrency task scheduler.

Runs zero-argument async tasks from either a finite iterable or a pull-based
generator, keeping at most ``concurrency`` of them in flight at once.

A generator signals the end of work by returning :data:`DONE`. That signal is
terminal: once seen, the generator is never called again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
import inspect
import logging
from typing import Final, TypeAlias, final

from pgsweep.errors import ConfigurationError

logger = logging.getLogger(__name__)


@final
class Exhausted:
    """Type of the terminal :data:`DONE` sentinel."""

    _instance: Exhausted | None = None

    def __new__(cls) -> Exhausted:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DONE"

    def __bool__(self) -> bool:
        return False


DONE: Final = Exhausted()

Task: TypeAlias = Callable[[], Awaitable[None]]
NextTask: TypeAlias = "Task | Exhausted"
TaskGenerator: TypeAlias = Callable[[], "NextTask | Awaitable[NextTask]"]
TaskSource: TypeAlias = "Iterable[Task] | TaskGenerator"


def validate_concurrency(concurrency: object) -> int:
    """Return *concurrency* if it is a positive int, else raise ConfigurationError."""
    if isinstance(concurrency, bool) or not isinstance(concurrency, int):
        raise ConfigurationError(
            f"concurrency must be an integer, got {type(concurrency).__name__}",
            hint="Pass concurrency=1 for strictly sequential execution.",
        )
    if concurrency < 1:
        raise ConfigurationError(
            f"concurrency must be ≥ 1, got {concurrency}",
            hint="This bounds how many tasks (and pooled connections) run at once.",
        )
    return concurrency


def _as_generator(source: TaskSource) -> TaskGenerator:
    if callable(source):
        return source
    if isinstance(source, Iterable):
        it = iter(source)
        return lambda: next(it, DONE)
    raise ConfigurationError(
        f"Unsupported task source: {type(source).__name__}",
        hint="Pass an iterable of tasks or a callable returning a task or DONE.",
    )


async def _pull(generator: TaskGenerator) -> NextTask:
    item = generator()
    if inspect.isawaitable(item):
        item = await item
    if item is DONE:
        return DONE
    if not callable(item):
        raise ConfigurationError(
            f"Task source produced a non-callable {type(item).__name__}",
            hint="Return DONE to stop, not None.",
        )
    return item


async def _invoke(task: Task) -> None:
    await task()


async def run_scheduler(source: TaskSource, concurrency: int) -> None:
    """Run every task from *source* with at most *concurrency* in flight.

    Returns once every dispatched task has settled. The first failure stops
    further dispatch and is re-raised after the in-flight siblings settle;
    siblings are not cancelled. Cancelling the caller cancels and awaits all
    in-flight tasks before the cancellation propagates.
    """
    validate_concurrency(concurrency)
    generator = _as_generator(source)

    inflight: set[asyncio.Task[None]] = set()
    first_error: BaseException | None = None
    exhausted = False
    dispatched = 0

    logger.debug("Scheduler starting concurrency=%d", concurrency)
    try:
        while True:
            while not exhausted and first_error is None and len(inflight) < concurrency:
                try:
                    item = await _pull(generator)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    first_error = exc
                    break
                if item is DONE:
                    exhausted = True
                    break
                inflight.add(asyncio.create_task(_invoke(item)))
                dispatched += 1

            if not inflight:
                break

            done, inflight = await asyncio.wait(
                inflight, return_when=asyncio.FIRST_COMPLETED
            )
            for t in done:
                exc = t.exception() if not t.cancelled() else asyncio.CancelledError()
                if exc is None:
                    continue
                if first_error is None:
                    first_error = exc
                else:
                    logger.warning(
                        "Additional task failure after first error: %s: %s",
                        type(exc).__name__,
                        exc,
                    )
    except asyncio.CancelledError:
        for t in inflight:
            t.cancel()
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)
        raise

    logger.debug(
        "Scheduler finished dispatched=%d failed=%s", dispatched, first_error is not None
    )
    if first_error is not None:
        raise first_error
