"""Per-run state: stop flag, registered cancel handles, and job parameters.

A :class:`RunContext` is created by each processor run and discarded when the
run ends. Every query started through it registers its ``cancel`` handle; an
abort flips ``stop`` and fires all handles once.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pgsweep.errors import is_cancellation
from pgsweep.query import CancellableQuery, Params, execute

if TYPE_CHECKING:
    from pgsweep.query import ConnectionSource

logger = logging.getLogger(__name__)

CancelFn = Callable[[], Awaitable[None]]
T = TypeVar("T")


@dataclass
class RunContext:
    """Mutable state shared by every task of one processor run."""

    batch_size: int
    concurrency: int
    start: int | None = None
    end: int | None = None
    after: datetime | None = None
    before: datetime | None = None
    cancel_fns: list[CancelFn] = field(default_factory=list)
    stop: bool = False
    _fired: int = field(default=0, repr=False)

    def register(self, cancel_fn: CancelFn) -> None:
        """Track a started query's cancel handle."""
        self.cancel_fns.append(cancel_fn)

    def query(
        self, pool: ConnectionSource, sql: Any, params: Params = None
    ) -> CancellableQuery:
        """Create a query whose cancel handle is registered when it starts."""
        return execute(pool, sql, params, context=self)

    def cancelled_by_abort(self, exc: BaseException) -> bool:
        """True when *exc* is a query cancellation caused by aborting this run."""
        return self.stop and is_cancellation(exc)

    async def abort(self) -> None:
        """Stop dispatching new work and cancel every registered query.

        Handles registered since a previous abort are fired too; each handle is
        invoked at most once. A failing handle never prevents the others.
        """
        first_abort = not self.stop
        self.stop = True
        pending = self.cancel_fns[self._fired :]
        self._fired = len(self.cancel_fns)
        if first_abort:
            logger.info("Run aborted; cancelling %d registered query handle(s)", len(pending))
        if not pending:
            return

        results = await asyncio.gather(
            *(_call(fn) for fn in pending), return_exceptions=True
        )
        for res in results:
            if isinstance(res, Exception):
                logger.warning("Cancel handle failed: %s: %s", type(res).__name__, res)

    def watch(self, signal: asyncio.Event) -> asyncio.Task[None]:
        """Abort this run once *signal* is set (e.g. the caller disconnected)."""

        async def _wait() -> None:
            await signal.wait()
            await self.abort()

        return asyncio.create_task(_wait())


async def _call(fn: CancelFn) -> None:
    await fn()


class _TaskView:
    run: RunContext

    @property
    def cancel_fns(self) -> list[CancelFn]:
        return self.run.cancel_fns

    @property
    def stopped(self) -> bool:
        return self.run.stop

    def query(
        self, pool: ConnectionSource, sql: Any, params: Params = None
    ) -> CancellableQuery:
        return self.run.query(pool, sql, params)


@dataclass(frozen=True)
class RangeContext(_TaskView):
    """What a range processor closure sees: one inclusive sub-range."""

    start: int
    end: int
    run: RunContext

    @property
    def after(self) -> datetime | None:
        return self.run.after

    @property
    def before(self) -> datetime | None:
        return self.run.before


@dataclass(frozen=True)
class BatchContext(_TaskView, Generic[T]):
    """What a batch processor closure sees: one chunk and its 1-based number."""

    batch: Sequence[T]
    batch_number: int
    batch_count: int
    run: RunContext


async def run_with_abort(
    context: RunContext,
    work: Awaitable[None],
    signal: asyncio.Event | None,
) -> None:
    """Await *work*, aborting *context* on *signal* or on caller cancellation."""
    watcher = context.watch(signal) if signal is not None else None
    try:
        await work
    except asyncio.CancelledError:
        await asyncio.shield(context.abort())
        raise
    finally:
        if watcher is not None:
            if signal is not None and signal.is_set():
                # Let the cancellation sweep finish.
                await watcher
            else:
                watcher.cancel()
                with suppress(asyncio.CancelledError):
                    await watcher
