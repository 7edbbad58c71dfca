"""Batch queue processor: sweep a discrete candidate id list in fixed-size chunks.

Suited to sparse or pre-selected candidates (ids pulled from a work table,
ids matching an arbitrary predicate) where a contiguous range would mostly
scan empty space.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
import logging
import math
from typing import Any

from pgsweep.context import BatchContext, RunContext, run_with_abort
from pgsweep.errors import ConfigurationError
from pgsweep.params import BatchParams, parse_batch_params
from pgsweep.scheduler import DONE, Exhausted, Task, run_scheduler

logger = logging.getLogger(__name__)

BatchFetcher = Callable[[RunContext], Awaitable[Sequence[Any]]]
BatchWork = Callable[[BatchContext[Any]], Awaitable[None]]


class BatchCursor:
    """Explicit cursor over the chunks of a candidate list.

    ``batch_count`` and 1-based ``batch_number`` are fixed by the full list, so
    numbering is stable regardless of completion order or resume window.
    """

    def __init__(
        self,
        items: Sequence[Any],
        batch_size: int,
        context: RunContext,
        processor: BatchWork,
        *,
        first: int = 0,
        last: int | None = None,
    ) -> None:
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be ≥ 1, got {batch_size}")
        self.items = items
        self.batch_size = batch_size
        self.context = context
        self.processor = processor
        self.batch_count = math.ceil(len(items) / batch_size)
        self.index = first
        self.last = self.batch_count if last is None else min(last, self.batch_count)
        self.dispatched = 0
        self._exhausted = False

    def next_batch(self) -> tuple[int, Sequence[Any]] | None:
        """Return ``(batch_number, chunk)`` for the next chunk, or None when finished."""
        if self._exhausted or self.context.stop or self.index >= self.last:
            self._exhausted = True
            return None
        i = self.index
        self.index += 1
        self.dispatched += 1
        chunk = self.items[i * self.batch_size : (i + 1) * self.batch_size]
        return i + 1, chunk

    def __call__(self) -> Task | Exhausted:
        nxt = self.next_batch()
        if nxt is None:
            return DONE
        batch_number, chunk = nxt
        view: BatchContext[Any] = BatchContext(
            batch=chunk,
            batch_number=batch_number,
            batch_count=self.batch_count,
            run=self.context,
        )

        async def _task() -> None:
            logger.debug(
                "Processing batch %d/%d (%d item(s))",
                view.batch_number,
                view.batch_count,
                len(view.batch),
            )
            try:
                await self.processor(view)
            except Exception as exc:
                if not self.context.cancelled_by_abort(exc):
                    raise
                logger.info(
                    "Batch %d/%d cancelled by abort", view.batch_number, view.batch_count
                )

        return _task


async def run_batch_processor(
    batch_fetcher: BatchFetcher | None,
    processor: BatchWork,
    params: BatchParams | Mapping[str, Any],
    *,
    abort_signal: asyncio.Event | None = None,
) -> None:
    """Process a candidate list in ``batch_size`` chunks, ``concurrency`` at a time.

    Args:
        batch_fetcher: Returns the candidate list; skipped when ``params.ids``
            is given. Called at most once.
        processor: Receives a :class:`BatchContext` per chunk.
        params: :class:`BatchParams` or an equivalent mapping.
        abort_signal: Set it to stop dispatching and cancel running queries.
    """
    p = parse_batch_params(params)
    context = RunContext(batch_size=p.batch_size, concurrency=p.concurrency)

    async def _sweep() -> None:
        if p.ids is not None:
            items: Sequence[Any] = p.ids
        else:
            if batch_fetcher is None:
                raise ConfigurationError(
                    "batch_fetcher is required when ids are not given",
                    hint="Pass params ids=[...] or a batch fetcher.",
                )
            try:
                items = await batch_fetcher(context)
            except Exception as exc:
                if not context.cancelled_by_abort(exc):
                    raise
                items = ()
        if context.stop:
            logger.info("Batch sweep aborted before dispatching")
            return
        if not isinstance(items, Sequence):
            items = list(items)

        cursor = BatchCursor(
            items,
            p.batch_size,
            context,
            processor,
            first=p.start or 0,
            last=p.end,
        )
        logger.info(
            "Batch sweep %d item(s) in %d batch(es) batch_size=%d concurrency=%d",
            len(items),
            cursor.batch_count,
            p.batch_size,
            p.concurrency,
        )
        await run_scheduler(cursor, p.concurrency)
        logger.info(
            "Batch sweep %s after %d batch(es)",
            "stopped" if context.stop else "finished",
            cursor.dispatched,
        )

    await run_with_abort(context, _sweep(), abort_signal)
