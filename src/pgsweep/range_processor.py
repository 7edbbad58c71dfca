"""Range processor: sweep a numeric id interval in fixed-size sub-ranges.

Partitions are inclusive on both ends (``id BETWEEN start AND end``) and
adjacent partitions share their seam id, so processors must tolerate a row
being visited twice.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
import logging
from typing import Any

from pgsweep.context import RangeContext, RunContext, run_with_abort
from pgsweep.errors import ConfigurationError
from pgsweep.params import RangeParams, parse_range_params
from pgsweep.scheduler import DONE, Exhausted, Task, run_scheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Range:
    """Inclusive id interval; ``start <= end``."""

    start: int
    end: int

    def __post_init__(self) -> None:
        for name in ("start", "end"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(
                    f"Range.{name} must be an integer, got {value!r}",
                    hint="Range fetchers should return integer id bounds.",
                )
        if self.start > self.end:
            raise ConfigurationError(
                f"Range start ({self.start}) must be <= end ({self.end})",
            )

    @classmethod
    def coerce(cls, value: Range | Mapping[str, Any] | tuple[int, int]) -> Range:
        """Accept a Range, a ``{"start", "end"}`` mapping or a 2-tuple."""
        if isinstance(value, Range):
            return value
        if isinstance(value, Mapping):
            try:
                return cls(value["start"], value["end"])
            except KeyError as e:
                raise ConfigurationError(
                    f"Range mapping is missing {e.args[0]!r}",
                    hint="Return {'start': ..., 'end': ...} from the range fetcher.",
                ) from None
        if isinstance(value, tuple) and len(value) == 2:
            return cls(*value)
        raise ConfigurationError(
            f"Cannot interpret {type(value).__name__} as a Range",
            hint="Return Range(start, end), a mapping or a (start, end) tuple.",
        )


RangeFetcher = Callable[[RunContext], Awaitable["Range | Mapping[str, Any] | tuple[int, int]"]]
RangeWork = Callable[[RangeContext], Awaitable[None]]


class RangeCursor:
    """Explicit cursor over ``[start, end]`` handing out sub-range tasks.

    Calling the cursor returns the next task, or ``DONE`` once the run is
    stopped or the cursor has reached ``end``. ``DONE`` is sticky.
    """

    def __init__(
        self, bounds: Range, batch_size: int, context: RunContext, processor: RangeWork
    ) -> None:
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be ≥ 1, got {batch_size}")
        self.bounds = bounds
        self.batch_size = batch_size
        self.context = context
        self.processor = processor
        self.cursor = bounds.start
        self.dispatched = 0
        self._exhausted = False

    def next_range(self) -> Range | None:
        """Advance and return the next sub-range, or None when finished."""
        if self._exhausted or self.context.stop or self.cursor >= self.bounds.end:
            self._exhausted = True
            return None
        sub_start = self.cursor
        sub_end = min(sub_start + self.batch_size, self.bounds.end)
        self.cursor = sub_end
        self.dispatched += 1
        return Range(sub_start, sub_end)

    def __call__(self) -> Task | Exhausted:
        sub = self.next_range()
        if sub is None:
            return DONE
        view = RangeContext(start=sub.start, end=sub.end, run=self.context)

        async def _task() -> None:
            logger.debug("Processing range %d-%d", view.start, view.end)
            try:
                await self.processor(view)
            except Exception as exc:
                if not self.context.cancelled_by_abort(exc):
                    raise
                logger.info("Range %d-%d cancelled by abort", view.start, view.end)

        return _task


async def run_range_processor(
    range_fetcher: RangeFetcher | None,
    processor: RangeWork,
    params: RangeParams | Mapping[str, Any],
    *,
    abort_signal: asyncio.Event | None = None,
) -> None:
    """Sweep ``[start, end]`` in ``batch_size`` steps, ``concurrency`` at a time.

    The run produces ``ceil((end - start) / batch_size)`` sub-ranges, so a
    range with ``start == end`` dispatches nothing. In particular a table
    whose min and max id coincide (a single row), or a resume whose
    ``start`` equals the max id, processes no rows; handle that id yourself
    or pass ``end = max_id + 1``.

    Args:
        range_fetcher: Resolves the bounds (usually min/max id) when ``start``
            or ``end`` is not given in *params*. Called at most once.
        processor: Receives a :class:`RangeContext` per sub-range; run its
            statements through ``ctx.query(...)`` so they can be cancelled.
        params: :class:`RangeParams` or an equivalent mapping.
        abort_signal: Set it to stop dispatching and cancel running queries.

    Raises:
        ConfigurationError: Invalid parameters or fetched bounds (before any
            sub-range is dispatched).
        Exception: The first processor failure, unchanged.
    """
    p = parse_range_params(params)
    context = RunContext(
        batch_size=p.batch_size,
        concurrency=p.concurrency,
        start=p.start,
        end=p.end,
        after=p.after,
        before=p.before,
    )

    async def _sweep() -> None:
        if p.start is not None and p.end is not None:
            bounds = Range(p.start, p.end)
        else:
            if range_fetcher is None:
                raise ConfigurationError(
                    "range_fetcher is required when start or end is not given",
                    hint="Pass both start and end, or a range fetcher.",
                )
            try:
                fetched = await range_fetcher(context)
            except Exception as exc:
                if not context.cancelled_by_abort(exc):
                    raise
                fetched = None
            if context.stop:
                logger.info("Range sweep aborted before dispatching")
                return
            resolved = Range.coerce(fetched)
            # A bound supplied by the caller (e.g. a resume point) wins.
            bounds = Range(
                resolved.start if p.start is None else p.start,
                resolved.end if p.end is None else p.end,
            )
        context.start, context.end = bounds.start, bounds.end

        cursor = RangeCursor(bounds, p.batch_size, context, processor)
        logger.info(
            "Range sweep %d-%d batch_size=%d concurrency=%d",
            bounds.start,
            bounds.end,
            p.batch_size,
            p.concurrency,
        )
        await run_scheduler(cursor, p.concurrency)
        logger.info(
            "Range sweep %s after %d sub-range(s)",
            "stopped" if context.stop else "finished",
            cursor.dispatched,
        )

    await run_with_abort(context, _sweep(), abort_signal)
