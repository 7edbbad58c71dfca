#!/usr/bin/env python3
"""Recipe: Backfill a column across a large table in id sub-ranges.

Problem:
    A one-off migration has to touch millions of rows. A single UPDATE locks
    too much and cannot be stopped cleanly; the job must be resumable by id.

Pattern:
    - Discover ``min(id)``/``max(id)`` once with a range fetcher.
    - Update ``BETWEEN start AND end`` sub-ranges, ``--concurrency`` at a time.
    - Guard the UPDATE so revisiting a seam row is harmless.
    - Ctrl-C sets the abort signal: no new sub-ranges, running statements cancelled.

Run:
    PGSWEEP_DATABASE_URL=postgresql://... python cookbook/production/backfill-range.py \\
        --table "Image" --batch-size 10000 --concurrency 4
    # resume after a failure
    python cookbook/production/backfill-range.py --table "Image" --start 420000

Success check:
    - Each finished sub-range is logged at INFO.
    - Re-running over the same ids changes nothing (idempotent guard).
    - A single-row table is updated too: the fetched end is ``max(id) + 1``
      because a range with start == end dispatches no sub-range.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import Any

from psycopg import sql

from pgsweep import (
    Config,
    RangeContext,
    RangeParams,
    RunContext,
    check_pool_capacity,
    create_pool,
    run_range_processor,
)

logger = logging.getLogger("cookbook.backfill_range")


async def backfill(args: argparse.Namespace) -> None:
    """Run the sweep against the configured database."""
    config = Config()
    params = RangeParams(
        batch_size=args.batch_size,
        concurrency=args.concurrency,
        start=args.start,
        end=args.end,
    )
    check_pool_capacity(config.pool_max_size, params.concurrency)
    table = sql.Identifier(args.table)

    abort = asyncio.Event()
    asyncio.get_running_loop().add_signal_handler(signal.SIGINT, abort.set)

    async with create_pool(config) as pool:

        async def fetch_range(ctx: RunContext) -> dict[str, Any]:
            rows = await ctx.query(
                pool,
                sql.SQL(
                    'SELECT coalesce(min(id), 0) AS start, coalesce(max(id) + 1, 0) AS "end" FROM {}'
                ).format(table),
            ).result()
            return rows[0]

        async def process(ctx: RangeContext) -> None:
            await ctx.query(
                pool,
                sql.SQL(
                    "UPDATE {} SET {} = lower({}) "
                    "WHERE id BETWEEN %s AND %s AND {} IS DISTINCT FROM lower({})"
                ).format(
                    table,
                    sql.Identifier(args.column),
                    sql.Identifier(args.column),
                    sql.Identifier(args.column),
                    sql.Identifier(args.column),
                ),
                (ctx.start, ctx.end),
            ).result()
            logger.info("Updated %d-%d", ctx.start, ctx.end)

        await run_range_processor(fetch_range, process, params, abort_signal=abort)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--table", required=True)
    parser.add_argument("--column", default="name")
    parser.add_argument("--batch-size", type=int, default=10_000)
    parser.add_argument("--concurrency", type=int, default=4)
    parser.add_argument("--start", type=int, default=None)
    parser.add_argument("--end", type=int, default=None)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
    asyncio.run(backfill(args))


if __name__ == "__main__":
    main()
