#!/usr/bin/env python3
"""Recipe: Drain a sparse set of candidate ids in fixed-size batches.

Problem:
    Only a scattered subset of rows needs work (say, images with no
    thumbnail). Sweeping the whole id range would mostly scan empty space.

Pattern:
    - Select the candidate ids once with a batch fetcher.
    - Process ``--batch-size`` ids per statement with ``id = ANY(%s)``.
    - Batch numbers are stable, so ``--start-batch`` resumes a failed run.
    - Ctrl-C sets the abort signal: no new batches, running statements cancelled.

Run:
    PGSWEEP_DATABASE_URL=postgresql://... python cookbook/production/batch-queue.py \\
        --table "Image" --column thumbnail_url --batch-size 500
    # resume from the 40th batch
    python cookbook/production/batch-queue.py --table "Image" --start-batch 39

Success check:
    - Each batch logs ``batch N/M`` at INFO, with M constant for the run.
    - A second run finds no candidates and exits immediately.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from psycopg import sql

from pgsweep import (
    BatchContext,
    BatchParams,
    Config,
    RunContext,
    check_pool_capacity,
    create_pool,
    run_batch_processor,
)

logger = logging.getLogger("cookbook.batch_queue")


async def drain(args: argparse.Namespace) -> None:
    """Select candidates and process them batch by batch."""
    config = Config()
    params = BatchParams(
        batch_size=args.batch_size,
        concurrency=args.concurrency,
        start=args.start_batch,
    )
    check_pool_capacity(config.pool_max_size, params.concurrency)
    table = sql.Identifier(args.table)
    column = sql.Identifier(args.column)

    abort = asyncio.Event()
    asyncio.get_running_loop().add_signal_handler(signal.SIGINT, abort.set)

    async with create_pool(config) as pool:

        async def fetch_ids(ctx: RunContext) -> list[int]:
            rows = await ctx.query(
                pool,
                sql.SQL("SELECT id FROM {} WHERE {} IS NULL ORDER BY id").format(
                    table, column
                ),
            ).result()
            return [row["id"] for row in rows]

        async def process(ctx: BatchContext[int]) -> None:
            await ctx.query(
                pool,
                sql.SQL(
                    "UPDATE {} SET {} = 'pending://' || id WHERE id = ANY(%s) AND {} IS NULL"
                ).format(table, column, column),
                (list(ctx.batch),),
            ).result()
            logger.info("batch %d/%d done", ctx.batch_number, ctx.batch_count)

        await run_batch_processor(fetch_ids, process, params, abort_signal=abort)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--table", required=True)
    parser.add_argument("--column", required=True)
    parser.add_argument("--batch-size", type=int, default=500)
    parser.add_argument("--concurrency", type=int, default=4)
    parser.add_argument("--start-batch", type=int, default=None)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
    asyncio.run(drain(args))


if __name__ == "__main__":
    main()
