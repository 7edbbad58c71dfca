"""Live PostgreSQL tests.

Compact end-to-end coverage of what the fakes cannot prove:
- ENABLE_DB_TESTS=1 is required to run any of these
- TEST_DATABASE_URL points at a scratch database the tests may write to
"""

from __future__ import annotations

import asyncio
import uuid

import pytest
import pytest_asyncio

from pgsweep import (
    BatchContext,
    Config,
    QueryCancelledError,
    RangeContext,
    create_pool,
    execute,
    run_batch_processor,
    run_range_processor,
)

pytestmark = [pytest.mark.db, pytest.mark.slow]


@pytest_asyncio.fixture
async def pool(database_url: str):
    """Open a small real pool for one test."""
    config = Config(database_url=database_url, pool_max_size=4)
    async with create_pool(config) as p:
        yield p


@pytest_asyncio.fixture
async def table(pool):
    """A scratch table holding ids 1..1000 with a ``done`` flag."""
    name = f"pgsweep_test_{uuid.uuid4().hex[:8]}"
    async with pool.connection() as conn:
        await conn.execute(
            f"CREATE TABLE {name} AS "
            "SELECT g AS id, false AS done FROM generate_series(1, 1000) g"
        )
    yield name
    async with pool.connection() as conn:
        await conn.execute(f"DROP TABLE IF EXISTS {name}")


@pytest.mark.asyncio
async def test_cancel_aborts_a_running_statement(pool) -> None:
    q = execute(pool, "SELECT pg_sleep(30)")
    pending = asyncio.create_task(q.result())
    await asyncio.sleep(0.5)

    await q.cancel()

    with pytest.raises(QueryCancelledError) as excinfo:
        await asyncio.wait_for(pending, 5)
    assert excinfo.value.sqlstate == "57014"


@pytest.mark.asyncio
async def test_range_sweep_touches_every_row(pool, table: str) -> None:
    async def fetch(ctx):
        rows = await ctx.query(
            pool, f'SELECT min(id) AS start, max(id) AS "end" FROM {table}'
        ).result()
        return rows[0]

    async def process(ctx: RangeContext) -> None:
        await ctx.query(
            pool,
            f"UPDATE {table} SET done = true WHERE id BETWEEN %s AND %s",
            (ctx.start, ctx.end),
        ).result()

    await run_range_processor(fetch, process, {"batch_size": 97, "concurrency": 4})

    rows = await execute(pool, f"SELECT count(*) AS n FROM {table} WHERE NOT done").result()
    assert rows[0]["n"] == 0


@pytest.mark.asyncio
async def test_batch_sweep_over_selected_ids(pool, table: str) -> None:
    async def fetch(ctx):
        rows = await ctx.query(
            pool, f"SELECT id FROM {table} WHERE id % 7 = 0 ORDER BY id"
        ).result()
        return [r["id"] for r in rows]

    async def process(ctx: BatchContext[int]) -> None:
        await ctx.query(
            pool,
            f"UPDATE {table} SET done = true WHERE id = ANY(%s)",
            (list(ctx.batch),),
        ).result()

    await run_batch_processor(fetch, process, {"batch_size": 25, "concurrency": 3})

    rows = await execute(pool, f"SELECT count(*) AS n FROM {table} WHERE done").result()
    assert rows[0]["n"] == 1000 // 7
