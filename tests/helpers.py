"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: the fake pool mimics just the surface
of ``psycopg_pool.AsyncConnectionPool`` that cancellable queries touch.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import psycopg


@dataclass
class FakeCursor:
    rows: list[Any] | None

    @property
    def description(self) -> list[tuple[str]] | None:
        return None if self.rows is None else [("col",)]

    async def fetchall(self) -> list[Any]:
        return list(self.rows or [])


@dataclass
class Statement:
    """Scripted behavior for one statement text."""

    rows: list[Any] | None = field(default_factory=list)
    error: BaseException | None = None
    #: When set, execute() blocks until released or cancelled.
    gate: asyncio.Event | None = None
    #: Simulate a statement that completes even though cancel was requested.
    ignore_cancel: bool = False


@dataclass
class FakeConnection:
    pool: FakePool
    cancel_requested: asyncio.Event = field(default_factory=asyncio.Event)

    async def execute(self, query: Any, params: Any = None) -> FakeCursor:
        self.pool.executed.append((query, params))
        stmt = self.pool.statements.get(query, Statement())
        self.pool.started.set()
        if stmt.gate is not None:
            await _first_of(
                stmt.gate, self.cancel_requested if not stmt.ignore_cancel else None
            )
            if self.cancel_requested.is_set() and not stmt.ignore_cancel:
                raise psycopg.errors.QueryCanceled(
                    "canceling statement due to user request"
                )
        if stmt.error is not None:
            raise stmt.error
        return FakeCursor(stmt.rows)

    async def cancel_safe(self) -> None:
        self.pool.cancel_calls += 1
        if self.pool.cancel_error is not None:
            raise self.pool.cancel_error
        self.cancel_requested.set()


async def _first_of(*events: asyncio.Event | None) -> None:
    waiters = [asyncio.ensure_future(e.wait()) for e in events if e is not None]
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for w in waiters:
            w.cancel()


@dataclass
class FakePool:
    """Connection source with a bounded number of connections."""

    max_size: int = 10
    statements: dict[Any, Statement] = field(default_factory=dict)
    cancel_error: BaseException | None = None
    executed: list[tuple[Any, Any]] = field(default_factory=list)
    cancel_calls: int = 0
    acquired: int = 0
    released: int = 0
    in_use: int = 0
    max_in_use: int = 0
    started: asyncio.Event = field(default_factory=asyncio.Event)
    _slots: asyncio.Semaphore | None = None

    def script(self, query: Any, **kwargs: Any) -> Statement:
        stmt = Statement(**kwargs)
        self.statements[query] = stmt
        return stmt

    @asynccontextmanager
    async def connection(self):
        if self._slots is None:
            self._slots = asyncio.Semaphore(self.max_size)
        async with self._slots:
            self.acquired += 1
            self.in_use += 1
            self.max_in_use = max(self.max_in_use, self.in_use)
            try:
                yield FakeConnection(self)
            finally:
                self.in_use -= 1
                self.released += 1


async def wait_until(predicate, *, timeout: float = 1.0) -> None:
    """Yield to the loop until *predicate()* holds (fails after *timeout*)."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)
