"""Cancellable query primitive.

A :class:`CancellableQuery` wraps one statement executed on a pooled
connection. ``result()`` starts it lazily and memoizes the outcome;
``cancel()`` is a best-effort, idempotent abort that is a no-op once the
result has settled.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from datetime import date, datetime
import json
import logging
import re
from typing import TYPE_CHECKING, Any, Protocol

import psycopg

from pgsweep.errors import QueryCancelledError, QueryError

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager

    from pgsweep.context import RunContext

logger = logging.getLogger(__name__)

Params = Sequence[Any] | Mapping[str, Any] | None


class SupportsCancel(Protocol):
    """Connection surface used while a statement is running."""

    async def execute(self, query: Any, params: Params = None) -> Any: ...  # noqa: D102
    async def cancel_safe(self) -> None: ...  # noqa: D102


class ConnectionSource(Protocol):
    """Anything handing out pooled connections (``AsyncConnectionPool``)."""

    def connection(self) -> AbstractAsyncContextManager[Any]: ...  # noqa: D102


class CancellableQuery:
    """Handle for one statement: memoized ``result()`` plus best-effort ``cancel()``."""

    def __init__(
        self,
        pool: ConnectionSource,
        query: Any,
        params: Params = None,
        *,
        context: RunContext | None = None,
    ) -> None:
        self._pool = pool
        self._query = query
        self._params = params
        self._context = context
        self._task: asyncio.Task[list[Any]] | None = None
        self._conn: SupportsCancel | None = None
        self._cancelled = False

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def done(self) -> bool:
        """True once the result has settled (rows, error or cancellation)."""
        return self._task is not None and self._task.done()

    async def result(self) -> list[Any]:
        """Start the statement if needed and return its rows.

        Raises:
            QueryCancelledError: The statement was cancelled before completing.
            QueryError: The driver reported any other failure.
        """
        if self._task is None:
            if self._context is not None and self._context.stop:
                # Handles registered after abort() fired would never be called.
                self._cancelled = True
            if self._cancelled:
                raise QueryCancelledError(
                    "Query was cancelled before it started",
                    hint="The run was aborted; no statement was sent.",
                )
            self._task = asyncio.ensure_future(self._run())
            if self._context is not None:
                self._context.register(self.cancel)
        try:
            return await self._task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if self._cancelled and not (current is not None and current.cancelling()):
                # cancel() won before the statement task got to run.
                raise QueryCancelledError(
                    "Query was cancelled before it was sent"
                ) from None
            raise

    async def cancel(self) -> None:
        """Ask the server to abort the statement; safe to call at any time.

        Cancellation races completion: a statement may still apply its effects
        and return rows after this call. If the statement finishes while the
        cancel request is in transit, the request can land on the next
        statement run on the same pooled connection. Within an aborted run
        that statement is cancelled anyway; outside one, only call this for
        statements you are prepared to see fail with ``QueryCancelledError``
        elsewhere on the pool.
        """
        if self._cancelled or self.done:
            return
        self._cancelled = True
        conn = self._conn
        if conn is not None:
            logger.debug("Sending cancel request for running query")
            await conn.cancel_safe()
        elif self._task is not None:
            # Still waiting for a pooled connection.
            self._task.cancel()

    async def _run(self) -> list[Any]:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Executing: %s", render_sql(self._query, self._params))
        try:
            async with self._pool.connection() as conn:
                self._conn = conn
                try:
                    cur = await conn.execute(self._query, self._params)
                    if cur.description is None:
                        return []
                    return list(await cur.fetchall())
                finally:
                    self._conn = None
        except asyncio.CancelledError:
            if not self._cancelled:
                raise
            raise QueryCancelledError(
                "Query was cancelled while waiting for a connection"
            ) from None
        except psycopg.errors.QueryCanceled as e:
            raise QueryCancelledError(
                f"Query was cancelled: {e}", sqlstate=e.sqlstate
            ) from e
        except psycopg.Error as e:
            raise QueryError(
                f"Query failed: {type(e).__name__}: {e}",
                hint="The statement was rolled back; the connection was returned to the pool.",
                sqlstate=e.sqlstate,
            ) from e


def execute(
    pool: ConnectionSource,
    query: Any,
    params: Params = None,
    *,
    context: RunContext | None = None,
) -> CancellableQuery:
    """Create a :class:`CancellableQuery`; nothing is sent until ``result()``."""
    return CancellableQuery(pool, query, params, context=context)


# --- Display-only SQL rendering ---

_NUMBERED_PLACEHOLDER = "([$:]){}(?!\\d)"


def _format_value(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, (datetime, date)):
        return f"'{value.isoformat()}'"
    if isinstance(value, (Mapping, list, tuple)):
        return "'" + json.dumps(value, default=str).replace("'", "''") + "'"
    return str(value)


def render_sql(query: Any, params: Params = None) -> str:
    """Inline *params* into *query* for logs. Never execute the result.

    Handles numbered ``$1``/``:1`` placeholders (``$1`` never matches inside
    ``$11``), positional ``%s`` and named ``%(name)s`` placeholders.
    """
    text = query if isinstance(query, str) else str(query)
    if not params:
        return text
    if isinstance(params, Mapping):
        for name, value in params.items():
            text = text.replace(f"%({name})s", _format_value(value))
        return text

    values = list(params)
    for i, value in enumerate(values, start=1):
        formatted = _format_value(value)
        text = re.sub(
            _NUMBERED_PLACEHOLDER.format(i), lambda _m: formatted, text
        )
    for value in values:
        if "%s" not in text:
            break
        text = text.replace("%s", _format_value(value), 1)
    return text
