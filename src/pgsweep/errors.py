"""Exception hierarchy for pgsweep."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class SweepError(Exception):
    """Base exception for all pgsweep errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(SweepError):
    """Configuration or job parameter validation failed."""


class QueryError(SweepError):
    """A statement failed inside the database driver.

    The driver exception is always chained as ``__cause__``; ``sqlstate`` is
    copied from it when the server reported one.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        sqlstate: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.sqlstate = sqlstate


class QueryCancelledError(QueryError):
    """The statement was cancelled before it produced a result."""


def walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)


def is_cancellation(exc: BaseException) -> bool:
    """Return True when *exc* (or anything it wraps) is a query cancellation."""
    return any(isinstance(e, QueryCancelledError) for e in walk_exception_chain(exc))
