"""pgsweep: Concurrent range and batch sweeps for PostgreSQL backfills.

Public API:
    - run_scheduler(): Bounded-concurrency task runner
    - run_range_processor(): Sweep a numeric id interval in sub-ranges
    - run_batch_processor(): Sweep a candidate id list in chunks
    - execute(): Cancellable query on a pooled connection
    - Config: Pool configuration dataclass
"""

from __future__ import annotations

import logging

from pgsweep.batch_processor import BatchCursor, run_batch_processor
from pgsweep.config import Config
from pgsweep.context import BatchContext, RangeContext, RunContext
from pgsweep.db import check_pool_capacity, create_pool
from pgsweep.errors import (
    ConfigurationError,
    QueryCancelledError,
    QueryError,
    SweepError,
)
from pgsweep.params import BatchParams, RangeParams
from pgsweep.query import CancellableQuery, execute, render_sql
from pgsweep.range_processor import Range, RangeCursor, run_range_processor
from pgsweep.scheduler import DONE, Exhausted, run_scheduler

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("pgsweep")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("pgsweep").addHandler(logging.NullHandler())

__all__ = [
    "DONE",
    "BatchContext",
    "BatchCursor",
    "BatchParams",
    "CancellableQuery",
    "Config",
    "ConfigurationError",
    "Exhausted",
    "QueryCancelledError",
    "QueryError",
    "Range",
    "RangeContext",
    "RangeCursor",
    "RangeParams",
    "RunContext",
    "SweepError",
    "check_pool_capacity",
    "create_pool",
    "execute",
    "render_sql",
    "run_batch_processor",
    "run_range_processor",
    "run_scheduler",
]
