"""Connection pool construction for sweeps.

Every in-flight task holds one pooled connection for the duration of its
statement, so the pool must be at least as large as the highest
``concurrency`` of any sweep sharing it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

if TYPE_CHECKING:
    from pgsweep.config import Config

logger = logging.getLogger(__name__)

# Seconds to wait for a free connection before failing the statement.
POOL_CONNECTION_TIMEOUT = 30.0


def connection_kwargs(config: Config) -> dict[str, Any]:
    """Return per-connection settings: dict rows, application name, timeout."""
    options = f"-c statement_timeout={config.statement_timeout_ms}"
    return {
        "row_factory": dict_row,
        "application_name": config.application_name,
        "options": options,
    }


def create_pool(config: Config) -> AsyncConnectionPool[AsyncConnection[Any]]:
    """Build an unopened pool; open it with ``async with`` or ``await pool.open()``."""
    logger.info(
        "Connection pool config: min=%d, max=%d, statement_timeout_ms=%d",
        config.pool_min_size,
        config.pool_max_size,
        config.statement_timeout_ms,
    )
    return AsyncConnectionPool(
        config.database_url,
        min_size=config.pool_min_size,
        max_size=config.pool_max_size,
        kwargs=connection_kwargs(config),
        timeout=POOL_CONNECTION_TIMEOUT,
        name=config.application_name,
        open=False,
    )


def check_pool_capacity(pool_max_size: int, concurrency: int) -> bool:
    """Warn when the pool cannot serve *concurrency* statements at once."""
    if pool_max_size >= concurrency:
        return True
    logger.warning(
        "Pool max_size=%d is below sweep concurrency=%d; tasks will queue for "
        "connections and may time out",
        pool_max_size,
        concurrency,
    )
    return False
