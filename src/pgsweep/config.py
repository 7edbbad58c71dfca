"""Configuration: Frozen Config for the connection pool behind a sweep."""

from __future__ import annotations

from dataclasses import dataclass
import os
import re

from dotenv import load_dotenv

from pgsweep.errors import ConfigurationError

load_dotenv()

_URL_ENV_VARS = ("PGSWEEP_DATABASE_URL", "DATABASE_URL")
_PASSWORD_IN_URL = re.compile(r"(://[^:/@]+:)[^@]*(@)")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be an integer, got {raw!r}",
            hint=f"Unset {name} or set it to a whole number.",
        ) from None


@dataclass(frozen=True)
class Config:
    """Immutable configuration for the database pool used by sweeps.

    Values left as *None* are auto-resolved from the environment
    (``PGSWEEP_*`` variables, ``.env`` files included).

    Example:
        config = Config(database_url="postgresql://app@db/app", pool_max_size=20)
    """

    #: Auto-resolved from ``PGSWEEP_DATABASE_URL`` or ``DATABASE_URL`` when *None*.
    database_url: str | None = None
    pool_min_size: int | None = None
    #: Must be at least the largest ``concurrency`` any sweep runs with.
    pool_max_size: int | None = None
    #: Server-side ``statement_timeout``; 0 disables it.
    statement_timeout_ms: int | None = None
    application_name: str | None = None

    def __post_init__(self) -> None:
        """Auto-resolve unset fields from the environment and validate."""
        if self.database_url is None:
            resolved = next(
                (os.environ[v] for v in _URL_ENV_VARS if os.environ.get(v)), None
            )
            object.__setattr__(self, "database_url", resolved)
        if self.pool_min_size is None:
            object.__setattr__(self, "pool_min_size", _env_int("PGSWEEP_POOL_MIN", 0))
        if self.pool_max_size is None:
            object.__setattr__(
                self, "pool_max_size", _env_int("PGSWEEP_POOL_MAX", 10)
            )
        if self.statement_timeout_ms is None:
            object.__setattr__(
                self,
                "statement_timeout_ms",
                _env_int("PGSWEEP_STATEMENT_TIMEOUT_MS", 0),
            )
        if self.application_name is None:
            object.__setattr__(
                self,
                "application_name",
                os.environ.get("PGSWEEP_APPLICATION_NAME") or "pgsweep",
            )

        if not self.database_url:
            raise ConfigurationError(
                "database_url is required",
                hint="Set PGSWEEP_DATABASE_URL or pass Config(database_url=...).",
            )
        if self.pool_min_size < 0:
            raise ConfigurationError(
                f"pool_min_size must be ≥ 0, got {self.pool_min_size}",
            )
        if self.pool_max_size < 1 or self.pool_max_size < self.pool_min_size:
            raise ConfigurationError(
                f"pool_max_size must be ≥ max(1, pool_min_size), got {self.pool_max_size}",
                hint="Every in-flight task holds one connection for its query.",
            )
        if self.statement_timeout_ms < 0:
            raise ConfigurationError(
                f"statement_timeout_ms must be ≥ 0, got {self.statement_timeout_ms}",
                hint="Use 0 to disable the server-side statement timeout.",
            )

    def __str__(self) -> str:
        """Return a representation with the URL password redacted."""
        url = _PASSWORD_IN_URL.sub(r"\1[REDACTED]\2", self.database_url or "")
        return (
            f"Config(database_url={url!r}, pool_min_size={self.pool_min_size}, "
            f"pool_max_size={self.pool_max_size}, "
            f"statement_timeout_ms={self.statement_timeout_ms}, "
            f"application_name={self.application_name!r})"
        )

    __repr__ = __str__
