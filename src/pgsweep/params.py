"""Job parameter schemas for range and batch sweeps.

Values are coerced the way query-string parameters arrive (``"500"`` becomes
``500``); anything that does not validate raises ``ConfigurationError`` before
a single task is dispatched.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, Field, ValidationError, model_validator

from pgsweep.errors import ConfigurationError

DEFAULT_BATCH_SIZE = 500
DEFAULT_CONCURRENCY = 15
MAX_CONCURRENCY = 50


class _SweepParams(BaseModel):
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=1, le=MAX_CONCURRENCY)

    model_config = {"frozen": True, "extra": "forbid"}


class RangeParams(_SweepParams):
    """Parameters for :func:`pgsweep.run_range_processor`.

    When both ``start`` and ``end`` are set the range fetcher is skipped.
    """

    start: int | None = Field(default=None, ge=0)
    end: int | None = Field(default=None, ge=0)
    after: datetime | None = None
    before: datetime | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> RangeParams:
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError(f"start ({self.start}) must be <= end ({self.end})")
        if self.after is not None and self.before is not None and self.after > self.before:
            raise ValueError("after must not be later than before")
        return self


class BatchParams(_SweepParams):
    """Parameters for :func:`pgsweep.run_batch_processor`.

    ``ids`` skips the batch fetcher and must be integer ids (numeric strings
    are coerced); a fetcher may return items of any type. ``start``/``end``
    are 0-based batch indices (end exclusive) restricting which chunks run,
    for resuming.
    """

    ids: tuple[int, ...] | None = None
    start: int | None = Field(default=None, ge=0)
    end: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_window(self) -> BatchParams:
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError(f"start ({self.start}) must be <= end ({self.end})")
        return self


P = TypeVar("P", bound=_SweepParams)


def _parse(model: type[P], value: P | Mapping[str, Any]) -> P:
    if isinstance(value, model):
        return value
    if not isinstance(value, Mapping):
        raise ConfigurationError(
            f"{model.__name__} expected a mapping, got {type(value).__name__}",
            hint=f"Pass {model.__name__}(...) or a dict of parameters.",
        )
    try:
        return model.model_validate(dict(value))
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'params'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(
            f"Invalid {model.__name__}: {details}",
            hint="batch_size and concurrency must be positive integers; start <= end.",
        ) from e


def parse_range_params(value: RangeParams | Mapping[str, Any]) -> RangeParams:
    """Validate range sweep parameters."""
    return _parse(RangeParams, value)


def parse_batch_params(value: BatchParams | Mapping[str, Any]) -> BatchParams:
    """Validate batch sweep parameters."""
    return _parse(BatchParams, value)
