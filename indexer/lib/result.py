"""Explicit success/failure wrapper passed between cursor layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from indexer.lib.errors import IndexingError

__all__ = ["Result"]

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a cross-layer call.

    A success may carry ``None`` or an empty value; only ``error`` decides
    whether the call failed.

    Example:
        res = cursor.advance(context.latest_seen)
        if not res.ok:
            return res
        availability = res.value
    """

    value: Optional[T] = None
    error: Optional[IndexingError] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: IndexingError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, raising the carried error on failure."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def __repr__(self) -> str:
        if self.ok:
            return f"Result.success({self.value!r})"
        return f"Result.failure({type(self.error).__name__})"
