"""Structured exception hierarchy for the indexing cascade.

Cursors never raise these directly; they return them inside a failed
:class:`~indexer.lib.result.Result` so the job can tell a failure apart from
a legitimate "no data" answer. The job is the one place that logs them and
stops the run.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "IndexingError",
    "SourceFailure",
    "NotReady",
    "ConstructionFailure",
    "RunCancelled",
    "ConfigurationError",
]


class IndexingError(Exception):
    """Base exception for all indexing errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        layer: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.layer = layer
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if layer:
            parts.insert(0, f"[{layer}]")

        if details:
            detail_lines = [f"  {k}: {v}" for k, v in details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "layer": self.layer,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class SourceFailure(IndexingError):
    """The data source failed to deliver a chunk.

    Not retried by any cursor layer; the run is aborted.
    """

    def __init__(
        self,
        message: str,
        *,
        last_seen: Optional[int] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.last_seen = last_seen
        self.cause = cause

        details = kwargs.pop("details", {})
        if last_seen is not None:
            details["last_seen"] = last_seen
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class NotReady(IndexingError):
    """``current()`` was called while no item is buffered.

    This is a contract violation by the caller and is fatal.
    """

    def __init__(self, message: str = "No current item is available", **kwargs: Any) -> None:
        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = "Only call current() after advance() reported YES."
        super().__init__(message, suggestion=suggestion, **kwargs)


class ConstructionFailure(IndexingError):
    """A collaborator required to build a cursor was missing."""

    def __init__(
        self,
        message: str,
        *,
        missing: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.missing = missing

        details = kwargs.pop("details", {})
        if missing:
            details["missing"] = missing

        super().__init__(message, details=details, **kwargs)


class RunCancelled(IndexingError):
    """Cancellation was requested while a cursor was looping."""

    def __init__(
        self,
        message: str = "Indexing run was cancelled",
        *,
        watermark: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        self.watermark = watermark

        details = kwargs.pop("details", {})
        if watermark is not None:
            details["watermark"] = watermark

        super().__init__(message, details=details, **kwargs)


class ConfigurationError(IndexingError):
    """Error in indexer configuration.

    Raised when settings or a config file are invalid or incomplete.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details=details, **kwargs)
