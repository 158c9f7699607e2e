"""
Exporter error types.

Every error raised by the pipeline carries a ``context`` dict with the
diagnostic fields that get logged when a cycle fails persistently.
"""

from typing import Any, Optional

from utils.schemas import Row


class ExporterError(Exception):
    """Base class for exporter errors."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = dict(context or {})


class TransportError(ExporterError):
    """The remote source stream failed (network, auth, query)."""


class TransformError(ExporterError):
    """A field value could not be normalized.

    Carries the offending field key, its value and the whole source row.
    """

    def __init__(self, message: str, key: str, value: Any, row: Row) -> None:
        super().__init__(message, {"key": key, "value": value, "row": row})
        self.key = key
        self.value = value
        self.row = row


def _public_attributes(exc: BaseException) -> dict[str, Any]:
    attrs = getattr(exc, "__dict__", {})
    return {k: v for k, v in attrs.items() if not k.startswith("_") and k != "context"}


def error_context(exc: BaseException) -> dict[str, Any]:
    """Collect the diagnostic context of an error and its cause chain.

    The outermost error wins on key conflicts.
    """
    context: dict[str, Any] = {}
    seen: set[int] = set()
    current: BaseException | None = exc

    while current is not None and id(current) not in seen:
        seen.add(id(current))
        for key, value in _public_attributes(current).items():
            context.setdefault(key, value)
        extra = getattr(current, "context", None)
        if isinstance(extra, dict):
            for key, value in extra.items():
                context.setdefault(key, value)
        current = current.__cause__ or current.__context__

    return context
