"""Errors that carry a message, structured tags and an optional cause."""

from __future__ import annotations

from typing import Any, Mapping


def _format_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class Error(Exception):
    """An error annotated with structured tags that may wrap a cause."""

    def __init__(
        self,
        message: str,
        tags: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.tags = tags
        self.cause = cause
        self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        tags = sorted(f"{key}={_format_value(val)}" for key, val in (self.tags or {}).items())
        if tags:
            parts.append(" where " + ",".join(tags))
        if self.cause is not None:
            parts.append(" because\n> " + str(self.cause))
        return "".join(parts)


def with_tags(err: BaseException, tags: Mapping[str, Any] | None) -> Error:
    """Return a copy of ``err`` as an :class:`Error` carrying ``tags``."""
    if isinstance(err, Error):
        return Error(err.message, tags, err.cause)
    return Error(str(err), tags, err.__cause__)