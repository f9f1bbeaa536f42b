"""SQLSTATE-first classification of DDL and catalog errors."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Canonical categories for statement failures."""

    ALREADY_EXISTS = "already_exists"
    UNDEFINED_OBJECT = "undefined_object"
    INVALID_DEFINITION = "invalid_definition"
    OBJECT_IN_USE = "object_in_use"
    AUTH = "auth"
    CONNECTIVITY = "connectivity"
    TIMEOUT = "timeout"
    SYNTAX = "syntax"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorClassification:
    """Structured error classification."""

    category: ErrorCategory
    is_retryable: bool
    sqlstate: Optional[str] = None


# duplicate_table, duplicate_object, duplicate_schema, duplicate_database,
# duplicate_function, unique_violation on pg_type/pg_class during concurrent CREATE
_ALREADY_EXISTS_SQLSTATES = {"42P07", "42710", "42P06", "42P04", "42723", "23505"}
# undefined_table, undefined_object, undefined_function, undefined_column, invalid_schema_name
_UNDEFINED_SQLSTATES = {"42P01", "42704", "42883", "42703", "3F000"}
_AUTH_SQLSTATES = {"28000", "28P01", "42501"}
_IN_USE_SQLSTATES = {"55006", "55P03"}
_RETRYABLE_CATEGORIES = {
    ErrorCategory.CONNECTIVITY,
    ErrorCategory.TIMEOUT,
    ErrorCategory.OBJECT_IN_USE,
}


def classify_ddl_error(exc: BaseException) -> ErrorClassification:
    """Classify a driver error into a category with retryability."""
    sqlstate = _sqlstate_of(exc)
    message = str(exc).lower()
    class_name = exc.__class__.__name__.lower()

    if sqlstate in _ALREADY_EXISTS_SQLSTATES or "already exists" in message:
        return _classification(ErrorCategory.ALREADY_EXISTS, sqlstate)
    if sqlstate in _UNDEFINED_SQLSTATES or _matches_any(message, ("does not exist",)):
        return _classification(ErrorCategory.UNDEFINED_OBJECT, sqlstate)
    if sqlstate in _AUTH_SQLSTATES or _matches_any(
        message, ("permission denied", "password authentication failed", "must be owner")
    ):
        return _classification(ErrorCategory.AUTH, sqlstate)
    if sqlstate in _IN_USE_SQLSTATES or "is being accessed by other users" in message:
        return _classification(ErrorCategory.OBJECT_IN_USE, sqlstate)
    if sqlstate == "57014" or isinstance(exc, TimeoutError) or "timed out" in message:
        return _classification(ErrorCategory.TIMEOUT, sqlstate)
    if (sqlstate or "").startswith("08") or _matches_any(
        message,
        (
            "could not connect",
            "connection refused",
            "connection reset",
            "connection was closed",
        ),
    ):
        return _classification(ErrorCategory.CONNECTIVITY, sqlstate)
    if isinstance(exc, (ConnectionError, OSError)):
        return _classification(ErrorCategory.CONNECTIVITY, sqlstate)
    if sqlstate == "42601" or "syntax" in class_name or "syntax error" in message:
        return _classification(ErrorCategory.SYNTAX, sqlstate)
    if (sqlstate or "").startswith("42"):
        return _classification(ErrorCategory.INVALID_DEFINITION, sqlstate)

    return _classification(ErrorCategory.UNKNOWN, sqlstate)


def is_already_exists(exc: BaseException) -> bool:
    """Return True when a statement failed only because its target already exists."""
    return classify_ddl_error(exc).category is ErrorCategory.ALREADY_EXISTS


def emit_classified_error(operation: str, classification: ErrorClassification, exc: Exception):
    """Attach the classification to the current span and log it."""
    try:
        from opentelemetry import trace

        span = trace.get_current_span()
        if span and span.is_recording():
            span.set_attribute("error.classification.category", classification.category.value)
            span.set_attribute("error.classification.operation", operation)
            span.set_attribute("error.classification.is_retryable", classification.is_retryable)
            if classification.sqlstate:
                span.set_attribute("error.classification.sqlstate", classification.sqlstate)
    except Exception:
        pass

    logger.error(
        "schema_sync_error_classified",
        extra={
            "event": "schema_sync_error_classified",
            "operation": operation,
            "error_category": classification.category.value,
            "error_type": exc.__class__.__name__,
            "sqlstate": classification.sqlstate,
            "is_retryable": classification.is_retryable,
        },
    )


def _sqlstate_of(exc: BaseException) -> Optional[str]:
    sqlstate = getattr(exc, "sqlstate", None)
    if isinstance(sqlstate, str) and sqlstate:
        return sqlstate
    return None


def _matches_any(text: str, fragments: tuple[str, ...]) -> bool:
    return any(fragment in text for fragment in fragments)


def _classification(category: ErrorCategory, sqlstate: Optional[str]) -> ErrorClassification:
    return ErrorClassification(
        category=category,
        is_retryable=category in _RETRYABLE_CATEGORIES,
        sqlstate=sqlstate,
    )
