"""Tests for SQLSTATE-first DDL error classification."""

import pytest

from schema_sync.dal.error_classification import (
    ErrorCategory,
    classify_ddl_error,
    emit_classified_error,
    is_already_exists,
)
from schema_sync.dal.timeouts import OperationTimeoutError
from tests._support.fake_postgres import FakeDatabaseError


@pytest.mark.parametrize(
    "sqlstate, message, category",
    [
        ("42P07", 'relation "sb_orders" already exists', ErrorCategory.ALREADY_EXISTS),
        ("42710", 'constraint "x" for relation "y" already exists', ErrorCategory.ALREADY_EXISTS),
        ("42P04", 'database "sb_database" already exists', ErrorCategory.ALREADY_EXISTS),
        ("42P01", 'relation "sb_missing" does not exist', ErrorCategory.UNDEFINED_OBJECT),
        ("42704", 'type "citext" does not exist', ErrorCategory.UNDEFINED_OBJECT),
        ("42501", "permission denied for database", ErrorCategory.AUTH),
        ("55006", "database is being accessed by other users", ErrorCategory.OBJECT_IN_USE),
        ("57014", "canceling statement due to statement timeout", ErrorCategory.TIMEOUT),
        ("08006", "connection failure", ErrorCategory.CONNECTIVITY),
        ("42601", 'syntax error at or near "TABLE"', ErrorCategory.SYNTAX),
        ("42P16", "multiple primary keys are not allowed", ErrorCategory.INVALID_DEFINITION),
        ("XX000", "internal error", ErrorCategory.UNKNOWN),
    ],
)
def test_classify_by_sqlstate(sqlstate, message, category):
    classification = classify_ddl_error(FakeDatabaseError(message, sqlstate))

    assert classification.category is category
    assert classification.sqlstate == sqlstate


def test_classify_by_message_without_sqlstate():
    assert is_already_exists(RuntimeError('relation "sb_orders" already exists'))
    assert (
        classify_ddl_error(ConnectionRefusedError("connection refused")).category
        is ErrorCategory.CONNECTIVITY
    )
    assert (
        classify_ddl_error(OperationTimeoutError("create table", 1.0)).category
        is ErrorCategory.TIMEOUT
    )
    assert classify_ddl_error(TimeoutError()).category is ErrorCategory.TIMEOUT


def test_retryable_categories():
    assert classify_ddl_error(FakeDatabaseError("in use", "55006")).is_retryable is True
    assert classify_ddl_error(FakeDatabaseError("dup", "42P07")).is_retryable is False


def test_already_exists_sqlstate_wins_over_message():
    error = FakeDatabaseError("duplicate key value violates unique constraint", "23505")

    assert is_already_exists(error)


def test_emit_classified_error_logs_event(caplog):
    error = FakeDatabaseError("permission denied", "42501")

    with caplog.at_level("ERROR"):
        emit_classified_error("create_table", classify_ddl_error(error), error)

    record = caplog.records[-1]
    assert record.event == "schema_sync_error_classified"
    assert record.error_category == "auth"
    assert record.sqlstate == "42501"
