"""Exception taxonomy for tenant provisioning and table synchronization."""

from __future__ import annotations

import re
from typing import Optional

MAX_REPORTED_ERROR_LENGTH = 1024

_MULTI_SPACE_RE = re.compile(r"\s+")


class ReplicationError(Exception):
    """Base class for every error raised by the replication engine."""


class TenantError(ReplicationError):
    """A whole-tenant precondition failed; always surfaced to the caller."""

    def __init__(self, code: str, message: Optional[str] = None) -> None:
        """Capture the tenant code alongside the message."""
        self.code = code
        super().__init__(message or f"Tenant {code!r} failed a precondition.")


class TenantAlreadyExists(TenantError):
    """Raised when provisioning a tenant whose database is already present."""

    def __init__(self, code: str, database_name: str) -> None:
        """Name the conflicting physical database."""
        self.database_name = database_name
        super().__init__(code, f"Tenant {code} already exists (database {database_name}).")


class TenantNotFound(TenantError):
    """Raised when an operation targets a tenant whose database is absent."""

    def __init__(self, code: str, database_name: str) -> None:
        """Name the missing physical database."""
        self.database_name = database_name
        super().__init__(code, f"Tenant {code} does not exist (database {database_name}).")


class InvalidTenantCode(TenantError):
    """Raised for malformed tenant codes and for operations aimed at the source tenant."""


class TableError(ReplicationError):
    """A table-scoped failure; fatal for that table only."""

    def __init__(self, table: str, tenant: Optional[str], message: str) -> None:
        """Capture the source table and target tenant."""
        self.table = table
        self.tenant = tenant
        super().__init__(message)


class IntrospectionFailure(TableError):
    """A catalog query failed for a source table."""


class TableNotFound(IntrospectionFailure):
    """The source catalog reports zero columns for the named table."""

    def __init__(self, table: str, tenant: Optional[str]) -> None:
        """Build the not-found message for the source tenant."""
        super().__init__(table, tenant, f"Table {table} not found in source tenant {tenant}.")


class DdlApplicationFailure(TableError):
    """A synthesized statement failed for a reason other than "already exists"."""

    def __init__(
        self,
        table: str,
        tenant: Optional[str],
        message: str,
        *,
        statement: Optional[str] = None,
        category: str = "unknown",
        sqlstate: Optional[str] = None,
    ) -> None:
        """Capture the failing statement and its classification."""
        self.statement = statement
        self.category = category
        self.sqlstate = sqlstate
        super().__init__(table, tenant, message)


class StatementTimeoutError(DdlApplicationFailure, TimeoutError):
    """A DDL statement exceeded its per-statement timeout."""

    def __init__(
        self,
        table: str,
        tenant: Optional[str],
        timeout_seconds: Optional[float],
        *,
        statement: Optional[str] = None,
    ) -> None:
        """Render the timeout in the message."""
        self.timeout_seconds = timeout_seconds
        timeout_display = "unknown"
        if isinstance(timeout_seconds, (int, float)):
            timeout_display = f"{float(timeout_seconds):g}"
        super().__init__(
            table,
            tenant,
            f"Statement for {table} timed out after {timeout_display}s.",
            statement=statement,
            category="timeout",
        )


def bounded_error_message(exc: BaseException) -> str:
    """Collapse whitespace and bound an error message for report entries."""
    text = _MULTI_SPACE_RE.sub(" ", str(exc)).strip()
    if not text:
        text = exc.__class__.__name__
    return text[:MAX_REPORTED_ERROR_LENGTH]
