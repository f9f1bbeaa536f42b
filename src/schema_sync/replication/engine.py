"""Tenant provisioning, teardown and additive table synchronization."""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional

from schema_sync.config import ReplicationSettings
from schema_sync.dal.catalog_introspector import CatalogIntrospector
from schema_sync.dal.connection_registry import ConnectionRegistry
from schema_sync.dal.error_classification import (
    ErrorCategory,
    classify_ddl_error,
    emit_classified_error,
    is_already_exists,
)
from schema_sync.dal.tenant_registry import TenantRegistry
from schema_sync.dal.timeouts import Deadline, OperationTimeoutError, run_with_timeout
from schema_sync.ddl.quoting import quote_identifier, quote_literal
from schema_sync.ddl.rewriter import IdentifierRewriter
from schema_sync.ddl.synthesizer import DdlStatement, synthesize
from schema_sync.errors import (
    DdlApplicationFailure,
    InvalidTenantCode,
    StatementTimeoutError,
    TableError,
    TenantAlreadyExists,
    TenantError,
    TenantNotFound,
    bounded_error_message,
)
from schema_sync.models import OperationState, SyncReport, TenantDescriptor
from schema_sync.observability.metrics import replication_metrics
from schema_sync.observability.tracing import traced_operation

logger = logging.getLogger(__name__)

TERMINATE_SESSIONS_SQL = """
    SELECT pg_terminate_backend(pid)
    FROM pg_stat_activity
    WHERE datname = $1 AND pid <> pg_backend_pid()
"""

DROP_ATTEMPTS = 3


class StatementOutcome(str, Enum):
    """Result of applying one DDL statement."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class ReplicationEngine:
    """Clones the source tenant's structure into tenant databases.

    The engine keeps no state between calls. Every structural operation on a tenant
    holds that tenant's lock from the ``ConnectionRegistry``; ``asyncio.Lock`` is not
    re-entrant, so the ``*_locked`` helpers assume the caller already holds it.
    """

    def __init__(
        self,
        connections: ConnectionRegistry,
        introspector: Optional[CatalogIntrospector] = None,
        tenants: Optional[TenantRegistry] = None,
    ) -> None:
        """Wire the engine to a registry; collaborators default to catalog-backed ones."""
        self._connections = connections
        self._settings: ReplicationSettings = connections.settings
        self._introspector = introspector or CatalogIntrospector(
            connections, schema=self._settings.schema
        )
        self._tenants = tenants or TenantRegistry(connections)

    @property
    def source(self) -> TenantDescriptor:
        return self._connections.source

    async def tenant_exists(self, code: str) -> bool:
        return await self._tenants.tenant_exists(self._connections.describe(code).code)

    async def list_active_tenants(self) -> List[str]:
        return [tenant.code for tenant in await self._tenants.list_active_tenants()]

    async def provision_tenant(self, code: str) -> SyncReport:
        """Create a tenant database and clone every source table into it."""
        target = self._target(code)
        with traced_operation("schema_sync.provision", {"tenant": target.code}):
            async with self._connections.tenant_lock(target.code):
                if await self._tenants.tenant_exists(target.code):
                    raise TenantAlreadyExists(target.code, target.database_name)
                await self._create_database(target)
                return await self._sync_tables_locked(target)

    async def decommission_tenant(self, code: str) -> None:
        """Close pooled connections, terminate remaining sessions and drop the database."""
        target = self._target(code)
        with traced_operation("schema_sync.decommission", {"tenant": target.code}):
            async with self._connections.tenant_lock(target.code):
                await self._require_tenant(target)
                await self._connections.release(target.code)
                await self._drop_database(target)
        self._connections.discard_tenant_lock(target.code)

    async def sync_table(self, table_name: str, code: str) -> bool:
        """Create one source table in a tenant; False when it already exists there."""
        target = self._target(code)
        with traced_operation(
            "schema_sync.sync_table", {"tenant": target.code, "table": table_name}
        ):
            async with self._connections.tenant_lock(target.code):
                await self._require_tenant(target)
                try:
                    created = await self._sync_table_locked(table_name, target)
                except TableError:
                    replication_metrics.record_table_outcome("failed", target.code)
                    raise
        replication_metrics.record_table_outcome("created" if created else "skipped", target.code)
        return created

    async def sync_all_tables_to_tenant(
        self, code: str, timeout_seconds: Optional[float] = None
    ) -> SyncReport:
        """Create every missing source table in one tenant.

        If the call is cancelled, the in-flight table is rolled back and the partial report,
        with that table in ``per_table_errors``, is attached to the ``CancelledError`` as
        ``report``.
        """
        return await self._sync_tenant(self._target(code), None, timeout_seconds)

    async def sync_all_tables_to_all_tenants(self) -> Dict[str, SyncReport]:
        """Create every missing source table in every active tenant."""
        with traced_operation("schema_sync.sync_all_tenants"):
            tenants = await self._tenants.list_active_tenants()
            return await self._fan_out(tenants, None)

    async def sync_table_to_all_tenants(self, table_name: str) -> Dict[str, SyncReport]:
        """Push one newly added source table to every active tenant."""
        with traced_operation("schema_sync.sync_table_all_tenants", {"table": table_name}):
            tenants = await self._tenants.list_active_tenants()
            return await self._fan_out(tenants, [table_name])

    def _target(self, code: str) -> TenantDescriptor:
        target = self._connections.describe(code)
        if target.code == self.source.code:
            raise InvalidTenantCode(
                target.code, f"Tenant {target.code} is the source tenant and cannot be a target."
            )
        return target

    def _rewriter_for(self, target: TenantDescriptor) -> IdentifierRewriter:
        return IdentifierRewriter(self.source.table_prefix, target.table_prefix)

    async def _require_tenant(self, target: TenantDescriptor) -> None:
        if not await self._tenants.tenant_exists(target.code):
            raise TenantNotFound(target.code, target.database_name)

    async def _fan_out(
        self, tenants: List[TenantDescriptor], tables: Optional[List[str]]
    ) -> Dict[str, SyncReport]:
        semaphore = asyncio.Semaphore(self._settings.sync_tenant_concurrency)

        async def _run(target: TenantDescriptor) -> SyncReport:
            async with semaphore:
                try:
                    return await self._sync_tenant(target, tables)
                except Exception as exc:
                    logger.error(
                        "Tenant %s could not be synchronized: %s",
                        target.code,
                        exc,
                        extra={"event": "tenant_sync_failed", "tenant": target.code},
                    )
                    report = SyncReport(tenant=target.code, error=bounded_error_message(exc))
                    return report.finish()

        reports = await asyncio.gather(*(_run(target) for target in tenants))
        return {report.tenant: report for report in reports}

    async def _sync_tenant(
        self,
        target: TenantDescriptor,
        tables: Optional[List[str]],
        timeout_seconds: Optional[float] = None,
    ) -> SyncReport:
        with traced_operation("schema_sync.sync_tenant", {"tenant": target.code}):
            async with self._connections.tenant_lock(target.code):
                await self._require_tenant(target)
                return await self._sync_tables_locked(target, tables, timeout_seconds)

    async def _sync_tables_locked(
        self,
        target: TenantDescriptor,
        tables: Optional[List[str]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> SyncReport:
        report = SyncReport(tenant=target.code)
        started = time.monotonic()
        deadline = Deadline(timeout_seconds)

        if tables is None:
            try:
                tables = await self._introspector.list_tables(self.source.code)
            except TableError as exc:
                report.error = bounded_error_message(exc)
                return self._finish_report(report, started)

        report.state = OperationState.APPLYING
        for position, table_name in enumerate(tables):
            if deadline.expired():
                for pending in tables[position:]:
                    report.record_failure(pending, "Operation deadline exceeded.")
                    replication_metrics.record_table_outcome("failed", target.code)
                break
            try:
                created = await self._sync_table_locked(table_name, target, deadline)
            except TableError as exc:
                logger.error(
                    "Table %s failed for tenant %s: %s",
                    table_name,
                    target.code,
                    exc,
                    extra={
                        "event": "table_failed",
                        "tenant": target.code,
                        "table": table_name,
                        "error_category": getattr(exc, "category", "introspection"),
                    },
                )
                report.record_failure(table_name, bounded_error_message(exc))
                replication_metrics.record_table_outcome("failed", target.code)
                continue
            except asyncio.CancelledError as exc:
                report.record_failure(table_name, "Cancelled; table changes were rolled back.")
                replication_metrics.record_table_outcome("failed", target.code)
                exc.report = self._finish_report(report, started)
                raise

            if created:
                report.record_created(table_name)
            else:
                report.record_skipped(table_name)
            replication_metrics.record_table_outcome(
                "created" if created else "skipped", target.code
            )

        return self._finish_report(report, started)

    def _finish_report(self, report: SyncReport, started: float) -> SyncReport:
        report.finish()
        elapsed = time.monotonic() - started
        replication_metrics.record_tenant_duration(elapsed, report.tenant, report.state.value)
        log = logger.info if report.ok else logger.warning
        log(
            "Tenant %s sync %s: created=%d skipped=%d failed=%d",
            report.tenant,
            report.state.value,
            report.created,
            report.skipped,
            report.failed,
            extra={
                "event": "tenant_sync_finished",
                "tenant": report.tenant,
                "state": report.state.value,
                "tables_created": report.created,
                "tables_skipped": report.skipped,
                "tables_failed": report.failed,
                "duration_seconds": round(elapsed, 3),
            },
        )
        return report

    async def _sync_table_locked(
        self,
        table_name: str,
        target: TenantDescriptor,
        deadline: Optional[Deadline] = None,
    ) -> bool:
        rewriter = self._rewriter_for(target)
        target_table = rewriter.table_name(table_name)

        try:
            exists = await self._introspector.table_exists(target.code, target_table)
        except Exception as exc:
            classification = classify_ddl_error(exc)
            raise DdlApplicationFailure(
                table_name,
                target.code,
                f"Could not check {target_table} in tenant {target.code}: {exc}",
                category=classification.category.value,
                sqlstate=classification.sqlstate,
            ) from exc
        if exists:
            logger.debug(
                "Table %s already exists in %s; skipping",
                target_table,
                target.code,
                extra={"event": "table_skipped", "tenant": target.code, "table": target_table},
            )
            return False

        self._enter_state(OperationState.INTROSPECTING, table_name, target)
        table = await self._introspector.describe_table(self.source.code, table_name)

        self._enter_state(OperationState.SYNTHESIZING, table_name, target)
        statements = synthesize(table, rewriter, self._settings.schema)

        self._enter_state(OperationState.APPLYING, table_name, target)
        created = await self._apply(target, table_name, statements, deadline or Deadline(None))

        self._enter_state(OperationState.COMPLETED, table_name, target)
        if created:
            logger.info(
                "Created table %s in tenant %s (%d columns, %d sequences, %d indexes)",
                target_table,
                target.code,
                len(table.columns),
                len(table.sequences),
                len(table.indexes),
                extra={"event": "table_created", "tenant": target.code, "table": target_table},
            )
        return created

    def _enter_state(self, state: OperationState, table_name: str, target: TenantDescriptor):
        logger.debug(
            "%s -> %s: %s",
            table_name,
            target.code,
            state.value,
            extra={
                "event": "table_state",
                "tenant": target.code,
                "table": table_name,
                "state": state.value,
            },
        )

    async def _apply(
        self,
        target: TenantDescriptor,
        table_name: str,
        statements: List[DdlStatement],
        deadline: Deadline,
    ) -> bool:
        """Apply one table's statements in a single transaction.

        Each statement runs in its own savepoint so an ignorable "already exists" only
        rolls back that statement; any other failure rolls back the whole table.
        """
        table_created = False
        try:
            async with self._connections.connection(target.code) as conn:
                async with conn.transaction():
                    for statement in statements:
                        outcome = await self._apply_statement(
                            conn, target, table_name, statement, deadline
                        )
                        if statement.kind == "table":
                            table_created = outcome is StatementOutcome.CREATED
        except TableError:
            raise
        except Exception as exc:
            classification = classify_ddl_error(exc)
            emit_classified_error("apply_table", classification, exc)
            raise DdlApplicationFailure(
                table_name,
                target.code,
                f"Could not apply DDL for {table_name} to tenant {target.code}: {exc}",
                category=classification.category.value,
                sqlstate=classification.sqlstate,
            ) from exc
        return table_created

    async def _apply_statement(
        self,
        conn: Any,
        target: TenantDescriptor,
        table_name: str,
        statement: DdlStatement,
        deadline: Deadline,
    ) -> StatementOutcome:
        timeout = deadline.cap(self._settings.statement_timeout_seconds)
        if timeout is not None and timeout <= 0:
            raise StatementTimeoutError(table_name, target.code, 0, statement=statement.sql)

        try:
            async with conn.transaction():
                await run_with_timeout(
                    lambda: conn.execute(statement.sql),
                    timeout,
                    operation_name=f"create {statement.kind} {statement.object_name}",
                )
        except OperationTimeoutError as exc:
            raise StatementTimeoutError(
                table_name, target.code, timeout, statement=statement.sql
            ) from exc
        except Exception as exc:
            classification = classify_ddl_error(exc)
            if classification.category is ErrorCategory.ALREADY_EXISTS:
                logger.debug(
                    "%s %s already exists in %s",
                    statement.kind,
                    statement.object_name,
                    target.code,
                    extra={
                        "event": "statement_ignored",
                        "tenant": target.code,
                        "kind": statement.kind,
                        "object": statement.object_name,
                    },
                )
                replication_metrics.record_ignored_statement(statement.kind, target.code)
                return StatementOutcome.ALREADY_EXISTS
            emit_classified_error(f"create_{statement.kind}", classification, exc)
            raise DdlApplicationFailure(
                table_name,
                target.code,
                f"Creating {statement.kind} {statement.object_name} failed: {exc}",
                statement=statement.sql,
                category=classification.category.value,
                sqlstate=classification.sqlstate,
            ) from exc
        return StatementOutcome.CREATED

    async def _create_database(self, target: TenantDescriptor) -> None:
        sql = (
            f"CREATE DATABASE {quote_identifier(target.database_name)} "
            f"WITH OWNER = {quote_identifier(self._settings.owner)} "
            f"ENCODING = {quote_literal(self._settings.db_encoding)}"
        )
        async with self._connections.admin_connection() as conn:
            try:
                await conn.execute(sql)
            except Exception as exc:
                if is_already_exists(exc):
                    raise TenantAlreadyExists(target.code, target.database_name) from exc
                raise TenantError(
                    target.code, f"Could not create database {target.database_name}: {exc}"
                ) from exc
        logger.info(
            "Created database %s",
            target.database_name,
            extra={
                "event": "database_created",
                "tenant": target.code,
                "database": target.database_name,
            },
        )

    async def _drop_database(self, target: TenantDescriptor) -> None:
        sql = f"DROP DATABASE IF EXISTS {quote_identifier(target.database_name)}"
        async with self._connections.admin_connection() as conn:
            for attempt in range(1, DROP_ATTEMPTS + 1):
                terminated = await conn.fetch(TERMINATE_SESSIONS_SQL, target.database_name)
                try:
                    await conn.execute(sql)
                except Exception as exc:
                    classification = classify_ddl_error(exc)
                    if (
                        classification.category is ErrorCategory.OBJECT_IN_USE
                        and attempt < DROP_ATTEMPTS
                    ):
                        logger.warning(
                            "Database %s still in use; retrying drop (%d/%d)",
                            target.database_name,
                            attempt,
                            DROP_ATTEMPTS,
                        )
                        continue
                    raise TenantError(
                        target.code, f"Could not drop database {target.database_name}: {exc}"
                    ) from exc
                logger.info(
                    "Dropped database %s after terminating %d sessions",
                    target.database_name,
                    len(terminated),
                    extra={
                        "event": "database_dropped",
                        "tenant": target.code,
                        "database": target.database_name,
                    },
                )
                return
