import asyncio

import pytest

from schema_sync.config import ReplicationSettings
from schema_sync.dal.connection_registry import ConnectionRegistry
from schema_sync.errors import (
    DdlApplicationFailure,
    InvalidTenantCode,
    TableNotFound,
    TenantAlreadyExists,
    TenantError,
    TenantNotFound,
)
from schema_sync.models import OperationState
from schema_sync.replication import engine as engine_module
from schema_sync.replication.engine import ReplicationEngine
from tests._support.fake_postgres import FakeDatabaseError, FakeServer, column, seed_source


@pytest.fixture
def server():
    server = FakeServer()
    seed_source(server)
    return server


def _engine(server, **overrides):
    settings = ReplicationSettings().with_overrides(**overrides) if overrides else None
    registry = ConnectionRegistry(settings or ReplicationSettings(), server.pool_factory)
    return ReplicationEngine(registry)


@pytest.fixture
def engine(server):
    return _engine(server)


@pytest.mark.asyncio
async def test_provision_creates_database_and_clones_every_table(server, engine):
    report = await engine.provision_tenant("sb")

    assert report.tenant == "SB"
    assert report.state is OperationState.COMPLETED
    assert (report.created, report.skipped, report.failed) == (3, 0, 0)

    create_events = [event for event in server.events if event[0] == "create_database"]
    assert create_events == [
        (
            "create_database",
            "sb_database",
            "CREATE DATABASE \"sb_database\" WITH OWNER = \"postgres\" ENCODING = 'UTF8'",
        )
    ]
    tenant = server.databases["sb_database"]
    assert sorted(tenant.tables) == ["sb_customers", "sb_orders", "shared_lookup"]
    assert tenant.sequences == {"sb_orders_id_seq"}
    assert tenant.indexes == {"sb_orders_customer_idx"}


@pytest.mark.asyncio
async def test_provision_applies_sequences_before_tables(server, engine):
    await engine.provision_tenant("SB")

    executed = server.databases["sb_database"].executed
    orders = [sql for sql in executed if "sb_orders" in sql]
    assert orders[0].startswith('CREATE SEQUENCE IF NOT EXISTS "public"."sb_orders_id_seq"')
    assert orders[1].startswith('CREATE TABLE "public"."sb_orders"')
    assert "nextval('sb_orders_id_seq'::regclass)" in orders[1]
    assert orders[2] == (
        'ALTER SEQUENCE "public"."sb_orders_id_seq" OWNED BY "public"."sb_orders"."id"'
    )
    assert orders[3] == (
        "CREATE INDEX sb_orders_customer_idx ON public.sb_orders USING btree (customer_id)"
    )
    assert server.databases["sb_database"].sequence_owners == {
        "sb_orders_id_seq": ("sb_orders", "id")
    }


@pytest.mark.asyncio
async def test_configured_schema_qualifies_every_statement():
    server = FakeServer()
    seed_source(server, schema="tenant_data")
    engine = _engine(server, schema="tenant_data")
    tenant = server.add_database("sb_database")

    assert await engine.sync_table("fp_orders", "SB") is True

    assert tenant.executed[0] == 'CREATE SCHEMA IF NOT EXISTS "tenant_data"'
    assert all("tenant_data" in sql for sql in tenant.executed)
    assert tenant.tables["sb_orders"]["schema"] == "tenant_data"
    assert tenant.indexes == {"sb_orders_customer_idx"}

    executed_before = len(tenant.executed)
    report = await engine.sync_all_tables_to_tenant("SB")

    assert (report.created, report.skipped, report.failed) == (2, 1, 0)
    assert not any("sb_orders" in sql for sql in tenant.executed[executed_before:])


@pytest.mark.asyncio
async def test_provision_existing_tenant_raises(server, engine):
    await engine.provision_tenant("SB")

    with pytest.raises(TenantAlreadyExists) as exc_info:
        await engine.provision_tenant("SB")

    assert exc_info.value.database_name == "sb_database"
    assert len([event for event in server.events if event[0] == "create_database"]) == 1


@pytest.mark.parametrize("code", ["FP", "fp", "sb-east", ""])
@pytest.mark.asyncio
async def test_provision_rejects_source_and_malformed_codes(engine, code):
    with pytest.raises(InvalidTenantCode):
        await engine.provision_tenant(code)


@pytest.mark.asyncio
async def test_provision_wraps_create_database_failure(server, engine):
    server.admin_fail_on["CREATE DATABASE"] = FakeDatabaseError(
        "permission denied to create database", "42501"
    )

    with pytest.raises(TenantError, match="permission denied"):
        await engine.provision_tenant("SB")


@pytest.mark.asyncio
async def test_sync_all_is_idempotent(server, engine):
    await engine.provision_tenant("SB")
    executed_before = list(server.databases["sb_database"].executed)

    report = await engine.sync_all_tables_to_tenant("SB")

    assert (report.created, report.skipped, report.failed) == (0, 3, 0)
    assert report.state is OperationState.COMPLETED
    assert server.databases["sb_database"].executed == executed_before


@pytest.mark.asyncio
async def test_partial_failure_rolls_back_only_the_failing_table(server, engine):
    tenant = server.add_database("sb_database")
    tenant.fail_on["CREATE INDEX sb_orders_customer_idx"] = FakeDatabaseError(
        "access method does not support unique indexes", "0A000"
    )

    report = await engine.sync_all_tables_to_tenant("SB")

    assert (report.created, report.skipped, report.failed) == (2, 0, 1)
    assert report.state is OperationState.PARTIALLY_FAILED
    assert list(report.per_table_errors) == ["fp_orders"]
    assert "sb_orders_customer_idx" in report.per_table_errors["fp_orders"]
    assert sorted(tenant.tables) == ["sb_customers", "shared_lookup"]
    assert tenant.sequences == set()


@pytest.mark.asyncio
async def test_existing_index_is_ignored(server, engine):
    tenant = server.add_database("sb_database")
    tenant.indexes.add("sb_orders_customer_idx")

    created = await engine.sync_table("fp_orders", "SB")

    assert created is True
    assert "sb_orders" in tenant.tables


@pytest.mark.asyncio
async def test_table_created_concurrently_counts_as_skipped(server, engine, monkeypatch):
    tenant = server.add_database("sb_database")
    tenant.add_table("sb_orders", columns=[])

    async def never_exists(code, table_name):
        return False

    monkeypatch.setattr(engine._introspector, "table_exists", never_exists)

    assert await engine.sync_table("fp_orders", "SB") is False


@pytest.mark.asyncio
async def test_sync_table_requires_existing_tenant(engine):
    with pytest.raises(TenantNotFound):
        await engine.sync_table("fp_orders", "SB")


@pytest.mark.asyncio
async def test_sync_table_unknown_source_table(server, engine):
    server.add_database("sb_database")

    with pytest.raises(TableNotFound):
        await engine.sync_table("fp_missing", "SB")


@pytest.mark.asyncio
async def test_sync_table_failure_is_counted(server, engine, monkeypatch):
    tenant = server.add_database("sb_database")
    tenant.fail_on["CREATE INDEX"] = FakeDatabaseError("out of shared memory", "53200")
    outcomes = []
    monkeypatch.setattr(
        engine_module.replication_metrics,
        "record_table_outcome",
        lambda outcome, code: outcomes.append((outcome, code)),
    )

    with pytest.raises(DdlApplicationFailure):
        await engine.sync_table("fp_orders", "SB")

    assert outcomes == [("failed", "SB")]
    assert "sb_orders" not in tenant.tables


@pytest.mark.asyncio
async def test_unprefixed_tables_keep_their_name(server, engine):
    server.add_database("sb_database")

    assert await engine.sync_table("shared_lookup", "SB") is True
    assert "shared_lookup" in server.databases["sb_database"].tables


@pytest.mark.asyncio
async def test_statement_timeout_fails_table_and_rolls_back(server):
    engine = _engine(server, statement_timeout_seconds=0.05)
    tenant = server.add_database("sb_database")
    tenant.delay_on['CREATE TABLE "public"."sb_orders"'] = 1.0

    report = await engine.sync_all_tables_to_tenant("SB")

    assert (report.created, report.failed) == (2, 1)
    assert "timed out" in report.per_table_errors["fp_orders"]
    assert "sb_orders" not in tenant.tables
    assert tenant.sequences == set()


@pytest.mark.asyncio
async def test_operation_deadline_fails_remaining_tables(server, engine):
    tenant = server.add_database("sb_database")
    for table in ("sb_customers", "sb_orders", "shared_lookup"):
        tenant.delay_on[f'CREATE TABLE "public"."{table}"'] = 0.5

    report = await engine.sync_all_tables_to_tenant("SB", timeout_seconds=0.1)

    assert (report.created, report.failed) == (0, 3)
    assert "timed out" in report.per_table_errors["fp_customers"]
    assert report.per_table_errors["shared_lookup"] == "Operation deadline exceeded."
    assert tenant.tables == {}
    assert tenant.sequences == set()


@pytest.mark.asyncio
async def test_cancellation_rolls_back_in_flight_table(server, engine):
    tenant = server.add_database("sb_database")
    tenant.delay_on['CREATE TABLE "public"."sb_customers"'] = 1.0

    cancelled = []

    async def run():
        try:
            await engine.sync_all_tables_to_tenant("SB")
        except asyncio.CancelledError as exc:
            cancelled.append(exc)
            raise

    task = asyncio.create_task(run())
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert tenant.tables == {}
    assert not engine._connections.tenant_lock("SB").locked()
    report = cancelled[0].report
    assert report.state is OperationState.PARTIALLY_FAILED
    assert list(report.per_table_errors) == ["fp_customers"]
    assert "rolled back" in report.per_table_errors["fp_customers"]


@pytest.mark.asyncio
async def test_source_listing_failure_is_reported(server, engine, monkeypatch):
    server.add_database("sb_database")

    async def failing_fetch(sql, *params):
        raise FakeDatabaseError("connection was closed in the middle of operation", "08006")

    monkeypatch.setattr(server.databases["fp_database"], "fetch", failing_fetch)

    report = await engine.sync_all_tables_to_tenant("SB")

    assert not report.ok
    assert "connection was closed" in report.error
    assert report.total == 0


@pytest.mark.asyncio
async def test_decommission_closes_pool_terminates_sessions_then_drops(server, engine):
    await engine.provision_tenant("SB")
    server.databases["sb_database"].sessions = 2

    await engine.decommission_tenant("SB")

    sb_events = [event[0] for event in server.events if event[1] == "sb_database"]
    assert sb_events[-3:] == ["pool_closed", "terminate_sessions", "drop_database"]
    assert "sb_database" not in server.databases
    assert "sb_database" not in engine._connections.cached_databases()
    assert "sb_database" not in engine._connections._tenant_locks
    assert await engine.tenant_exists("SB") is False


@pytest.mark.asyncio
async def test_decommission_missing_tenant_raises(engine):
    with pytest.raises(TenantNotFound):
        await engine.decommission_tenant("SB")


@pytest.mark.asyncio
async def test_decommission_retries_while_database_in_use(server, engine, monkeypatch):
    server.add_database("sb_database")
    original = server.admin_execute
    attempts = []

    async def flaky_admin_execute(sql):
        if sql.startswith("DROP DATABASE"):
            attempts.append(sql)
            if len(attempts) == 1:
                raise FakeDatabaseError(
                    'database "sb_database" is being accessed by other users', "55006"
                )
        return await original(sql)

    monkeypatch.setattr(server, "admin_execute", flaky_admin_execute)

    await engine.decommission_tenant("SB")

    assert len(attempts) == 2
    assert [event[0] for event in server.events].count("terminate_sessions") == 2
    assert "sb_database" not in server.databases


@pytest.mark.asyncio
async def test_new_source_table_reaches_existing_tenants(server, engine):
    await engine.provision_tenant("SB")
    await engine.provision_tenant("NW")
    assert await engine.list_active_tenants() == ["NW", "SB"]

    server.databases["fp_database"].add_table(
        "fp_invoices",
        columns=[column("id", "integer", nullable=False), column("amount", "money")],
        primary_key=["id"],
    )
    reports = await engine.sync_table_to_all_tenants("fp_invoices")

    assert sorted(reports) == ["NW", "SB"]
    assert all(report.created == 1 for report in reports.values())
    assert "sb_invoices" in server.databases["sb_database"].tables
    assert "nw_invoices" in server.databases["nw_database"].tables

    await engine.decommission_tenant("SB")
    assert await engine.list_active_tenants() == ["NW"]


@pytest.mark.asyncio
async def test_provision_leaves_source_and_other_tenants_untouched(server, engine):
    tf = server.add_database("tf_database")
    tf.add_table("tf_orders", columns=[column("id", "integer")])
    source_tables = sorted(server.databases["fp_database"].tables)

    await engine.provision_tenant("SB")

    assert server.databases["fp_database"].executed == []
    assert sorted(server.databases["fp_database"].tables) == source_tables
    assert tf.executed == []
    assert list(tf.tables) == ["tf_orders"]
