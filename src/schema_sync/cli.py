import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional, Sequence

from dotenv import load_dotenv

from schema_sync.config import ReplicationSettings
from schema_sync.dal.connection_registry import ConnectionRegistry
from schema_sync.errors import TableError, TenantError
from schema_sync.models import SyncReport
from schema_sync.replication.engine import ReplicationEngine

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for every subcommand."""
    parser = argparse.ArgumentParser(
        prog="schema-sync", description="Replicate the source tenant's schema into tenants"
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    provision = subparsers.add_parser("provision", help="Create a tenant and clone all tables")
    provision.add_argument("tenant", help="Tenant code, e.g. SB")

    decommission = subparsers.add_parser("decommission", help="Drop a tenant's database")
    decommission.add_argument("tenant", help="Tenant code")

    exists = subparsers.add_parser("exists", help="Report whether a tenant database exists")
    exists.add_argument("tenant", help="Tenant code")

    subparsers.add_parser("list", help="List active tenants")

    sync_table = subparsers.add_parser("sync-table", help="Create one source table in tenants")
    sync_table.add_argument("table", help="Source table name, e.g. fp_orders")
    target = sync_table.add_mutually_exclusive_group(required=True)
    target.add_argument("--tenant", help="Single target tenant code")
    target.add_argument("--all", action="store_true", help="Every active tenant")

    sync_all = subparsers.add_parser("sync-all", help="Create every missing source table")
    sync_all.add_argument("--tenant", help="Limit to one tenant (default: every active tenant)")
    sync_all.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Overall deadline in seconds for a single-tenant run",
    )
    return parser


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _report_payload(report: SyncReport) -> Dict[str, Any]:
    return report.model_dump(mode="json")


def _reports_exit_code(reports: Dict[str, SyncReport]) -> int:
    return EXIT_OK if all(report.ok for report in reports.values()) else EXIT_FAILED


async def run_command(args: argparse.Namespace, engine: ReplicationEngine) -> int:
    """Execute one parsed subcommand and print its JSON result."""
    if args.command == "provision":
        report = await engine.provision_tenant(args.tenant)
        _emit(_report_payload(report))
        return EXIT_OK if report.ok else EXIT_FAILED

    if args.command == "decommission":
        await engine.decommission_tenant(args.tenant)
        _emit({"tenant": args.tenant.upper(), "decommissioned": True})
        return EXIT_OK

    if args.command == "exists":
        exists = await engine.tenant_exists(args.tenant)
        _emit({"tenant": args.tenant.upper(), "exists": exists})
        return EXIT_OK

    if args.command == "list":
        _emit({"tenants": await engine.list_active_tenants()})
        return EXIT_OK

    if args.command == "sync-table":
        if args.all:
            reports = await engine.sync_table_to_all_tenants(args.table)
            _emit({code: _report_payload(report) for code, report in reports.items()})
            return _reports_exit_code(reports)
        created = await engine.sync_table(args.table, args.tenant)
        _emit({"tenant": args.tenant.upper(), "table": args.table, "created": created})
        return EXIT_OK

    if args.command == "sync-all":
        if args.tenant:
            report = await engine.sync_all_tables_to_tenant(args.tenant, args.timeout)
            _emit(_report_payload(report))
            return EXIT_OK if report.ok else EXIT_FAILED
        reports = await engine.sync_all_tables_to_all_tenants()
        _emit({code: _report_payload(report) for code, report in reports.items()})
        return _reports_exit_code(reports)

    raise ValueError(f"Unknown command: {args.command}")


async def _run(args: argparse.Namespace, settings: ReplicationSettings) -> int:
    async with ConnectionRegistry(settings) as registry:
        return await run_command(args, ReplicationEngine(registry))


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the schema-sync CLI."""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return EXIT_USAGE

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        settings = ReplicationSettings.from_env()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_USAGE

    try:
        return asyncio.run(_run(args, settings))
    except (TenantError, TableError) as e:
        logger.error(f"{args.command} failed: {e}")
        _emit({"error": str(e), "type": e.__class__.__name__})
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
