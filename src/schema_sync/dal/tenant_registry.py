import logging
from typing import List

from schema_sync.dal.connection_registry import ConnectionRegistry
from schema_sync.models import TenantDescriptor

logger = logging.getLogger(__name__)

SYSTEM_DATABASES = ("postgres", "template0", "template1")

LIST_TENANT_DATABASES_SQL = """
    SELECT datname
    FROM pg_database
    WHERE datname LIKE $1
      AND NOT datistemplate
      AND datname <> ALL($2::text[])
    ORDER BY datname
"""

DATABASE_EXISTS_SQL = "SELECT 1 FROM pg_database WHERE datname = $1"


def _like_suffix_pattern(suffix: str) -> str:
    escaped = suffix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}"


class TenantRegistry:
    """Discovers tenants from the hosting server's own catalog of databases.

    A tenant is active exactly when its physical database exists; no application-level
    tenant table is consulted.
    """

    def __init__(self, connections: ConnectionRegistry) -> None:
        """Bind the registry providing the maintenance connection."""
        self._connections = connections

    async def list_active_tenants(self) -> List[TenantDescriptor]:
        """List tenant databases, excluding system databases and the source tenant."""
        settings = self._connections.settings
        source = self._connections.source
        excluded = list(SYSTEM_DATABASES) + [source.database_name]
        async with self._connections.admin_connection() as conn:
            rows = await conn.fetch(
                LIST_TENANT_DATABASES_SQL,
                _like_suffix_pattern(settings.tenant_db_suffix),
                excluded,
            )

        tenants: List[TenantDescriptor] = []
        for row in rows:
            descriptor = TenantDescriptor.from_database_name(
                row["datname"], settings.tenant_db_suffix
            )
            if descriptor is None or descriptor.code == source.code:
                logger.debug("Ignoring non-tenant database %s", row["datname"])
                continue
            tenants.append(descriptor)
        return tenants

    async def tenant_exists(self, code: str) -> bool:
        """Return True when the tenant's physical database exists."""
        descriptor = self._connections.describe(code)
        async with self._connections.admin_connection() as conn:
            rows = await conn.fetch(DATABASE_EXISTS_SQL, descriptor.database_name)
        return len(rows) > 0
