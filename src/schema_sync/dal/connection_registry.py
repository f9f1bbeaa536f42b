import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import asyncpg

from schema_sync.config import ReplicationSettings
from schema_sync.dal.timeouts import OperationTimeoutError, run_with_timeout
from schema_sync.models import TenantDescriptor

logger = logging.getLogger(__name__)

PoolFactory = Callable[..., Awaitable[Any]]

POOL_CLOSE_TIMEOUT_SECONDS = 10.0


class ConnectionRegistry:
    """Owns one lazily created asyncpg pool per tenant database.

    Pools are created with ``min_size=0`` so no connection is opened until the first
    query; acquiring a pool for a database that does not exist only fails on first use.
    The registry also hands out one ``asyncio.Lock`` per tenant database, held by the
    engine for the duration of every structural operation on that tenant.
    """

    def __init__(
        self,
        settings: ReplicationSettings,
        pool_factory: Optional[PoolFactory] = None,
    ) -> None:
        """Bind settings and the pool factory (``asyncpg.create_pool`` by default)."""
        self._settings = settings
        self._pool_factory = pool_factory or asyncpg.create_pool
        self._pools: Dict[str, Any] = {}
        self._tenant_locks: Dict[str, asyncio.Lock] = {}
        self._guard = asyncio.Lock()

    @property
    def settings(self) -> ReplicationSettings:
        return self._settings

    @property
    def source(self) -> TenantDescriptor:
        """Descriptor of the source tenant."""
        return self.describe(self._settings.source_tenant_code)

    def describe(self, code: str) -> TenantDescriptor:
        """Derive a tenant's descriptor using the configured database suffix."""
        return TenantDescriptor.from_code(code, self._settings.tenant_db_suffix)

    def cached_databases(self) -> list[str]:
        return sorted(self._pools)

    async def acquire(self, code: str):
        """Return the cached pool for a tenant, creating it on first use."""
        return await self._pool_for(self.describe(code).database_name)

    async def release(self, code: str) -> None:
        """Close and evict a tenant's pool; no-op when none is cached."""
        database_name = self.describe(code).database_name
        async with self._guard:
            pool = self._pools.pop(database_name, None)
        if pool is None:
            return
        await self._close_pool(database_name, pool)

    async def close_all(self) -> None:
        """Close every cached pool, including the maintenance database pool."""
        async with self._guard:
            pools = list(self._pools.items())
            self._pools.clear()
        for database_name, pool in pools:
            await self._close_pool(database_name, pool)

    @asynccontextmanager
    async def connection(self, code: str) -> AsyncIterator[Any]:
        """Yield a pooled connection to a tenant database."""
        pool = await self.acquire(code)
        async with pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def admin_connection(self) -> AsyncIterator[Any]:
        """Yield a connection to the maintenance database used for CREATE/DROP DATABASE."""
        pool = await self._pool_for(self._settings.admin_database)
        async with pool.acquire() as conn:
            yield conn

    def tenant_lock(self, code: str) -> asyncio.Lock:
        """Return the lock serializing structural operations on one tenant."""
        database_name = self.describe(code).database_name
        lock = self._tenant_locks.get(database_name)
        if lock is None:
            lock = asyncio.Lock()
            self._tenant_locks[database_name] = lock
        return lock

    def discard_tenant_lock(self, code: str) -> None:
        """Forget a tenant's lock once its database is gone; a held lock is kept."""
        database_name = self.describe(code).database_name
        lock = self._tenant_locks.get(database_name)
        if lock is not None and not lock.locked():
            del self._tenant_locks[database_name]

    async def __aenter__(self) -> "ConnectionRegistry":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close_all()

    async def _pool_for(self, database_name: str):
        async with self._guard:
            pool = self._pools.get(database_name)
            if pool is None:
                pool = await self._pool_factory(
                    min_size=0,
                    max_size=self._settings.pool_max_size,
                    **self._settings.connect_kwargs(database_name),
                )
                self._pools[database_name] = pool
                logger.info(
                    "Created pool for database %s",
                    database_name,
                    extra={"event": "pool_created", "database": database_name},
                )
            return pool

    async def _close_pool(self, database_name: str, pool) -> None:
        try:
            await run_with_timeout(
                pool.close,
                POOL_CLOSE_TIMEOUT_SECONDS,
                cancel=pool.terminate,
                operation_name=f"close pool {database_name}",
            )
        except OperationTimeoutError:
            logger.warning(
                "Pool for %s did not close gracefully; terminated",
                database_name,
                extra={"event": "pool_terminated", "database": database_name},
            )
        logger.info(
            "Closed pool for database %s",
            database_name,
            extra={"event": "pool_closed", "database": database_name},
        )
