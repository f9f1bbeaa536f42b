"""Multi-tenant PostgreSQL schema replication."""

from schema_sync.config import ReplicationSettings
from schema_sync.errors import (
    DdlApplicationFailure,
    IntrospectionFailure,
    InvalidTenantCode,
    ReplicationError,
    StatementTimeoutError,
    TableError,
    TableNotFound,
    TenantAlreadyExists,
    TenantError,
    TenantNotFound,
)
from schema_sync.models import SyncReport, TenantDescriptor
from schema_sync.dal.connection_registry import ConnectionRegistry
from schema_sync.replication.engine import ReplicationEngine

__all__ = [
    "ConnectionRegistry",
    "DdlApplicationFailure",
    "IntrospectionFailure",
    "InvalidTenantCode",
    "ReplicationEngine",
    "ReplicationError",
    "ReplicationSettings",
    "StatementTimeoutError",
    "SyncReport",
    "TableError",
    "TableNotFound",
    "TenantAlreadyExists",
    "TenantDescriptor",
    "TenantError",
    "TenantNotFound",
]
