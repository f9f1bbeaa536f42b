"""Catalog and connection access for tenant databases."""

from .catalog_introspector import CatalogIntrospector
from .connection_registry import ConnectionRegistry
from .error_classification import ErrorCategory, classify_ddl_error, is_already_exists
from .tenant_registry import TenantRegistry
from .timeouts import OperationTimeoutError, run_with_timeout

__all__ = [
    "CatalogIntrospector",
    "ConnectionRegistry",
    "ErrorCategory",
    "OperationTimeoutError",
    "TenantRegistry",
    "classify_ddl_error",
    "is_already_exists",
    "run_with_timeout",
]
