"""Unit test environment helpers."""

import pytest

_REPLICATION_ENV = (
    "DB_HOST",
    "DB_PORT",
    "DB_USER",
    "DB_PASS",
    "ADMIN_DB_NAME",
    "SOURCE_TENANT_CODE",
    "TENANT_DB_SUFFIX",
    "TENANT_SCHEMA",
    "TENANT_DB_OWNER",
    "TENANT_DB_ENCODING",
    "POOL_MAX_SIZE",
    "STATEMENT_TIMEOUT_SECONDS",
    "SYNC_TENANT_CONCURRENCY",
    "DB_APPLICATION_NAME",
    "SCHEMA_SYNC_METRICS_ENABLED",
    "OTEL_EXPORTER_OTLP_ENDPOINT",
    "OTEL_EXPORTER_OTLP_METRICS_ENDPOINT",
)


@pytest.fixture(autouse=True)
def _minimal_env(monkeypatch):
    """Run unit tests against default settings with metrics disabled."""
    for name in _REPLICATION_ENV:
        monkeypatch.delenv(name, raising=False)
    yield
