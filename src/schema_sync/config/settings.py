"""Runtime settings for the replication engine."""

from dataclasses import dataclass, replace
from typing import Optional

from schema_sync.config.env import get_env_code, get_env_float, get_env_int, get_env_str


@dataclass(frozen=True)
class ReplicationSettings:
    """Connection and behaviour settings shared by every engine component."""

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: Optional[str] = None
    admin_database: str = "postgres"
    source_tenant_code: str = "FP"
    tenant_db_suffix: str = "_database"
    schema: str = "public"
    db_owner: Optional[str] = None
    db_encoding: str = "UTF8"
    pool_max_size: int = 5
    statement_timeout_seconds: float = 60.0
    sync_tenant_concurrency: int = 4
    application_name: str = "schema_sync"

    @classmethod
    def from_env(cls) -> "ReplicationSettings":
        """Load settings from environment variables."""
        user = get_env_str("DB_USER", "postgres")
        settings = cls(
            host=get_env_str("DB_HOST", "localhost"),
            port=get_env_int("DB_PORT", 5432),
            user=user,
            password=get_env_str("DB_PASS"),
            admin_database=get_env_str("ADMIN_DB_NAME", "postgres"),
            source_tenant_code=get_env_code("SOURCE_TENANT_CODE", "FP"),
            tenant_db_suffix=get_env_str("TENANT_DB_SUFFIX", "_database"),
            schema=get_env_str("TENANT_SCHEMA", "public"),
            db_owner=get_env_str("TENANT_DB_OWNER", user),
            db_encoding=get_env_str("TENANT_DB_ENCODING", "UTF8"),
            pool_max_size=get_env_int("POOL_MAX_SIZE", 5),
            statement_timeout_seconds=get_env_float("STATEMENT_TIMEOUT_SECONDS", 60.0),
            sync_tenant_concurrency=get_env_int("SYNC_TENANT_CONCURRENCY", 4),
            application_name=get_env_str("DB_APPLICATION_NAME", "schema_sync"),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Reject settings that would make every operation fail."""
        problems = []
        if not self.tenant_db_suffix:
            problems.append("TENANT_DB_SUFFIX must not be empty")
        if not self.schema:
            problems.append("TENANT_SCHEMA must not be empty")
        if not self.source_tenant_code:
            problems.append("SOURCE_TENANT_CODE must not be empty")
        if self.pool_max_size < 1:
            problems.append("POOL_MAX_SIZE must be at least 1")
        if self.sync_tenant_concurrency < 1:
            problems.append("SYNC_TENANT_CONCURRENCY must be at least 1")
        if self.statement_timeout_seconds < 0:
            problems.append("STATEMENT_TIMEOUT_SECONDS must not be negative")
        if problems:
            raise ValueError("Invalid replication settings: " + "; ".join(problems) + ".")

    @property
    def owner(self) -> str:
        """Role that owns newly provisioned tenant databases."""
        return self.db_owner or self.user

    def connect_kwargs(self, database: str) -> dict:
        """Return asyncpg connection keyword arguments for one database on the server."""
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": database,
            "server_settings": {"application_name": self.application_name},
        }

    def with_overrides(self, **changes) -> "ReplicationSettings":
        """Return a copy with selected fields replaced."""
        updated = replace(self, **changes)
        updated.validate()
        return updated
