"""Optional OTEL metrics for replication runs.

Metrics are emitted only when ``SCHEMA_SYNC_METRICS_ENABLED`` is truthy, or, when that
variable is unset, when an OTLP exporter endpoint is configured.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from opentelemetry import metrics

from schema_sync.config.env import get_env_bool

logger = logging.getLogger(__name__)

TABLES_CREATED = "schema_sync.tables.created"
TABLES_SKIPPED = "schema_sync.tables.skipped"
TABLES_FAILED = "schema_sync.tables.failed"
STATEMENTS_IGNORED = "schema_sync.statements.ignored"
TENANT_SYNC_DURATION = "schema_sync.tenant.sync_duration_seconds"

_OTLP_ENDPOINT_VARS = ("OTEL_EXPORTER_OTLP_ENDPOINT", "OTEL_EXPORTER_OTLP_METRICS_ENDPOINT")


def _exporter_configured() -> bool:
    """True when an OTLP endpoint is set and metric export is not switched off."""
    exporter = (os.getenv("OTEL_METRICS_EXPORTER") or "").strip().lower()
    if exporter == "none" or get_env_bool("OTEL_DISABLE_EXPORTER", False):
        return False
    return any((os.getenv(var) or "").strip() for var in _OTLP_ENDPOINT_VARS)


def metrics_enabled(switch_var: str) -> bool:
    """An explicit ``switch_var`` wins; otherwise follow the exporter configuration."""
    if os.getenv(switch_var) is None:
        return _exporter_configured()
    try:
        return bool(get_env_bool(switch_var))
    except ValueError as exc:
        logger.warning("Ignoring metrics switch: %s", exc)
        return False


class OptionalMetrics:
    """Lazily created OTEL instruments keyed by name."""

    def __init__(self, meter_name: str, enabled_env_var: str) -> None:
        """Bind the meter name and the enablement variable."""
        self.meter_name = meter_name
        self.enabled_env_var = enabled_env_var
        self._meter: Any = None
        self._instruments: Dict[str, Any] = {}

    @property
    def enabled(self) -> bool:
        return metrics_enabled(self.enabled_env_var)

    def _instrument(self, name: str, factory: str, description: str, unit: str):
        instrument = self._instruments.get(name)
        if instrument is None:
            if self._meter is None:
                self._meter = metrics.get_meter(self.meter_name)
            instrument = getattr(self._meter, factory)(
                name=name, description=description, unit=unit
            )
            self._instruments[name] = instrument
        return instrument

    def add_counter(
        self,
        name: str,
        value: int = 1,
        *,
        description: str = "",
        attributes: Optional[Dict[str, str]] = None,
    ) -> None:
        """Increment counter ``name``; a no-op while metrics are off."""
        if not self.enabled:
            return
        try:
            counter = self._instrument(name, "create_counter", description, "1")
            counter.add(int(value), dict(attributes or {}))
        except Exception as exc:
            logger.debug("Dropped counter %s: %s", name, exc)

    def record_histogram(
        self,
        name: str,
        value: float,
        *,
        description: str = "",
        unit: str = "s",
        attributes: Optional[Dict[str, str]] = None,
    ) -> None:
        """Record one observation on histogram ``name``; a no-op while metrics are off."""
        if not self.enabled:
            return
        try:
            histogram = self._instrument(name, "create_histogram", description, unit)
            histogram.record(float(value), dict(attributes or {}))
        except Exception as exc:
            logger.debug("Dropped histogram %s: %s", name, exc)

    def record_table_outcome(self, outcome: str, tenant: str) -> None:
        """Count one table as ``created``, ``skipped`` or ``failed`` for a tenant."""
        name = {
            "created": TABLES_CREATED,
            "skipped": TABLES_SKIPPED,
            "failed": TABLES_FAILED,
        }[outcome]
        self.add_counter(
            name,
            description=f"Tables {outcome} during tenant synchronization",
            attributes={"tenant": tenant},
        )

    def record_ignored_statement(self, kind: str, tenant: str) -> None:
        self.add_counter(
            STATEMENTS_IGNORED,
            description="DDL statements skipped because the object already existed",
            attributes={"tenant": tenant, "kind": kind},
        )

    def record_tenant_duration(self, seconds: float, tenant: str, state: str) -> None:
        self.record_histogram(
            TENANT_SYNC_DURATION,
            seconds,
            description="Wall time of one tenant synchronization",
            attributes={"tenant": tenant, "state": state},
        )


replication_metrics = OptionalMetrics(
    meter_name="schema-sync",
    enabled_env_var="SCHEMA_SYNC_METRICS_ENABLED",
)
