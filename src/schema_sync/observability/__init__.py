from schema_sync.observability.metrics import OptionalMetrics, replication_metrics
from schema_sync.observability.tracing import traced_operation

__all__ = ["OptionalMetrics", "replication_metrics", "traced_operation"]
