from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace


@contextmanager
def traced_operation(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[Any]:
    """Open an OTEL span for an engine operation and record its status."""
    tracer = trace.get_tracer("schema_sync")
    with tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            yield span
            span.set_attribute("schema_sync.status", "ok")
        except BaseException:
            span.set_attribute("schema_sync.status", "error")
            raise
