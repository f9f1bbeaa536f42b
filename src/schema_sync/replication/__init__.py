from schema_sync.replication.engine import ReplicationEngine, StatementOutcome

__all__ = ["ReplicationEngine", "StatementOutcome"]
