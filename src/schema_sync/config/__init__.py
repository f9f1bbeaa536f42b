from schema_sync.config.settings import ReplicationSettings

__all__ = ["ReplicationSettings"]
