"""Engine adapters for QuerySight."""

from typing import Dict, Type

from querysight.config import EngineConfig, EngineType
from querysight.core.adapters.base import DatabaseAdapter
from querysight.core.adapters.mysql import MySQLAdapter
from querysight.core.adapters.postgresql import PostgreSQLAdapter
from querysight.core.adapters.sqlite import SQLiteAdapter


ADAPTERS: Dict[EngineType, Type[DatabaseAdapter]] = {
    EngineType.MYSQL: MySQLAdapter,
    EngineType.POSTGRESQL: PostgreSQLAdapter,
    EngineType.SQLITE: SQLiteAdapter,
}


def create_adapter(config: EngineConfig) -> DatabaseAdapter:
    """Build the adapter registered for the configured engine kind."""
    adapter_class = ADAPTERS.get(config.kind)
    if adapter_class is None:
        raise ValueError(f"Unsupported database type: {config.kind}")
    return adapter_class(config)


__all__ = [
    "DatabaseAdapter",
    "MySQLAdapter",
    "PostgreSQLAdapter",
    "SQLiteAdapter",
    "create_adapter",
]
