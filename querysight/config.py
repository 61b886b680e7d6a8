"""
Configuration management for QuerySight.

Handles engine connection settings, per-request query settings,
and tuning for the query cache and performance monitor.
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Mapping, FrozenSet
from enum import Enum
import json
import os

import yaml
from sqlalchemy.engine import URL


PASSWORD_ENV = "QUERYSIGHT_DB_PASSWORD"
DEFAULT_MAX_RESULTS = 100


class EngineType(Enum):
    """Supported relational engines."""
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"

    @classmethod
    def parse(cls, value: Any) -> "EngineType":
        """Resolve an engine name, accepting common aliases."""
        if isinstance(value, EngineType):
            return value
        name = str(value or "mysql").strip().lower()
        if name == "postgres":
            name = "postgresql"
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unsupported database type: {name}")


DEFAULT_PORTS = {
    EngineType.MYSQL: 3306,
    EngineType.POSTGRESQL: 5432,
}


@dataclass(frozen=True)
class EngineConfig:
    """Engine connection configuration. Immutable once an adapter holds it."""
    kind: EngineType = EngineType.MYSQL
    host: Optional[str] = "localhost"
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    db_path: Optional[str] = None  # For SQLite
    pool_size: int = 5
    max_overflow: int = 10
    connect_timeout: int = 10  # seconds
    statement_timeout_ms: int = 30000

    def get_connection_url(self) -> URL:
        """Generate the SQLAlchemy connection URL."""
        if self.kind == EngineType.SQLITE:
            return URL.create("sqlite", database=self.db_path or self.database or ":memory:")

        drivername = {
            EngineType.MYSQL: "mysql+pymysql",
            EngineType.POSTGRESQL: "postgresql+psycopg2",
        }.get(self.kind)
        if drivername is None:
            raise ValueError(f"Unsupported database type: {self.kind}")

        return URL.create(
            drivername,
            username=self.username,
            password=self.password,
            host=self.host or "localhost",
            port=self.port or DEFAULT_PORTS[self.kind],
            database=self.database,
        )

    @property
    def display_name(self) -> str:
        """Database name used in log messages (never includes credentials)."""
        if self.kind == EngineType.SQLITE:
            return self.db_path or self.database or ":memory:"
        return f"{self.host or 'localhost'}/{self.database or ''}"


@dataclass
class CacheConfig:
    """Query result cache configuration."""
    ttl_seconds: float = 60.0
    max_entries: int = 100  # Soft bound; expired entries are swept past this


@dataclass
class MonitorConfig:
    """Query performance monitor configuration."""
    slow_query_threshold_ms: float = 1000.0
    large_result_threshold_ms: float = 5000.0
    max_executions: int = 100  # Per-query execution history kept
    report_limit: int = 10


@dataclass(frozen=True)
class QuerySettings:
    """
    Per-request settings supplied by the caller.

    ``enabled_tables`` is the comma-separated allow-list and the only
    authorization input this layer trusts. It is never persisted.
    """
    enabled_tables: str = ""
    max_results: int = DEFAULT_MAX_RESULTS

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "QuerySettings":
        """Build settings from a caller-supplied dictionary."""
        data = data or {}
        return cls(
            enabled_tables=str(data.get("enabled_tables") or ""),
            max_results=_parse_max_results(data.get("max_results")),
        )

    @classmethod
    def coerce(cls, settings: Any) -> "QuerySettings":
        """Accept either a QuerySettings instance or a plain mapping."""
        if isinstance(settings, QuerySettings):
            return settings
        return cls.from_mapping(settings)

    @property
    def table_names(self) -> List[str]:
        """Enabled table names as written by the caller, blanks dropped."""
        return [t.strip() for t in self.enabled_tables.split(",") if t.strip()]

    @property
    def allow_list(self) -> FrozenSet[str]:
        """Lower-cased set of tables this request may touch."""
        return frozenset(t.lower() for t in self.table_names)

    @property
    def effective_max_results(self) -> int:
        return _parse_max_results(self.max_results)

    def cache_token(self) -> str:
        """Deterministic serialization used as part of the cache key."""
        return json.dumps(
            {"enabled_tables": self.enabled_tables, "max_results": self.max_results},
            sort_keys=True,
        )


def _parse_max_results(value: Any) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return DEFAULT_MAX_RESULTS
    return parsed if parsed > 0 else DEFAULT_MAX_RESULTS


@dataclass
class QuerySightConfig:
    """Main configuration container."""
    engine: EngineConfig = field(default_factory=EngineConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    verbose: bool = False

    @classmethod
    def from_yaml(cls, path: str) -> "QuerySightConfig":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuerySightConfig":
        """Create config from dictionary."""
        db_data = data.get("database", {}) or {}
        engine = EngineConfig(
            kind=EngineType.parse(db_data.get("type", "mysql")),
            host=db_data.get("host", "localhost"),
            port=db_data.get("port"),
            username=db_data.get("username") or db_data.get("user"),
            password=db_data.get("password") or os.environ.get(PASSWORD_ENV),
            database=db_data.get("database"),
            db_path=db_data.get("path"),
            pool_size=db_data.get("pool_size", 5),
            max_overflow=db_data.get("max_overflow", 10),
            connect_timeout=db_data.get("connect_timeout", 10),
            statement_timeout_ms=db_data.get("statement_timeout_ms", 30000),
        )

        cache_data = data.get("cache", {}) or {}
        cache = CacheConfig(
            ttl_seconds=cache_data.get("ttl_seconds", 60.0),
            max_entries=cache_data.get("max_entries", 100),
        )

        monitor_data = data.get("monitor", {}) or {}
        monitor = MonitorConfig(
            slow_query_threshold_ms=monitor_data.get("slow_query_threshold_ms", 1000.0),
            large_result_threshold_ms=monitor_data.get("large_result_threshold_ms", 5000.0),
            max_executions=monitor_data.get("max_executions", 100),
            report_limit=monitor_data.get("report_limit", 10),
        )

        return cls(
            engine=engine,
            cache=cache,
            monitor=monitor,
            verbose=data.get("verbose", False),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (credentials omitted)."""
        return {
            "database": {
                "type": self.engine.kind.value,
                "host": self.engine.host,
                "port": self.engine.port,
                "database": self.engine.database,
                "path": self.engine.db_path,
            },
            "cache": {
                "ttl_seconds": self.cache.ttl_seconds,
                "max_entries": self.cache.max_entries,
            },
            "monitor": {
                "slow_query_threshold_ms": self.monitor.slow_query_threshold_ms,
                "max_executions": self.monitor.max_executions,
            },
        }


def create_default_config(
    db_type: str,
    db_path: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    database: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> QuerySightConfig:
    """Factory function to create a default configuration."""

    engine = EngineConfig(
        kind=EngineType.parse(db_type),
        db_path=db_path,
        host=host or "localhost",
        port=port,
        database=database,
        username=username,
        password=password or os.environ.get(PASSWORD_ENV),
    )

    return QuerySightConfig(engine=engine)
