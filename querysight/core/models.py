"""
Core data model

Plain dataclasses shared by the adapters, the schema analyzer, the
performance monitor, the insight engine and the database manager.
Everything here lives in process memory only.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from enum import Enum
import json


class KeyRole(Enum):
    """Key role of a column as reported by the engine catalog."""
    NONE = "none"
    PRIMARY = "primary"
    UNIQUE = "unique"
    INDEXED = "indexed"


class RelationshipOrigin(Enum):
    """How a relationship edge was obtained."""
    EXPLICIT = "explicit"                   # Declared in catalog metadata
    ID_SUFFIX = "id_suffix"                 # user_id -> users.id
    TABLE_PREFIX = "table_prefix"           # customers_ref -> customers.id
    SEMANTIC_PATTERN = "semantic_pattern"   # created_by -> users.id


class InsightType(Enum):
    """Insight classification."""
    TREND_ANALYSIS = "trend_analysis"
    COMPARISON = "comparison"
    ANOMALY_DETECTION = "anomaly_detection"
    RELATIONSHIP_ANALYSIS = "relationship_analysis"
    STATISTICAL = "statistical"


# Inferred edges are capped below explicit ones
MAX_INFERRED_CONFIDENCE = 0.9


@dataclass
class ColumnInfo:
    """Catalog description of a single column."""
    name: str
    data_type: str
    nullable: bool = True
    key_role: KeyRole = KeyRole.NONE
    comment: Optional[str] = None
    max_length: Optional[int] = None
    default_value: Optional[str] = None

    @property
    def is_primary_key(self) -> bool:
        return self.key_role == KeyRole.PRIMARY

    @property
    def key_marker(self) -> str:
        """Marker used in the prompt-oriented schema text."""
        return {
            KeyRole.PRIMARY: "[PRIMARY KEY]",
            KeyRole.UNIQUE: "[UNIQUE]",
            KeyRole.INDEXED: "[INDEXED]",
        }.get(self.key_role, "")


@dataclass
class RelationshipEdge:
    """A foreign-key-like edge between two table columns."""
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    confidence: float
    origin: RelationshipOrigin

    def __post_init__(self):
        if self.origin == RelationshipOrigin.EXPLICIT:
            if self.confidence != 1.0:
                raise ValueError("Explicit relationships always have confidence 1.0")
        elif not 0.0 <= self.confidence <= MAX_INFERRED_CONFIDENCE:
            raise ValueError(
                f"Inferred confidence must be within [0, {MAX_INFERRED_CONFIDENCE}]"
            )

    @classmethod
    def explicit(
        cls,
        source_table: str,
        source_column: str,
        target_table: str,
        target_column: str,
    ) -> "RelationshipEdge":
        """Edge read from catalog metadata."""
        return cls(
            source_table=source_table,
            source_column=source_column,
            target_table=target_table,
            target_column=target_column,
            confidence=1.0,
            origin=RelationshipOrigin.EXPLICIT,
        )

    @property
    def is_explicit(self) -> bool:
        return self.origin == RelationshipOrigin.EXPLICIT

    @property
    def key(self) -> tuple:
        """Identity of the edge, independent of how it was found."""
        return (
            self.source_table.lower(),
            self.source_column.lower(),
            self.target_table.lower(),
            self.target_column.lower(),
        )

    def join_hint(self) -> str:
        return (
            f"Consider JOIN {self.target_table} ON "
            f"{self.source_table}.{self.source_column} = "
            f"{self.target_table}.{self.target_column}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_table": self.source_table,
            "source_column": self.source_column,
            "target_table": self.target_table,
            "target_column": self.target_column,
            "confidence": self.confidence,
            "origin": self.origin.value,
        }


@dataclass
class TableSchema:
    """Ordered columns and explicit foreign keys of one table."""
    name: str
    columns: List[ColumnInfo] = field(default_factory=list)
    foreign_keys: List[RelationshipEdge] = field(default_factory=list)

    def get_column(self, name: str) -> Optional[ColumnInfo]:
        """Case-insensitive column lookup."""
        name_lower = name.lower()
        for column in self.columns:
            if column.name.lower() == name_lower:
                return column
        return None

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def primary_key_column(self) -> Optional[ColumnInfo]:
        """The first primary-key-like column: declared PK, else a column named id."""
        for column in self.columns:
            if column.is_primary_key:
                return column
        return self.get_column("id")


@dataclass
class TableSummary:
    """Entry of the engine's table list."""
    name: str
    description: str = ""
    estimated_row_count: int = 0


@dataclass
class Insight:
    """A derived, human-readable observation about a result set."""
    type: InsightType
    title: str
    description: str
    confidence: float
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "confidence": self.confidence,
            "details": self.details,
        }


@dataclass
class CacheEntry:
    """A cached query result."""
    key: str
    rows: List[Dict[str, Any]]
    insights: List[Insight]
    timestamp: float
    execution_time_ms: float = 0.0


@dataclass
class ExecutionSample:
    """One recorded execution of a query shape."""
    timestamp: float
    duration_ms: float
    row_count: int
    cache_hit: bool = False


@dataclass
class PerformanceRecord:
    """Rolling execution history and aggregates for one normalized query."""
    query_hash: str
    query: str
    executions: List[ExecutionSample] = field(default_factory=list)
    count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float("inf")
    max_duration_ms: float = 0.0
    total_rows: int = 0
    cache_hits: int = 0
    first_seen: Optional[float] = None
    last_seen: Optional[float] = None

    @property
    def avg_duration_ms(self) -> float:
        return self.total_duration_ms / self.count if self.count else 0.0

    @property
    def cache_hit_rate(self) -> float:
        return self.cache_hits / self.count if self.count else 0.0

    def record(self, sample: ExecutionSample, max_executions: int = 100):
        """Fold one execution into the aggregates and trim the history."""
        self.executions.append(sample)
        self.count += 1
        self.total_duration_ms += sample.duration_ms
        self.min_duration_ms = min(self.min_duration_ms, sample.duration_ms)
        self.max_duration_ms = max(self.max_duration_ms, sample.duration_ms)
        self.total_rows += sample.row_count
        if sample.cache_hit:
            self.cache_hits += 1
        if self.first_seen is None:
            self.first_seen = sample.timestamp
        self.last_seen = sample.timestamp

        if len(self.executions) > max_executions:
            self.executions = self.executions[-max_executions:]

    def to_dict(self, last_executions: Optional[int] = None) -> Dict[str, Any]:
        executions = self.executions
        if last_executions is not None:
            executions = executions[-last_executions:]
        return {
            "query_hash": self.query_hash,
            "query": self.query,
            "count": self.count,
            "total_duration_ms": self.total_duration_ms,
            "avg_duration_ms": self.avg_duration_ms,
            "min_duration_ms": self.min_duration_ms if self.count else 0.0,
            "max_duration_ms": self.max_duration_ms,
            "total_rows": self.total_rows,
            "cache_hits": self.cache_hits,
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "executions": [
                {
                    "timestamp": e.timestamp,
                    "duration_ms": e.duration_ms,
                    "row_count": e.row_count,
                    "cache_hit": e.cache_hit,
                }
                for e in executions
            ],
        }


@dataclass
class QueryResult:
    """Result of DatabaseManager.execute_safe_query."""
    data: List[Dict[str, Any]]
    insights: List[Insight] = field(default_factory=list)
    execution_time: float = 0.0  # milliseconds
    cached: bool = False

    @property
    def row_count(self) -> int:
        return len(self.data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "insights": [i.to_dict() for i in self.insights],
            "executionTime": self.execution_time,
            "cached": self.cached,
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert result to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, default=str)
