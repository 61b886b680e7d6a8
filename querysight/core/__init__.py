"""Core modules for QuerySight."""

from querysight.core.manager import DatabaseManager
from querysight.core.schema_analyzer import SchemaAnalyzer
from querysight.core.performance_monitor import QueryPerformanceMonitor
from querysight.core.insight_engine import InsightEngine
from querysight.core.query_cache import QueryCache, InMemoryQueryCache

__all__ = [
    "DatabaseManager",
    "SchemaAnalyzer",
    "QueryPerformanceMonitor",
    "InsightEngine",
    "QueryCache",
    "InMemoryQueryCache",
]
