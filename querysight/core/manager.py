"""
Database Manager

Owns the active engine adapter and wires the query cache, schema
analyzer, performance monitor and insight engine around a single
entry point, ``execute_safe_query``.
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Dict, Iterable, List, Optional, Union
import json
import logging
import re
import time

from querysight.config import EngineConfig, QuerySettings, QuerySightConfig
from querysight.core.adapters import create_adapter
from querysight.core.adapters.base import LIMIT_PATTERN, DatabaseAdapter
from querysight.core.insight_engine import InsightEngine
from querysight.core.models import Insight, QueryResult, TableSchema, TableSummary
from querysight.core.performance_monitor import QueryPerformanceMonitor
from querysight.core.query_cache import InMemoryQueryCache, QueryCache, build_cache_key
from querysight.core.schema_analyzer import SchemaAnalyzer
from querysight.exceptions import AccessDeniedError, NotConnectedError, QueryTimeoutError

logger = logging.getLogger(__name__)


# Hard ceiling on rows per query, independent of configuration
MAX_RESULTS_CEILING = 1000
RELEVANT_TABLES_LIMIT = 3
JOIN_KEYWORD_PATTERN = re.compile(r"\bjoin\b", re.IGNORECASE)
TRAILING_SEMICOLONS_PATTERN = re.compile(r"[\s;]+$")
TOKEN_SPLIT_PATTERN = re.compile(r"[^a-z0-9_]+")

SettingsLike = Union[QuerySettings, Dict[str, Any], None]


def add_limit_to_query(query: str, max_results: int) -> str:
    """
    Append ``LIMIT n`` unless the statement already ends with one.

    Only a trailing top-level LIMIT counts; one inside a subquery does not.
    An existing LIMIT above the hard ceiling is lowered to the ceiling.
    """
    clean_query = TRAILING_SEMICOLONS_PATTERN.sub("", query.strip())
    match = LIMIT_PATTERN.search(clean_query)
    if match is None:
        return f"{clean_query} LIMIT {min(max_results, MAX_RESULTS_CEILING)}"

    count_group = 2 if match.group(2) else 1
    if int(match.group(count_group)) <= MAX_RESULTS_CEILING:
        return clean_query
    start, end = match.span(count_group)
    return f"{clean_query[:start]}{MAX_RESULTS_CEILING}{clean_query[end:]}"


class DatabaseManager:
    """
    Orchestrates safe query execution against the active adapter.

    This module handles:
    - Adapter lifecycle (initialize, disconnect_all)
    - Cache lookup and storage
    - SELECT validation and allow-list enforcement
    - Row limit injection
    - Best-effort join hints, performance recording and insights
    - Schema text for prompt construction and table relevance ranking
    """

    def __init__(
        self,
        config: Optional[QuerySightConfig] = None,
        cache: Optional[QueryCache] = None,
        performance_monitor: Optional[QueryPerformanceMonitor] = None,
    ):
        """
        Initialize the manager.

        Args:
            config: Cache and monitor tuning; engine settings are given to initialize()
            cache: Query cache implementation (in-memory by default)
            performance_monitor: Monitor instance (created from config by default)
        """
        self.config = config or QuerySightConfig()
        self.cache = cache or InMemoryQueryCache(
            ttl=self.config.cache.ttl_seconds,
            max_entries=self.config.cache.max_entries,
        )
        self.performance_monitor = performance_monitor or QueryPerformanceMonitor(self.config.monitor)
        self.insight_engine = InsightEngine()
        self.schema_analyzer: Optional[SchemaAnalyzer] = None
        self.adapters: Dict[str, DatabaseAdapter] = {}
        self.current_adapter: Optional[DatabaseAdapter] = None
        self.engine_config: Optional[EngineConfig] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, engine_config: Optional[EngineConfig] = None) -> bool:
        """
        Connect the adapter for the configured engine and make it current.

        Raises:
            ConnectError: If the adapter cannot establish its pool
        """
        engine_config = engine_config or self.config.engine
        adapter = create_adapter(engine_config)
        adapter.connect()

        adapter_key = (
            f"{engine_config.kind.value}_{engine_config.host or 'localhost'}_"
            f"{engine_config.database or engine_config.db_path or ''}"
        )
        previous = self.adapters.get(adapter_key)
        if previous is not None and previous is not adapter:
            logger.info(f"Replacing existing adapter {adapter_key}")
            previous.disconnect()
        self.adapters[adapter_key] = adapter
        self.current_adapter = adapter
        self.engine_config = engine_config
        self.schema_analyzer = SchemaAnalyzer(adapter)

        logger.info(f"Database initialized: {adapter.type} - {engine_config.display_name}")
        return True

    def get_current_adapter(self) -> DatabaseAdapter:
        if self.current_adapter is None:
            raise NotConnectedError("No database adapter initialized")
        return self.current_adapter

    def get_schema_analyzer(self) -> SchemaAnalyzer:
        if self.schema_analyzer is None:
            self.schema_analyzer = SchemaAnalyzer(self.get_current_adapter())
        return self.schema_analyzer

    def disconnect_all(self):
        """Close every adapter pool. Run once, after request intake has stopped."""
        for adapter in self.adapters.values():
            adapter.disconnect()
        self.adapters.clear()
        self.current_adapter = None
        self.schema_analyzer = None
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        logger.info("All database connections closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect_all()

    # ------------------------------------------------------------------
    # Safe query execution
    # ------------------------------------------------------------------

    def execute_safe_query(
        self,
        query: str,
        settings: SettingsLike = None,
        timeout: Optional[float] = None,
    ) -> QueryResult:
        """
        Validate, authorize, limit and run a candidate SELECT query.

        Args:
            query: Untrusted query text
            settings: Allow-listed tables and row cap (QuerySettings or dict)
            timeout: Optional request deadline in seconds for the engine call

        Returns:
            QueryResult with rows, insights, execution time (ms) and cache flag

        Raises:
            RejectedQueryError: Deny-list match or non-SELECT statement
            AccessDeniedError: Query references tables outside the allow-list
            ExecutionError: Engine failure (QueryTimeoutError on deadline)
        """
        adapter = self.get_current_adapter()
        settings = QuerySettings.coerce(settings)

        cache_key = build_cache_key(query, settings)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Query cache hit")
            self._record_performance(query, 0.0, len(cached.rows), cache_hit=True)
            return QueryResult(
                data=cached.rows,
                insights=list(cached.insights),
                execution_time=0.0,
                cached=True,
            )

        validated_query = adapter.validate_select_query(query)

        tables_in_query = adapter.extract_table_names(validated_query)
        unauthorized = tables_in_query - settings.allow_list
        if unauthorized:
            raise AccessDeniedError(unauthorized)

        if len(tables_in_query) >= 2 and not JOIN_KEYWORD_PATTERN.search(validated_query):
            self._log_join_suggestions(tables_in_query, settings)

        final_query = add_limit_to_query(validated_query, settings.effective_max_results)

        start_time = time.perf_counter()
        rows = self._run_adapter_query(adapter, final_query, timeout)
        execution_time = (time.perf_counter() - start_time) * 1000

        self._record_performance(query, execution_time, len(rows), cache_hit=False)
        insights = self._generate_insights(query, rows, tables_in_query)
        self.cache.set(cache_key, rows, insights, execution_time)

        return QueryResult(
            data=rows,
            insights=insights,
            execution_time=execution_time,
            cached=False,
        )

    def _run_adapter_query(
        self, adapter: DatabaseAdapter, query: str, timeout: Optional[float]
    ) -> List[Dict[str, Any]]:
        if timeout is None:
            return adapter.execute_query(query)

        if self._executor is None:
            self._executor = ThreadPoolExecutor(thread_name_prefix="querysight")
        future = self._executor.submit(adapter.execute_query, query)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(f"Query exceeded {timeout}s deadline")
            raise QueryTimeoutError(f"Query timed out after {timeout} seconds")

    def _log_join_suggestions(self, tables: Iterable[str], settings: QuerySettings):
        """Advisory only; the query is never rewritten."""
        try:
            analyzer = self.get_schema_analyzer()
            analyzer.analyze_schema(settings.table_names)
            suggestions = analyzer.get_relationship_suggestions(tables)
            if suggestions:
                logger.info(f"Query optimization suggestions available: {len(suggestions)}")
                for suggestion in suggestions:
                    logger.info(suggestion["suggestion"])
        except Exception as e:
            logger.warning(f"Join suggestion lookup failed: {e}")

    def _record_performance(self, query: str, execution_time: float, row_count: int, cache_hit: bool):
        try:
            self.performance_monitor.record_query_performance(
                query, execution_time, row_count, cache_hit
            )
        except Exception as e:
            logger.warning(f"Performance recording failed: {e}")

    def _generate_insights(
        self, query: str, rows: List[Dict[str, Any]], tables: Iterable[str]
    ) -> List[Insight]:
        if not rows:
            return []
        try:
            schema = self._schemas_for(tables)
            return self.insight_engine.generate_insights(query, rows, schema)
        except Exception as e:
            logger.warning(f"Insight generation failed: {e}")
            return []

    def _schemas_for(self, tables: Iterable[str]) -> Dict[str, TableSchema]:
        """Schemas of the referenced tables, from the analyzer cache when possible."""
        cached = {name.lower(): schema for name, schema in self.get_schema_analyzer().schemas.items()}
        adapter = self.get_current_adapter()

        schemas = {}
        for table in tables:
            if "." in table:
                continue
            schema = cached.get(table)
            if schema is None:
                schema = adapter.get_table_schema(table)
            schemas[table] = schema
        return schemas

    # ------------------------------------------------------------------
    # Schema information
    # ------------------------------------------------------------------

    def get_enhanced_schema(self, settings: SettingsLike = None) -> str:
        """
        Schema text for the enabled tables, meant for embedding into a prompt.

        Returns:
            One paragraph per table with columns, explicit and implicit
            relationships and a sample row; empty string if no table is enabled
        """
        settings = QuerySettings.coerce(settings)
        enabled_tables = settings.table_names
        if not enabled_tables:
            return ""

        adapter = self.get_current_adapter()
        analyzer = self.get_schema_analyzer()

        schema_text = "Database Schema (use this to understand data relationships):\n"
        for table_name in enabled_tables:
            try:
                enhanced = analyzer.get_enhanced_schema(table_name, tables=enabled_tables)
                sample_data = adapter.get_sample_data(table_name, 3)
            except Exception as e:
                logger.error(f"Error getting schema for table {table_name}: {e}")
                continue

            schema_text += f"\nTable: {table_name}\n"
            schema_text += "Columns:\n"
            for col in enhanced["schema"].columns:
                length = f"({col.max_length})" if col.max_length else ""
                parts = [
                    f"  - {col.name}: {col.data_type}{length}",
                    "NULL" if col.nullable else "NOT NULL",
                ]
                if col.key_marker:
                    parts.append(col.key_marker)
                if col.comment:
                    parts.append(f"// {col.comment}")
                schema_text += " ".join(parts) + "\n"

            if enhanced["explicit_foreign_keys"]:
                schema_text += "Explicit Relationships:\n"
                for fk in enhanced["explicit_foreign_keys"]:
                    schema_text += f"  - {fk.source_column} -> {fk.target_table}.{fk.target_column}\n"

            if enhanced["implicit_foreign_keys"]:
                schema_text += "Implicit Relationships (detected):\n"
                for rel in enhanced["implicit_foreign_keys"]:
                    schema_text += (
                        f"  - {rel.source_column} -> {rel.target_table}.{rel.target_column} "
                        f"[confidence: {rel.confidence}]\n"
                    )

            if sample_data:
                schema_text += (
                    f"Sample data ({len(sample_data)} rows): "
                    f"{json.dumps(sample_data[0], default=str)}\n"
                )

        return schema_text

    def get_table_list(self) -> List[TableSummary]:
        return self.get_current_adapter().get_table_list()

    def get_table_count(self, table_name: str) -> int:
        return self.get_current_adapter().get_table_count(table_name)

    def get_database_type(self) -> str:
        return self.get_current_adapter().get_database_type()

    def build_schema_map(self, enabled_tables: Union[str, Iterable[str], None]) -> Dict[str, TableSchema]:
        """
        Fetch schemas for the given tables. Tables that fail are skipped.

        Args:
            enabled_tables: Comma-separated string or iterable of table names
        """
        if isinstance(enabled_tables, str):
            enabled_tables = enabled_tables.split(",")
        adapter = self.get_current_adapter()

        schema_map = {}
        for table in enabled_tables or []:
            table_name = table.strip()
            if not table_name:
                continue
            try:
                schema_map[table_name] = adapter.get_table_schema(table_name)
            except Exception as e:
                logger.error(f"Error building schema for {table_name}: {e}")
        return schema_map

    @staticmethod
    def find_relevant_tables(message: str, schema_map: Dict[str, TableSchema]) -> List[str]:
        """
        Rank tables by token overlap with free text.

        A table-name match scores 5, each matching column name 2 and each
        matching column comment 1. Returns at most the top 3 tables.
        """
        tokens = [t for t in TOKEN_SPLIT_PATTERN.split((message or "").lower()) if len(t) > 1]
        if not tokens:
            return []

        def overlaps(name: str) -> bool:
            return any(t in name or name in t for t in tokens)

        scores = []
        for table, schema in schema_map.items():
            score = 0
            if overlaps(table.lower()):
                score += 5
            for column in schema.columns:
                if overlaps(column.name.lower()):
                    score += 2
                if column.comment:
                    comment = column.comment.lower()
                    if any(t in comment for t in tokens):
                        score += 1
            if score > 0:
                scores.append((table, score))

        scores.sort(key=lambda item: item[1], reverse=True)
        return [table for table, _ in scores[:RELEVANT_TABLES_LIMIT]]

    def clear_schema_cache(self):
        """Invalidate analyzer results after an allow-list or schema change."""
        if self.schema_analyzer is not None:
            self.schema_analyzer.clear_cache()

    def clear_query_cache(self):
        self.cache.clear()

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_performance_report(self) -> Dict[str, Any]:
        return self.performance_monitor.get_performance_report()

    def get_optimization_suggestions(self, query: str) -> List[Dict[str, str]]:
        """Stored suggestions for a slow query, else fresh pattern checks."""
        stored = self.performance_monitor.get_suggestions_for(query)
        if stored:
            return stored
        record = self.performance_monitor.get_record(query)
        average = record.avg_duration_ms if record else 0.0
        return self.performance_monitor.generate_optimization_suggestions(query, average)

    def get_health_status(self) -> Dict[str, Any]:
        try:
            return self.get_current_adapter().health_check()
        except Exception as e:
            return {"status": "unhealthy", "error": str(e)}
