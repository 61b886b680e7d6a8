"""
Query Performance Monitor

Tracks execution time and result size per normalized query shape,
flags slow queries and attaches advisory optimization suggestions.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import hashlib
import logging
import re
import threading
import time

from querysight.config import MonitorConfig
from querysight.core.models import ExecutionSample, PerformanceRecord

logger = logging.getLogger(__name__)


TREND_WINDOWS = (
    ("1 hour", 3600),
    ("1 day", 86400),
    ("1 week", 604800),
)
QUERY_PREVIEW_LENGTH = 100


def normalize_for_hash(query: str) -> str:
    """Lower-case, collapse whitespace and drop a trailing semicolon."""
    normalized = re.sub(r"\s+", " ", (query or "").lower())
    normalized = re.sub(r"\s*;\s*$", "", normalized)
    return normalized.strip()


def generate_query_hash(query: str) -> str:
    return hashlib.sha1(normalize_for_hash(query).encode("utf-8")).hexdigest()[:16]


def _preview(query: str) -> str:
    if len(query) <= QUERY_PREVIEW_LENGTH:
        return query
    return query[:QUERY_PREVIEW_LENGTH] + "..."


class QueryPerformanceMonitor:
    """
    Records query executions and builds performance reports.

    This module handles:
    - Per-query-shape aggregates (count, total/avg/min/max duration, rows, cache hits)
    - Slow query detection and optimization suggestions
    - Summary, top-N, cache and trend reports
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the monitor.

        Args:
            config: Thresholds and history limits
            clock: Wall-clock time source in seconds (injectable for tests)
        """
        self.config = config or MonitorConfig()
        self.clock = clock
        self._records: Dict[str, PerformanceRecord] = {}
        self._suggestions: Dict[str, List[Dict[str, str]]] = {}
        self._lock = threading.Lock()

    @property
    def slow_query_threshold(self) -> float:
        return self.config.slow_query_threshold_ms

    def record_query_performance(
        self,
        query: str,
        execution_time: float,
        result_count: int,
        cache_hit: bool = False,
    ) -> str:
        """
        Fold one execution into its query bucket.

        Args:
            query: Query text as executed
            execution_time: Duration in milliseconds
            result_count: Rows returned
            cache_hit: Whether the result came from the cache

        Returns:
            The bucket's query hash
        """
        query_hash = generate_query_hash(query)
        sample = ExecutionSample(
            timestamp=self.clock(),
            duration_ms=float(execution_time),
            row_count=int(result_count),
            cache_hit=cache_hit,
        )

        with self._lock:
            record = self._records.get(query_hash)
            if record is None:
                record = PerformanceRecord(query_hash=query_hash, query=query)
                self._records[query_hash] = record
            record.record(sample, self.config.max_executions)

        if execution_time > self.slow_query_threshold:
            self._handle_slow_query(query_hash, query, execution_time)

        return query_hash

    def _handle_slow_query(self, query_hash: str, query: str, execution_time: float):
        logger.warning(f"Slow query detected ({execution_time:.0f}ms): {_preview(query)}")
        suggestions = self.generate_optimization_suggestions(query, execution_time)
        with self._lock:
            self._suggestions[query_hash] = suggestions

    def generate_optimization_suggestions(
        self, query: str, execution_time: float = 0.0
    ) -> List[Dict[str, str]]:
        """
        Pattern checks on the raw query text.

        Returns:
            List of suggestion dictionaries (type, priority, description, suggestion)
        """
        suggestions = []
        lower_query = (query or "").lower()

        if re.search(r"\bwhere\b", lower_query) and not re.search(r"\bindex\b", lower_query):
            suggestions.append({
                "type": "missing_index",
                "priority": "high",
                "description": "Consider adding indexes on WHERE clause columns",
                "suggestion": "Create indexes on frequently filtered columns",
            })

        if re.search(r"\bjoin\b", lower_query) and not re.search(r"\busing\b", lower_query):
            suggestions.append({
                "type": "join_optimization",
                "priority": "medium",
                "description": "JOIN operations could be optimized",
                "suggestion": "Ensure JOIN columns are indexed and consider using explicit JOIN syntax",
            })

        if execution_time > self.config.large_result_threshold_ms:
            suggestions.append({
                "type": "large_result_set",
                "priority": "high",
                "description": "Query returning large result set",
                "suggestion": "Add LIMIT clause or refine WHERE conditions to reduce result size",
            })

        if not re.search(r"\blimit\b", lower_query):
            suggestions.append({
                "type": "missing_limit",
                "priority": "medium",
                "description": "Query missing LIMIT clause",
                "suggestion": "Add LIMIT clause to prevent large result sets",
            })

        if re.search(r"\bselect\b.*\(\s*select\b", lower_query, re.DOTALL):
            suggestions.append({
                "type": "subquery_optimization",
                "priority": "medium",
                "description": "Subquery detected that could be optimized",
                "suggestion": "Consider rewriting subqueries as JOINs or using EXISTS instead of IN",
            })

        if re.search(r"\bgroup\s+by\b", lower_query) and not re.search(r"\border\s+by\b", lower_query):
            suggestions.append({
                "type": "group_by_optimization",
                "priority": "low",
                "description": "GROUP BY without ORDER BY",
                "suggestion": "Consider adding ORDER BY to improve GROUP BY performance",
            })

        return suggestions

    def get_suggestions_for(self, query: str) -> List[Dict[str, str]]:
        """Suggestions stored for a query's bucket, if it was ever slow."""
        with self._lock:
            return list(self._suggestions.get(generate_query_hash(query), []))

    def get_record(self, query: str) -> Optional[PerformanceRecord]:
        with self._lock:
            return self._records.get(generate_query_hash(query))

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def _snapshot(self):
        with self._lock:
            return list(self._records.values()), dict(self._suggestions)

    def get_performance_report(self) -> Dict[str, Any]:
        """Full diagnostics report."""
        records, suggestions = self._snapshot()
        return {
            "summary": self._summary(records),
            "slow_queries": self._slow_queries(records, suggestions),
            "top_queries": self._top_queries(records),
            "optimization_suggestions": self._grouped_suggestions(records, suggestions),
            "cache_performance": self._cache_performance(records),
            "trends": self._trends(records),
        }

    def _is_slow(self, record: PerformanceRecord) -> bool:
        return record.avg_duration_ms > self.slow_query_threshold

    def _summary(self, records: List[PerformanceRecord]) -> Dict[str, Any]:
        total_executions = sum(r.count for r in records)
        total_time = sum(r.total_duration_ms for r in records)
        total_hits = sum(r.cache_hits for r in records)
        slow_count = sum(1 for r in records if self._is_slow(r))

        return {
            "total_queries": len(records),
            "total_executions": total_executions,
            "average_execution_time": total_time / total_executions if total_executions else 0.0,
            "total_results": sum(r.total_rows for r in records),
            "cache_hit_rate": total_hits / total_executions if total_executions else 0.0,
            "slow_query_count": slow_count,
            "slow_query_rate": slow_count / len(records) if records else 0.0,
        }

    def _slow_queries(
        self,
        records: List[PerformanceRecord],
        suggestions: Dict[str, List[Dict[str, str]]],
    ) -> List[Dict[str, Any]]:
        slow = [
            {
                "query_hash": r.query_hash,
                "query": _preview(r.query),
                "average_execution_time": r.avg_duration_ms,
                "max_execution_time": r.max_duration_ms,
                "executions": r.count,
                "suggestions": suggestions.get(r.query_hash, []),
            }
            for r in records
            if self._is_slow(r)
        ]
        slow.sort(key=lambda q: q["average_execution_time"], reverse=True)
        return slow[:self.config.report_limit]

    def _top_queries(self, records: List[PerformanceRecord]) -> List[Dict[str, Any]]:
        ordered = sorted(records, key=lambda r: r.count, reverse=True)
        return [
            {
                "query_hash": r.query_hash,
                "query": _preview(r.query),
                "executions": r.count,
                "average_execution_time": r.avg_duration_ms,
                "total_execution_time": r.total_duration_ms,
                "cache_hit_rate": r.cache_hit_rate,
            }
            for r in ordered[:self.config.report_limit]
        ]

    def _grouped_suggestions(
        self,
        records: List[PerformanceRecord],
        suggestions: Dict[str, List[Dict[str, str]]],
    ) -> List[Dict[str, Any]]:
        """Suggestions grouped by type, most frequent first."""
        by_hash = {r.query_hash: r for r in records}
        grouped: Dict[str, Dict[str, Any]] = {}

        for query_hash, items in suggestions.items():
            record = by_hash.get(query_hash)
            if record is None:
                continue
            for item in items:
                group = grouped.setdefault(item["type"], {
                    "type": item["type"],
                    "count": 0,
                    "priority": item["priority"],
                    "description": item["description"],
                    "suggestion": item["suggestion"],
                    "total_impact": 0.0,
                    "queries": [],
                })
                group["count"] += 1
                group["total_impact"] += record.avg_duration_ms
                group["queries"].append({
                    "query_hash": query_hash,
                    "query": _preview(record.query),
                    "impact": record.avg_duration_ms,
                })

        return sorted(grouped.values(), key=lambda g: g["count"], reverse=True)

    def _cache_performance(self, records: List[PerformanceRecord]) -> Dict[str, Any]:
        total_hits = sum(r.cache_hits for r in records)
        total_executions = sum(r.count for r in records)
        by_rate = sorted(
            (r for r in records if r.count),
            key=lambda r: r.cache_hit_rate,
            reverse=True,
        )
        return {
            "overall_cache_hit_rate": total_hits / total_executions if total_executions else 0.0,
            "total_cache_hits": total_hits,
            "total_executions": total_executions,
            "top_cached_queries": [
                {
                    "query_hash": r.query_hash,
                    "query": _preview(r.query),
                    "cache_hit_rate": r.cache_hit_rate,
                    "executions": r.count,
                    "cache_hits": r.cache_hits,
                }
                for r in by_rate[:5]
            ],
        }

    def _trends(self, records: List[PerformanceRecord]) -> Dict[str, List[Dict[str, Any]]]:
        """Execution time, volume and cache-hit rate over recent windows."""
        now = self.clock()
        trends: Dict[str, List[Dict[str, Any]]] = {
            "execution_time_trend": [],
            "query_volume_trend": [],
            "cache_hit_rate_trend": [],
        }

        for label, window_seconds in TREND_WINDOWS:
            window_start = now - window_seconds
            samples = [
                e for r in records for e in r.executions if e.timestamp >= window_start
            ]
            count = len(samples)
            total_time = sum(e.duration_ms for e in samples)
            hits = sum(1 for e in samples if e.cache_hit)

            trends["execution_time_trend"].append({
                "period": label,
                "average_time": total_time / count if count else 0.0,
            })
            trends["query_volume_trend"].append({"period": label, "executions": count})
            trends["cache_hit_rate_trend"].append({
                "period": label,
                "cache_hit_rate": hits / count if count else 0.0,
            })

        return trends

    def clear(self):
        """Drop all performance data."""
        with self._lock:
            self._records.clear()
            self._suggestions.clear()

    def export(self) -> Dict[str, Any]:
        """Serializable dump of all records (last 10 executions each)."""
        records, suggestions = self._snapshot()
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "summary": self._summary(records),
            "queries": [r.to_dict(last_executions=10) for r in records],
            "suggestions": [
                {"query_hash": h, "suggestions": items} for h, items in suggestions.items()
            ],
        }
