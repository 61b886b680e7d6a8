from __future__ import annotations

import pytest

from querysight.config import MonitorConfig
from querysight.core.performance_monitor import (
    QueryPerformanceMonitor,
    generate_query_hash,
    normalize_for_hash,
)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_hash_ignores_case_whitespace_and_semicolon() -> None:
    assert normalize_for_hash("SELECT *\n  FROM users ;") == "select * from users"
    first = generate_query_hash("SELECT * FROM users")
    assert first == generate_query_hash("select *   from USERS;")
    assert len(first) == 16
    assert first != generate_query_hash("SELECT * FROM orders")


def test_record_aggregates_per_query_shape() -> None:
    monitor = QueryPerformanceMonitor()
    monitor.record_query_performance("SELECT * FROM users", 10, 5)
    monitor.record_query_performance("select * from users", 30, 7)
    monitor.record_query_performance("SELECT * FROM users", 0, 7, cache_hit=True)

    record = monitor.get_record("SELECT * FROM users")
    assert record.count == 3
    assert record.total_duration_ms == pytest.approx(40.0)
    assert record.avg_duration_ms == pytest.approx(40.0 / 3)
    assert (record.min_duration_ms, record.max_duration_ms) == (0.0, 30.0)
    assert record.total_rows == 19
    assert record.cache_hits == 1


def test_fast_query_stores_no_suggestions() -> None:
    monitor = QueryPerformanceMonitor()
    monitor.record_query_performance("SELECT * FROM users WHERE id = 1", 5, 1)
    assert monitor.get_suggestions_for("SELECT * FROM users WHERE id = 1") == []


def test_slow_query_gets_suggestions(caplog: pytest.LogCaptureFixture) -> None:
    monitor = QueryPerformanceMonitor()
    query = (
        "SELECT u.name, COUNT(*) FROM orders o JOIN users u ON o.user_id = u.id "
        "WHERE o.amount > 10 GROUP BY u.name"
    )

    with caplog.at_level("WARNING", logger="querysight.core.performance_monitor"):
        monitor.record_query_performance(query, 6000, 2)

    types = [s["type"] for s in monitor.get_suggestions_for(query)]
    assert types == [
        "missing_index",
        "join_optimization",
        "large_result_set",
        "missing_limit",
        "group_by_optimization",
    ]
    assert "Slow query detected" in caplog.text


def test_subquery_suggestion() -> None:
    monitor = QueryPerformanceMonitor()
    suggestions = monitor.generate_optimization_suggestions(
        "SELECT * FROM users WHERE id IN (SELECT user_id FROM orders) LIMIT 5"
    )
    types = {s["type"] for s in suggestions}
    assert "subquery_optimization" in types
    assert "missing_limit" not in types


def test_execution_history_is_trimmed() -> None:
    monitor = QueryPerformanceMonitor(MonitorConfig(max_executions=3))
    for duration in range(5):
        monitor.record_query_performance("SELECT 1", duration, 1)

    record = monitor.get_record("SELECT 1")
    assert record.count == 5
    assert [e.duration_ms for e in record.executions] == [2.0, 3.0, 4.0]


def test_performance_report_sections() -> None:
    monitor = QueryPerformanceMonitor(MonitorConfig(slow_query_threshold_ms=100))
    monitor.record_query_performance("SELECT * FROM users", 10, 2)
    monitor.record_query_performance("SELECT * FROM users", 0, 2, cache_hit=True)
    monitor.record_query_performance("SELECT * FROM orders WHERE amount > 1", 500, 3)

    report = monitor.get_performance_report()

    assert set(report) == {
        "summary",
        "slow_queries",
        "top_queries",
        "optimization_suggestions",
        "cache_performance",
        "trends",
    }
    summary = report["summary"]
    assert summary["total_queries"] == 2
    assert summary["total_executions"] == 3
    assert summary["average_execution_time"] == pytest.approx(170.0)
    assert summary["total_results"] == 7
    assert summary["cache_hit_rate"] == pytest.approx(1 / 3)
    assert summary["slow_query_count"] == 1
    assert summary["slow_query_rate"] == pytest.approx(0.5)

    assert [q["executions"] for q in report["top_queries"]] == [2, 1]
    assert len(report["slow_queries"]) == 1
    assert report["slow_queries"][0]["suggestions"]

    grouped = {g["type"]: g for g in report["optimization_suggestions"]}
    assert grouped["missing_index"]["count"] == 1
    assert grouped["missing_index"]["total_impact"] == pytest.approx(500.0)

    cache = report["cache_performance"]
    assert cache["total_cache_hits"] == 1
    assert cache["top_cached_queries"][0]["cache_hit_rate"] == pytest.approx(0.5)


def test_trends_use_time_windows() -> None:
    clock = FakeClock()
    monitor = QueryPerformanceMonitor(clock=clock)

    clock.now -= 2 * 86400
    monitor.record_query_performance("SELECT 1", 40, 1)
    clock.now += 2 * 86400 - 7200
    monitor.record_query_performance("SELECT 1", 20, 1)
    clock.now += 7200
    monitor.record_query_performance("SELECT 1", 10, 1, cache_hit=True)

    trends = monitor.get_performance_report()["trends"]

    volume = {t["period"]: t["executions"] for t in trends["query_volume_trend"]}
    assert volume == {"1 hour": 1, "1 day": 2, "1 week": 3}
    times = {t["period"]: t["average_time"] for t in trends["execution_time_trend"]}
    assert times["1 day"] == pytest.approx(15.0)
    hits = {t["period"]: t["cache_hit_rate"] for t in trends["cache_hit_rate_trend"]}
    assert hits["1 hour"] == pytest.approx(1.0)
    assert hits["1 week"] == pytest.approx(1 / 3)


def test_empty_report_has_zeroes() -> None:
    summary = QueryPerformanceMonitor().get_performance_report()["summary"]
    assert summary["total_queries"] == 0
    assert summary["average_execution_time"] == 0.0
    assert summary["slow_query_rate"] == 0.0


def test_clear_and_export() -> None:
    monitor = QueryPerformanceMonitor()
    for _ in range(12):
        monitor.record_query_performance("SELECT * FROM users WHERE id = 1", 2000, 1)

    exported = monitor.export()
    assert exported["summary"]["total_executions"] == 12
    assert len(exported["queries"]) == 1
    assert len(exported["queries"][0]["executions"]) == 10
    assert exported["suggestions"][0]["suggestions"]

    monitor.clear()
    assert monitor.get_record("SELECT * FROM users WHERE id = 1") is None
    assert monitor.export()["queries"] == []
