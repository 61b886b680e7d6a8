"""
Insight Engine

Classifies an executed query by its shape and derives lightweight
trend, comparison, anomaly, relationship and statistical insights from
the result rows.
"""

from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple
import logging
import math
import re

import numpy as np

from querysight.core.models import Insight, InsightType, TableSchema

logger = logging.getLogger(__name__)


GENERAL_QUERY_TYPE = "general"
TIME_COLUMN_HINTS = ("time", "date", "created", "updated", "timestamp")
TIME_TYPE_HINTS = ("date", "time")
TREND_THRESHOLD = 0.1
OUTLIER_STDDEVS = 2.0
MAX_REPORTED_ANOMALIES = 5
STATISTICAL_CONFIDENCE = 0.8

JOIN_CONDITION_PATTERNS = (
    re.compile(
        r"\bjoin\s+\w+(?:\s+(?:as\s+)?\w+)?\s+on\s+(\w+)\.(\w+)\s*=\s*(\w+)\.(\w+)",
        re.IGNORECASE,
    ),
    re.compile(r"\bwhere\s+(\w+)\.(\w+)\s*=\s*(\w+)\.(\w+)", re.IGNORECASE),
)

Row = Dict[str, Any]


def _to_number(value: Any) -> Optional[float]:
    """Finite float for numeric values and numeric strings, else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def calculate_confidence(data_points: int, pattern_matches: int) -> float:
    """Larger result sets and more corroborating matches raise confidence."""
    base = min(data_points / 100, 1.0)
    bonus = min(pattern_matches / 10, 0.3)
    return min(base + bonus, 1.0)


class InsightEngine:
    """
    Generates automated insights from query results.

    This module handles:
    - Query shape classification against ordered regex templates
    - Trend analysis over row order
    - Category comparison
    - Outlier detection per numeric column
    - Join strength estimation
    - Per-column statistical summaries (always computed)
    """

    def __init__(self):
        self.templates: List[Tuple[str, List[Pattern], Callable]] = [
            (InsightType.TREND_ANALYSIS.value, self._compile(
                r"select.*from.*where.*order by.*timestamp",
                r"select.*from.*group by.*date",
                r"select.*count.*from.*group by",
            ), self.generate_trend_insight),
            (InsightType.COMPARISON.value, self._compile(
                r"select.*from.*group by.*category",
                r"select.*sum.*from.*group by",
                r"select.*avg.*from.*group by",
            ), self.generate_comparison_insight),
            (InsightType.ANOMALY_DETECTION.value, self._compile(
                r"select.*from.*order by.*desc",
                r"select.*max.*from",
                r"select.*min.*from",
            ), self.generate_anomaly_insight),
            (InsightType.RELATIONSHIP_ANALYSIS.value, self._compile(
                r"select.*from.*join.*on",
                r"select.*from.*where.*_id.*=",
                r"select.*count.*from.*group by.*_id",
            ), self.generate_relationship_insight),
        ]

    @staticmethod
    def _compile(*patterns: str) -> List[Pattern]:
        return [re.compile(p, re.IGNORECASE) for p in patterns]

    def identify_query_type(self, query: str) -> str:
        """First matching template wins; ``general`` when none match."""
        normalized = re.sub(r"\s+", " ", query or "").lower()
        for query_type, patterns, _ in self.templates:
            if any(p.search(normalized) for p in patterns):
                return query_type
        return GENERAL_QUERY_TYPE

    def generate_insights(
        self,
        query: str,
        results: List[Row],
        schema: Optional[Dict[str, TableSchema]] = None,
    ) -> List[Insight]:
        """
        Derive insights for a result set.

        Args:
            query: Executed query text
            results: Result rows
            schema: Schemas of the referenced tables, if known

        Returns:
            The template insight (if any) followed by statistical summaries
        """
        if not results:
            return []

        insights = []
        query_type = self.identify_query_type(query)
        for template_type, _, generator in self.templates:
            if template_type != query_type:
                continue
            try:
                insight = generator(query, results, schema)
                if insight:
                    insights.append(insight)
            except Exception as e:
                logger.warning(f"Failed to generate {query_type} insight: {e}")

        insights.extend(self.generate_statistical_insights(results))
        return insights

    # ------------------------------------------------------------------
    # Column classification
    # ------------------------------------------------------------------

    @staticmethod
    def _column_names(results: List[Row]) -> List[str]:
        return list(results[0].keys()) if results else []

    def find_numeric_columns(self, results: List[Row]) -> List[str]:
        """Columns whose non-null values are all numeric."""
        numeric = []
        for column in self._column_names(results):
            values = [row.get(column) for row in results if row.get(column) is not None]
            if values and all(_to_number(v) is not None for v in values):
                numeric.append(column)
        return numeric

    def find_categorical_columns(self, results: List[Row]) -> List[str]:
        numeric = set(self.find_numeric_columns(results))
        return [
            column for column in self._column_names(results)
            if column not in numeric
            and any(row.get(column) is not None for row in results)
        ]

    def find_time_columns(
        self, results: List[Row], schema: Optional[Dict[str, TableSchema]] = None
    ) -> List[str]:
        """Columns named like a time field, or declared with a date/time type."""
        declared_time = set()
        for table_schema in (schema or {}).values():
            for column in table_schema.columns:
                if any(h in column.data_type.lower() for h in TIME_TYPE_HINTS):
                    declared_time.add(column.name.lower())

        return [
            column for column in self._column_names(results)
            if any(h in column.lower() for h in TIME_COLUMN_HINTS)
            or column.lower() in declared_time
        ]

    @staticmethod
    def _numeric_values(results: List[Row], column: str) -> List[Tuple[int, float]]:
        """(row index, value) pairs for the parseable values of a column."""
        pairs = []
        for index, row in enumerate(results):
            number = _to_number(row.get(column))
            if number is not None:
                pairs.append((index, number))
        return pairs

    # ------------------------------------------------------------------
    # Template generators
    # ------------------------------------------------------------------

    def generate_trend_insight(
        self, query: str, results: List[Row], schema: Optional[Dict[str, TableSchema]] = None
    ) -> Optional[Insight]:
        if len(results) < 2:
            return None

        time_columns = self.find_time_columns(results, schema)
        if not time_columns:
            return None

        value_columns = [c for c in self.find_numeric_columns(results) if c not in time_columns]
        if not value_columns:
            return None

        values = [v for _, v in self._numeric_values(results, value_columns[0])]
        if len(values) < 2:
            return None

        trend = self.calculate_trend(values)
        if trend > TREND_THRESHOLD:
            direction = "increasing"
        elif trend < -TREND_THRESHOLD:
            direction = "decreasing"
        else:
            direction = "stable"

        return Insight(
            type=InsightType.TREND_ANALYSIS,
            title=f"Trend Analysis: {direction} pattern detected",
            description=(
                f"The data shows a {direction} trend with "
                f"{abs(trend * 100):.1f}% change over the period."
            ),
            confidence=calculate_confidence(len(results), len(values)),
            details={
                "time_column": time_columns[0],
                "value_column": value_columns[0],
                "trend_direction": direction,
                "change_percent": round(trend * 100, 2),
                "data_points": len(results),
            },
        )

    def generate_comparison_insight(
        self, query: str, results: List[Row], schema: Optional[Dict[str, TableSchema]] = None
    ) -> Optional[Insight]:
        if len(results) < 2:
            return None

        categorical = self.find_categorical_columns(results)
        numeric = self.find_numeric_columns(results)
        if not categorical or not numeric:
            return None

        category_column = categorical[0]
        value_column = numeric[0]
        pairs = self._numeric_values(results, value_column)
        if not pairs:
            return None

        values = np.array([v for _, v in pairs])
        categories = {str(row.get(category_column)) for row in results}
        top_index = pairs[int(np.argmax(values))][0]
        top_row = results[top_index]

        minimum = float(values.min())
        maximum = float(values.max())
        return Insight(
            type=InsightType.COMPARISON,
            title=f"Comparison Analysis: {len(categories)} categories compared",
            description=(
                f"Analysis shows {len(categories)} distinct categories with values ranging "
                f"from {minimum:.2f} to {maximum:.2f}. Top performer: "
                f"{top_row.get(category_column)} with {top_row.get(value_column)}."
            ),
            confidence=calculate_confidence(len(results), len(categories)),
            details={
                "category_column": category_column,
                "value_column": value_column,
                "categories": len(categories),
                "range": round(maximum - minimum, 2),
                "average": round(float(values.mean()), 2),
                "top_performer": top_row.get(category_column),
                "top_value": maximum,
            },
        )

    def generate_anomaly_insight(
        self, query: str, results: List[Row], schema: Optional[Dict[str, TableSchema]] = None
    ) -> Optional[Insight]:
        if len(results) < 3:
            return None

        anomalies = []
        for column in self.find_numeric_columns(results):
            anomalies.extend(self.detect_outliers(self._numeric_values(results, column), column))

        if not anomalies:
            return None

        return Insight(
            type=InsightType.ANOMALY_DETECTION,
            title=f"Anomaly Detection: {len(anomalies)} unusual patterns found",
            description=(
                f"Detected {len(anomalies)} potential outliers in the data "
                f"that may require further investigation."
            ),
            confidence=calculate_confidence(len(results), len(anomalies)),
            details={
                "anomaly_count": len(anomalies),
                "anomalies": anomalies[:MAX_REPORTED_ANOMALIES],
            },
        )

    def generate_relationship_insight(
        self, query: str, results: List[Row], schema: Optional[Dict[str, TableSchema]] = None
    ) -> Optional[Insight]:
        if len(results) < 2:
            return None

        joins = self.find_join_column_patterns(query)
        if not joins:
            return None

        strength = self.calculate_relationship_strength(results, joins)
        if strength > 0.7:
            label = "strong"
        elif strength > 0.4:
            label = "moderate"
        else:
            label = "weak"

        return Insight(
            type=InsightType.RELATIONSHIP_ANALYSIS,
            title=f"Relationship Analysis: {len(joins)} relationships analyzed",
            description=f"Analysis reveals {label} relationships between connected entities.",
            confidence=calculate_confidence(len(results), len(joins)),
            details={
                "relationships": joins,
                "strength": round(strength, 2),
                "strength_label": label,
                "connected_entities": len(results),
            },
        )

    def generate_statistical_insights(self, results: List[Row]) -> List[Insight]:
        """Summary statistics for every numeric column with more than one value."""
        insights = []
        for column in self.find_numeric_columns(results):
            values = [v for _, v in self._numeric_values(results, column)]
            if len(values) <= 1:
                continue
            stats = self.calculate_statistics(values)
            insights.append(Insight(
                type=InsightType.STATISTICAL,
                title=f"Statistical Summary for {column}",
                description=(
                    f"{column}: mean={stats['mean']:.2f}, "
                    f"median={stats['median']:.2f}, std={stats['std_dev']:.2f}"
                ),
                confidence=STATISTICAL_CONFIDENCE,
                details=stats,
            ))
        return insights

    # ------------------------------------------------------------------
    # Calculations
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_trend(values: List[float]) -> float:
        """Least-squares slope over row order, normalized by the mean."""
        if len(values) < 2:
            return 0.0
        y = np.asarray(values, dtype=float)
        mean = y.mean()
        if mean == 0:
            return 0.0
        slope = np.polyfit(np.arange(len(y)), y, 1)[0]
        return float(slope / mean)

    @staticmethod
    def detect_outliers(pairs: List[Tuple[int, float]], column: str) -> List[Dict[str, Any]]:
        """
        Flag values far from the rest of their column.

        A value is an outlier when its distance from the mean of the
        other values exceeds two population standard deviations of the
        whole column. The reported z-score uses the whole column.
        """
        if len(pairs) < 3:
            return []

        values = np.array([v for _, v in pairs])
        mean = values.mean()
        std = values.std()
        if std == 0:
            return []

        outliers = []
        for position, (row_index, value) in enumerate(pairs):
            others_mean = np.delete(values, position).mean()
            if abs(value - others_mean) > OUTLIER_STDDEVS * std:
                outliers.append({
                    "row": row_index,
                    "column": column,
                    "value": value,
                    "z_score": round(float((value - mean) / std), 2),
                })
        return outliers

    @staticmethod
    def calculate_statistics(values: List[float]) -> Dict[str, Any]:
        array = np.asarray(values, dtype=float)
        return {
            "mean": float(array.mean()),
            "median": float(np.median(array)),
            "std_dev": float(array.std()),
            "min": float(array.min()),
            "max": float(array.max()),
            "count": int(array.size),
        }

    @staticmethod
    def find_join_column_patterns(query: str) -> List[Dict[str, str]]:
        """Column pairs from ``JOIN t ON a.x = b.y`` and ``WHERE a.x = b.y``."""
        joins = []
        for pattern in JOIN_CONDITION_PATTERNS:
            for match in pattern.finditer(query or ""):
                joins.append({
                    "table1": match.group(1),
                    "column1": match.group(2),
                    "table2": match.group(3),
                    "column2": match.group(4),
                })
        return joins

    @staticmethod
    def calculate_relationship_strength(results: List[Row], joins: List[Dict[str, str]]) -> float:
        """Distinct joined values relative to the number of rows, capped at 1."""
        if not results:
            return 0.0
        unique_values = set()
        for join in joins:
            for row in results:
                for column in (join["column1"], join["column2"]):
                    value = row.get(column)
                    if value is not None and value != "":
                        unique_values.add(str(value))
        return min(len(unique_values) / len(results), 1.0)
