"""
Schema Analyzer

Infers relationships the catalog does not declare, based on column
naming conventions and type compatibility.
"""

from typing import Any, Dict, FrozenSet, Iterable, List, Optional
import logging
import re
import threading

from querysight.core.adapters.base import DatabaseAdapter
from querysight.core.models import (
    ColumnInfo,
    RelationshipEdge,
    RelationshipOrigin,
    TableSchema,
)

logger = logging.getLogger(__name__)


ID_SUFFIX_CONFIDENCE = 0.9
TABLE_PREFIX_CONFIDENCE = 0.8
SEMANTIC_CONFIDENCE = 0.7

# Conventional column names and the tables they usually point at
SEMANTIC_PATTERNS: Dict[str, List[str]] = {
    "created_by": ["users", "employees", "staff"],
    "updated_by": ["users", "employees", "staff"],
    "customer_id": ["customers", "clients"],
    "user_id": ["users", "accounts"],
    "product_id": ["products", "items"],
    "order_id": ["orders", "purchases"],
    "category_id": ["categories", "types"],
    "status_id": ["statuses", "status_types"],
}

INTEGER_TYPES = frozenset({
    "int", "integer", "tinyint", "smallint", "mediumint", "bigint",
    "int2", "int4", "int8", "serial", "smallserial", "bigserial",
})
STRING_TYPES = frozenset({
    "varchar", "char", "character", "character varying", "nvarchar", "nchar",
    "text", "tinytext", "mediumtext", "longtext", "string", "uuid",
})
TYPE_FAMILIES = (INTEGER_TYPES, STRING_TYPES)


def base_type(data_type: str) -> str:
    """'VARCHAR(50)' -> 'varchar', 'int unsigned' -> 'int'."""
    name = re.sub(r"\(.*?\)", "", (data_type or "").lower()).strip()
    name = re.sub(r"\s+(unsigned|signed|zerofill)\b", "", name)
    return re.sub(r"\s+", " ", name).strip()


class SchemaAnalyzer:
    """
    Detects implicit foreign-key-like relationships.

    This module handles:
    - ID-suffix matching (user_id -> users.id)
    - Table-prefix matching (customers_ref -> customers.<pk>)
    - Semantic pattern matching (created_by -> users.<pk>)
    - Enhanced per-table schema with explicit and implicit edges
    - Advisory join suggestions between referenced tables

    Results are cached per set of analyzed tables until ``clear_cache``.
    """

    def __init__(self, adapter: DatabaseAdapter):
        """
        Initialize the schema analyzer.

        Args:
            adapter: Active engine adapter used for catalog introspection
        """
        self.adapter = adapter
        self._lock = threading.Lock()
        self._epoch: Optional[FrozenSet[str]] = None
        self._schemas: Dict[str, TableSchema] = {}
        self._relationships: List[RelationshipEdge] = []

    @property
    def implicit_relationships(self) -> List[RelationshipEdge]:
        with self._lock:
            return list(self._relationships)

    @property
    def schemas(self) -> Dict[str, TableSchema]:
        with self._lock:
            return dict(self._schemas)

    def analyze_schema(self, tables: Optional[Iterable[str]] = None) -> List[RelationshipEdge]:
        """
        Fetch schemas and detect implicit relationships.

        Args:
            tables: Table names to analyze; defaults to every table the adapter lists

        Returns:
            Inferred edges sorted by descending confidence
        """
        if tables is None:
            names = [t.name for t in self.adapter.get_table_list()]
        else:
            names = [t for t in tables if t]
        epoch = frozenset(n.lower() for n in names)

        with self._lock:
            if self._epoch == epoch:
                return list(self._relationships)

        logger.info(f"Analyzing schema for {len(names)} tables...")

        # Catalog calls happen outside the lock
        table_schemas: Dict[str, TableSchema] = {}
        for name in names:
            try:
                table_schemas[name] = self.adapter.get_table_schema(name)
            except Exception as e:
                logger.error(f"Failed to fetch schema for {name}: {e}")

        relationships = self.detect_implicit_relationships(table_schemas)

        with self._lock:
            self._epoch = epoch
            self._schemas = table_schemas
            self._relationships = relationships

        logger.info(f"Detected {len(relationships)} implicit relationships")
        return list(relationships)

    def detect_implicit_relationships(
        self, table_schemas: Dict[str, TableSchema]
    ) -> List[RelationshipEdge]:
        """
        Run every inference method over every column.

        Duplicate edges keep their highest-confidence origin; edges that
        restate a declared foreign key are dropped.
        """
        explicit_keys = {
            fk.key for schema in table_schemas.values() for fk in schema.foreign_keys
        }

        best: Dict[tuple, RelationshipEdge] = {}
        for source_table, schema in table_schemas.items():
            for column in schema.columns:
                for edge in self._find_potential_targets(column, source_table, table_schemas):
                    if edge.key in explicit_keys:
                        continue
                    current = best.get(edge.key)
                    if current is None or edge.confidence > current.confidence:
                        best[edge.key] = edge

        return sorted(best.values(), key=lambda e: e.confidence, reverse=True)

    def _find_potential_targets(
        self,
        column: ColumnInfo,
        source_table: str,
        table_schemas: Dict[str, TableSchema],
    ) -> List[RelationshipEdge]:
        """Find potential target tables for a column based on naming conventions."""
        targets = []
        col_lower = column.name.lower()

        # Pattern: {table}_id with singular/plural variations
        if col_lower.endswith("_id") and len(col_lower) > 3:
            target_table = self._find_table_by_name_variation(col_lower[:-3], table_schemas)
            if target_table:
                target_schema = table_schemas[target_table]
                target_col = target_schema.get_column("id") or target_schema.primary_key_column
                if target_col and self._is_new_edge(source_table, column, target_table, target_col):
                    if self._types_compatible(column.data_type, target_col.data_type):
                        targets.append(self._edge(
                            source_table, column, target_table, target_col,
                            ID_SUFFIX_CONFIDENCE, RelationshipOrigin.ID_SUFFIX,
                        ))

        # Pattern: {table}_{anything} for any other table
        for target_table, target_schema in table_schemas.items():
            if target_table == source_table:
                continue
            if not col_lower.startswith(f"{target_table.lower()}_"):
                continue
            target_col = target_schema.primary_key_column
            if target_col and self._types_compatible(column.data_type, target_col.data_type):
                targets.append(self._edge(
                    source_table, column, target_table, target_col,
                    TABLE_PREFIX_CONFIDENCE, RelationshipOrigin.TABLE_PREFIX,
                ))

        targets.extend(self._find_semantic_matches(column, source_table, table_schemas))
        return targets

    def _find_semantic_matches(
        self,
        column: ColumnInfo,
        source_table: str,
        table_schemas: Dict[str, TableSchema],
    ) -> List[RelationshipEdge]:
        candidates = SEMANTIC_PATTERNS.get(column.name.lower())
        if not candidates:
            return []

        matches = []
        for target_table, target_schema in table_schemas.items():
            if target_table.lower() not in candidates:
                continue
            target_col = target_schema.primary_key_column
            if not target_col or not self._is_new_edge(source_table, column, target_table, target_col):
                continue
            if self._types_compatible(column.data_type, target_col.data_type):
                matches.append(self._edge(
                    source_table, column, target_table, target_col,
                    SEMANTIC_CONFIDENCE, RelationshipOrigin.SEMANTIC_PATTERN,
                ))
        return matches

    @staticmethod
    def _find_table_by_name_variation(
        base_name: str, table_schemas: Dict[str, TableSchema]
    ) -> Optional[str]:
        """Match user -> users, category -> categories, status -> status."""
        variations = [
            base_name,
            f"{base_name}s",
            base_name[:-1],
            re.sub(r"y$", "ie", base_name) + "s",
            re.sub(r"y$", "ie", base_name),
            re.sub(r"ie$", "y", base_name),
        ]
        by_lower = {name.lower(): name for name in table_schemas}
        for variation in variations:
            if variation and variation in by_lower:
                return by_lower[variation]
        return None

    @staticmethod
    def _is_new_edge(
        source_table: str, column: ColumnInfo, target_table: str, target_col: ColumnInfo
    ) -> bool:
        """A column never references itself."""
        return not (
            source_table.lower() == target_table.lower()
            and column.name.lower() == target_col.name.lower()
        )

    @staticmethod
    def _edge(
        source_table: str,
        column: ColumnInfo,
        target_table: str,
        target_col: ColumnInfo,
        confidence: float,
        origin: RelationshipOrigin,
    ) -> RelationshipEdge:
        return RelationshipEdge(
            source_table=source_table,
            source_column=column.name,
            target_table=target_table,
            target_column=target_col.name,
            confidence=confidence,
            origin=origin,
        )

    def _types_compatible(self, type1: str, type2: str) -> bool:
        """Check if two column types are compatible for a relationship."""
        t1 = base_type(type1)
        t2 = base_type(type2)
        if not t1 or not t2:
            return False

        # Direct match
        if t1 == t2:
            return True

        return any(t1 in family and t2 in family for family in TYPE_FAMILIES)

    def get_enhanced_schema(
        self, table_name: str, tables: Optional[Iterable[str]] = None
    ) -> Dict[str, Any]:
        """
        Schema of one table together with its explicit and implicit edges.

        Args:
            table_name: Table to describe
            tables: Table set to analyze if the cache does not cover it yet

        Returns:
            Dictionary with schema, explicit_foreign_keys, implicit_foreign_keys
            and total_relationships
        """
        if tables is not None or self._epoch is None:
            self.analyze_schema(tables)

        schema = self.schemas.get(table_name)
        if schema is None:
            schema = self.adapter.get_table_schema(table_name)

        implicit = [
            rel for rel in self.implicit_relationships
            if rel.source_table.lower() == table_name.lower()
        ]

        return {
            "schema": schema,
            "explicit_foreign_keys": list(schema.foreign_keys),
            "implicit_foreign_keys": implicit,
            "total_relationships": len(schema.foreign_keys) + len(implicit),
        }

    def get_relationship_suggestions(self, tables: Iterable[str]) -> List[Dict[str, Any]]:
        """
        Advisory join hints between the given tables.

        Nothing here rewrites a query; callers only log or display the hints.
        """
        wanted = {t.lower() for t in tables}
        suggestions = []
        for rel in self.implicit_relationships:
            if rel.source_table.lower() in wanted and rel.target_table.lower() in wanted:
                suggestions.append({
                    "type": "implicit_join",
                    "source_table": rel.source_table,
                    "source_column": rel.source_column,
                    "target_table": rel.target_table,
                    "target_column": rel.target_column,
                    "confidence": rel.confidence,
                    "suggestion": rel.join_hint(),
                })
        return suggestions

    def clear_cache(self):
        """Invalidate cached schemas and relationships."""
        with self._lock:
            self._epoch = None
            self._schemas = {}
            self._relationships = []
        logger.debug("Schema analyzer cache cleared")
