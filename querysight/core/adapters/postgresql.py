"""
PostgreSQL adapter

Catalog introspection through information_schema and pg_catalog,
double-quote quoting and a deny-list covering pg_* functions and COPY.
"""

from typing import Any, Dict, List
import logging

from querysight.config import EngineType
from querysight.core.adapters.base import (
    COMMON_DENY_PATTERNS,
    DatabaseAdapter,
    compile_patterns,
)
from querysight.core.models import (
    ColumnInfo,
    KeyRole,
    RelationshipEdge,
    TableSchema,
    TableSummary,
)

logger = logging.getLogger(__name__)


CONSTRAINT_KEY_ROLES = {
    "PRIMARY KEY": KeyRole.PRIMARY,
    "UNIQUE": KeyRole.UNIQUE,
}


class PostgreSQLAdapter(DatabaseAdapter):
    """PostgreSQL adapter (psycopg2 driver)."""

    engine_type = EngineType.POSTGRESQL
    IDENTIFIER_QUOTE = '"'
    CATALOG_NAMES = frozenset({"information_schema", "pg_catalog"})
    DENY_PATTERNS = compile_patterns(
        *COMMON_DENY_PATTERNS,
        r"\bcopy\s+.*\b(to|from)\b",
        r"\bpg_sleep\s*\(",
        r"\b(pg_catalog|information_schema)\b",
        r"\b(concat|concat_ws|string_agg|substring|substr|ascii|chr|ord|length)\s*\(",
        r"\bpg_\w+\s*\(",
        r"\bdblink\w*\s*\(",
        r"\blo_(import|export)\s*\(",
    )

    def _engine_kwargs(self) -> Dict[str, Any]:
        kwargs = super()._engine_kwargs()
        kwargs["connect_args"] = {
            "connect_timeout": self.config.connect_timeout,
            "options": f"-c statement_timeout={int(self.config.statement_timeout_ms)}",
        }
        return kwargs

    def get_table_list(self) -> List[TableSummary]:
        rows = self.execute_query("""
            SELECT t.table_name AS name,
                   obj_description(c.oid) AS description,
                   COALESCE(s.n_live_tup, 0) AS estimated_rows
            FROM information_schema.tables t
            LEFT JOIN pg_namespace n ON n.nspname = t.table_schema
            LEFT JOIN pg_class c ON c.relname = t.table_name AND c.relnamespace = n.oid
            LEFT JOIN pg_stat_user_tables s ON s.relid = c.oid
            WHERE t.table_schema = current_schema()
              AND t.table_type = 'BASE TABLE'
            ORDER BY t.table_name
        """)
        return [
            TableSummary(
                name=row["name"],
                description=row.get("description") or "",
                estimated_row_count=int(row.get("estimated_rows") or 0),
            )
            for row in rows
        ]

    def get_table_schema(self, table_name: str) -> TableSchema:
        sanitized = self.sanitize_identifier(table_name)
        rows = self.execute_query("""
            SELECT c.column_name, c.data_type, c.is_nullable, c.column_default,
                   c.character_maximum_length AS max_length,
                   col_description(pgc.oid, a.attnum) AS column_comment
            FROM information_schema.columns c
            LEFT JOIN pg_namespace n ON n.nspname = c.table_schema
            LEFT JOIN pg_class pgc ON pgc.relname = c.table_name AND pgc.relnamespace = n.oid
            LEFT JOIN pg_attribute a ON a.attrelid = pgc.oid AND a.attname = c.column_name
            WHERE c.table_schema = current_schema() AND c.table_name = :table
            ORDER BY c.ordinal_position
        """, {"table": sanitized})
        self._require_columns(rows, sanitized)

        key_roles = self._get_key_roles(sanitized)
        columns = [
            ColumnInfo(
                name=row["column_name"],
                data_type=row["data_type"],
                nullable=row.get("is_nullable") != "NO",
                key_role=key_roles.get(row["column_name"], KeyRole.NONE),
                comment=row.get("column_comment") or None,
                max_length=int(row["max_length"]) if row.get("max_length") else None,
                default_value=(
                    str(row["column_default"]) if row.get("column_default") is not None else None
                ),
            )
            for row in rows
        ]

        return TableSchema(
            name=sanitized,
            columns=columns,
            foreign_keys=self.get_foreign_key_relations(sanitized),
        )

    def _get_key_roles(self, table_name: str) -> Dict[str, KeyRole]:
        """Primary/unique constraint columns, then plain indexed columns."""
        roles: Dict[str, KeyRole] = {}

        indexed = self.execute_query("""
            SELECT DISTINCT a.attname AS column_name
            FROM pg_index i
            JOIN pg_class t ON t.oid = i.indrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(i.indkey)
            WHERE t.relname = :table AND n.nspname = current_schema()
        """, {"table": table_name})
        for row in indexed:
            roles[row["column_name"]] = KeyRole.INDEXED

        constraints = self.execute_query("""
            SELECT kcu.column_name, tc.constraint_type
            FROM information_schema.table_constraints AS tc
            JOIN information_schema.key_column_usage AS kcu
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
             AND tc.table_name = kcu.table_name
            WHERE tc.table_schema = current_schema()
              AND tc.table_name = :table
              AND tc.constraint_type IN ('PRIMARY KEY', 'UNIQUE')
        """, {"table": table_name})
        for row in constraints:
            role = CONSTRAINT_KEY_ROLES[row["constraint_type"]]
            if roles.get(row["column_name"]) != KeyRole.PRIMARY:
                roles[row["column_name"]] = role

        return roles

    def get_foreign_key_relations(self, table_name: str) -> List[RelationshipEdge]:
        sanitized = self.sanitize_identifier(table_name)
        rows = self.execute_query("""
            SELECT
              kcu.column_name,
              ccu.table_name AS referenced_table_name,
              ccu.column_name AS referenced_column_name,
              tc.constraint_name
            FROM information_schema.table_constraints AS tc
            JOIN information_schema.key_column_usage AS kcu
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage AS ccu
              ON ccu.constraint_name = tc.constraint_name
             AND ccu.table_schema = tc.table_schema
            WHERE tc.constraint_type = 'FOREIGN KEY'
              AND tc.table_schema = current_schema()
              AND tc.table_name = :table
        """, {"table": sanitized})

        return [
            RelationshipEdge.explicit(
                sanitized,
                row["column_name"],
                row["referenced_table_name"],
                row["referenced_column_name"],
            )
            for row in rows
        ]
