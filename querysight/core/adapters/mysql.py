"""
MySQL adapter

Catalog introspection through INFORMATION_SCHEMA, backtick quoting and
a deny-list covering MySQL file and timing functions.
"""

from typing import Any, Dict, List
import logging
import math

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


COLUMN_KEY_ROLES = {
    "PRI": KeyRole.PRIMARY,
    "UNI": KeyRole.UNIQUE,
    "MUL": KeyRole.INDEXED,
}


class MySQLAdapter(DatabaseAdapter):
    """MySQL adapter (pymysql driver)."""

    engine_type = EngineType.MYSQL
    IDENTIFIER_QUOTE = "`"
    CATALOG_NAMES = frozenset({"information_schema", "sys", "mysql", "performance_schema"})
    DENY_PATTERNS = compile_patterns(
        *COMMON_DENY_PATTERNS,
        r"#",
        r"\binto\s+(outfile|dumpfile)\b",
        r"\bload_file\s*\(",
        r"\b(information_schema|sys|mysql|performance_schema)\b",
        r"\b(concat|concat_ws|group_concat|substring|substr|mid|ascii|char|ord|length|hex)\s*\(",
        r"\bif\s*\(",
    )

    def _engine_kwargs(self) -> Dict[str, Any]:
        kwargs = super()._engine_kwargs()
        kwargs["connect_args"] = {
            "connect_timeout": self.config.connect_timeout,
            "read_timeout": max(1, math.ceil(self.config.statement_timeout_ms / 1000)),
        }
        return kwargs

    def get_table_list(self) -> List[TableSummary]:
        rows = self.execute_query("""
            SELECT TABLE_NAME AS name, TABLE_COMMENT AS description,
                   TABLE_ROWS AS estimated_rows
            FROM INFORMATION_SCHEMA.TABLES
            WHERE TABLE_SCHEMA = DATABASE()
              AND TABLE_TYPE = 'BASE TABLE'
            ORDER BY TABLE_NAME
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
            SELECT COLUMN_NAME AS column_name, DATA_TYPE AS data_type,
                   IS_NULLABLE AS is_nullable, COLUMN_KEY AS column_key,
                   COLUMN_DEFAULT AS column_default, COLUMN_COMMENT AS column_comment,
                   CHARACTER_MAXIMUM_LENGTH AS max_length
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table
            ORDER BY ORDINAL_POSITION
        """, {"table": sanitized})
        self._require_columns(rows, sanitized)

        columns = [
            ColumnInfo(
                name=row["column_name"],
                data_type=row["data_type"],
                nullable=row.get("is_nullable") != "NO",
                key_role=COLUMN_KEY_ROLES.get(row.get("column_key") or "", KeyRole.NONE),
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

    def get_foreign_key_relations(self, table_name: str) -> List[RelationshipEdge]:
        sanitized = self.sanitize_identifier(table_name)
        rows = self.execute_query("""
            SELECT COLUMN_NAME AS column_name,
                   REFERENCED_TABLE_NAME AS referenced_table_name,
                   REFERENCED_COLUMN_NAME AS referenced_column_name,
                   CONSTRAINT_NAME AS constraint_name
            FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE
            WHERE TABLE_SCHEMA = DATABASE()
              AND TABLE_NAME = :table
              AND REFERENCED_TABLE_NAME IS NOT NULL
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
