"""
SQLite adapter

Catalog introspection through PRAGMA calls, double-quote quoting and a
deny-list covering ATTACH, PRAGMA and extension loading.
"""

from typing import Any, Dict, List, Optional, Tuple
import logging
import re

from sqlalchemy.pool import StaticPool

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


SIZED_TYPE_PATTERN = re.compile(r"^\s*([A-Za-z ]+?)\s*\(\s*(\d+)\s*\)\s*$")


class SQLiteAdapter(DatabaseAdapter):
    """SQLite adapter (stdlib sqlite3 driver)."""

    engine_type = EngineType.SQLITE
    IDENTIFIER_QUOTE = '"'
    CATALOG_NAMES = frozenset({
        "sqlite_master",
        "sqlite_temp_master",
        "sqlite_schema",
        "sqlite_temp_schema",
        "sqlite_sequence",
    })
    DENY_PATTERNS = compile_patterns(
        *COMMON_DENY_PATTERNS,
        r"\battach\b",
        r"\bdetach\b",
        r"\bvacuum\b",
        r"\bpragma\b",
        r"\b(sqlite_master|sqlite_temp_master|sqlite_schema|sqlite_temp_schema|sqlite_sequence)\b",
        r"\b(substr|substring|ascii|char|length|unicode|hex)\s*\(",
        r"\b(concat|concat_ws|iif)\s*\(",
        r"\bsqlite_\w+\s*\(",
        r"\bload_extension\s*\(",
        r"\b(randomblob|zeroblob)\s*\(",
    )

    @property
    def _is_memory(self) -> bool:
        path = self.config.db_path or self.config.database
        return not path or path == ":memory:"

    def _engine_kwargs(self) -> Dict[str, Any]:
        # SQLite doesn't support connection pooling the same way
        kwargs: Dict[str, Any] = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": self.config.connect_timeout,
            },
        }
        if self._is_memory:
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True
        return kwargs

    def get_table_list(self) -> List[TableSummary]:
        rows = self.execute_query("""
            SELECT name AS table_name
            FROM sqlite_master
            WHERE type = 'table' AND name NOT LIKE 'sqlite_%'
            ORDER BY name
        """)
        return [
            TableSummary(
                name=row["table_name"],
                description="",
                estimated_row_count=self.get_table_count(row["table_name"]),
            )
            for row in rows
        ]

    def get_table_schema(self, table_name: str) -> TableSchema:
        sanitized = self.sanitize_identifier(table_name)
        rows = self.execute_query(f"PRAGMA table_info({self.quote_identifier(sanitized)})")
        self._require_columns(rows, sanitized)
        index_roles = self._get_index_roles(sanitized)

        columns = []
        for row in rows:
            data_type, max_length = self._split_declared_type(row["type"] or "")
            if row["pk"]:
                role = KeyRole.PRIMARY
            else:
                role = index_roles.get(row["name"], KeyRole.NONE)
            columns.append(ColumnInfo(
                name=row["name"],
                data_type=data_type,
                nullable=not row["notnull"],
                key_role=role,
                max_length=max_length,
                default_value=(
                    str(row["dflt_value"]) if row["dflt_value"] is not None else None
                ),
            ))

        return TableSchema(
            name=sanitized,
            columns=columns,
            foreign_keys=self.get_foreign_key_relations(sanitized),
        )

    def _get_index_roles(self, table_name: str) -> Dict[str, KeyRole]:
        """Map indexed columns to UNIQUE or INDEXED."""
        roles: Dict[str, KeyRole] = {}
        indexes = self.execute_query(f"PRAGMA index_list({self.quote_identifier(table_name)})")

        for index in indexes:
            role = KeyRole.UNIQUE if index["unique"] else KeyRole.INDEXED
            try:
                members = self.execute_query(
                    f"PRAGMA index_info({self.quote_identifier(index['name'])})"
                )
            except Exception as e:
                logger.debug(f"Could not read index {index['name']}: {e}")
                continue
            for member in members:
                name = member["name"]
                if name is None:
                    continue
                # Single-column unique indexes make the column unique
                if role == KeyRole.UNIQUE and len(members) > 1:
                    role_for_column = KeyRole.INDEXED
                else:
                    role_for_column = role
                if roles.get(name) != KeyRole.UNIQUE:
                    roles[name] = role_for_column

        return roles

    @staticmethod
    def _split_declared_type(declared: str) -> Tuple[str, Optional[int]]:
        """VARCHAR(50) -> ("VARCHAR", 50)."""
        match = SIZED_TYPE_PATTERN.match(declared)
        if match:
            return match.group(1).strip(), int(match.group(2))
        return declared, None

    def get_foreign_key_relations(self, table_name: str) -> List[RelationshipEdge]:
        sanitized = self.sanitize_identifier(table_name)
        rows = self.execute_query(f"PRAGMA foreign_key_list({self.quote_identifier(sanitized)})")

        edges = []
        for row in rows:
            target_column = row["to"]
            if target_column is None:
                # REFERENCES parent without a column means the parent's primary key
                target_column = self._primary_key_name(row["table"]) or "id"
            edges.append(RelationshipEdge.explicit(sanitized, row["from"], row["table"], target_column))
        return edges

    def _primary_key_name(self, table_name: str) -> Optional[str]:
        rows = self.execute_query(f"PRAGMA table_info({self.quote_identifier(table_name)})")
        for row in rows:
            if row["pk"]:
                return row["name"]
        return None
