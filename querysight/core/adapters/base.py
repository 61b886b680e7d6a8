"""
Database Adapter

Common contract for engine adapters: pooled connection lifecycle,
catalog introspection, identifier quoting and query validation.
Each engine subclass supplies its own catalog SQL, quoting character
and deny-list of dangerous query patterns.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, FrozenSet, Generator, List, Optional, Pattern, Sequence, Set
import logging
import re

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool

from querysight.config import EngineConfig, EngineType
from querysight.core.models import RelationshipEdge, TableSchema, TableSummary
from querysight.exceptions import (
    ConnectError,
    ExecutionError,
    NotConnectedError,
    RejectedQueryError,
)

logger = logging.getLogger(__name__)


def compile_patterns(*patterns: str) -> List[Pattern]:
    """Compile deny-list expressions case-insensitively."""
    return [re.compile(p, re.IGNORECASE) for p in patterns]


def normalize_query(query: str) -> str:
    """Lower-case and collapse whitespace."""
    return re.sub(r"\s+", " ", query.lower()).strip()


# Shared by every engine; adapters extend this with engine-specific entries
COMMON_DENY_PATTERNS = (
    r"\b(drop|delete|update|insert|alter|create|truncate|replace|grant|revoke)\b",
    r"\bexec(ute)?\s*\(",
    r"\bsleep\s*\(",
    r"\bbenchmark\s*\(",
    r"--",
    r"/\*",
    r"\*/",
    r"\bunion\b.*\bselect\b",
    r";\s*\S",
    r"\band\s+1\s*=\s*1\b",
    r"\bor\s+1\s*=\s*1\b",
    r"\bcase\s+when\b",
)

_OPEN_QUOTE = r"[`\"\[]?"
_CLOSE_QUOTE = r"[`\"\]]?"
_NAME = rf"{_OPEN_QUOTE}\w+{_CLOSE_QUOTE}"
_QUALIFIED_NAME = rf"{_NAME}(?:\s*\.\s*{_NAME})?"

TABLE_KEYWORD_PATTERN = re.compile(r"\b(from|join|into)\b", re.IGNORECASE)
TABLE_NAME_PATTERN = re.compile(_QUALIFIED_NAME, re.IGNORECASE)
OPENING_PATTERN = re.compile(r"[\s(]*")
CLOSING_PATTERN = re.compile(r"[\s)]*")
ALIAS_PATTERN = re.compile(r"(?:as\s+)?\w+", re.IGNORECASE)
SUBQUERY_PATTERN = re.compile(r"select\b", re.IGNORECASE)
STRING_LITERAL_PATTERN = re.compile(r"'(?:[^']|'')*'")
# FROM inside EXTRACT(field FROM expr) / TRIM(... FROM expr) is not a table reference
FUNCTION_FROM_PATTERN = re.compile(
    r"\b(extract|trim)\s*\(([^()]*?)\bfrom\b", re.IGNORECASE
)
DISTINCT_FROM_PATTERN = re.compile(r"\bis\s+(not\s+)?distinct\s+from\b", re.IGNORECASE)
# Top-level LIMIT at the end of the statement: "LIMIT n", "LIMIT m, n" or "LIMIT n OFFSET m"
LIMIT_PATTERN = re.compile(
    r"\blimit\s+(\d+)(?:\s*,\s*(\d+))?(?:\s+offset\s+\d+)?\s*;*\s*$", re.IGNORECASE
)
SELECT_PATTERN = re.compile(r"^select\b", re.IGNORECASE)


class DatabaseAdapter(ABC):
    """
    Engine-specific implementation of the common database access contract.

    This module handles:
    - Connection pool lifecycle (SQLAlchemy engine)
    - Catalog introspection translated into TableSchema / RelationshipEdge
    - Identifier quoting (never done by callers)
    - Deny-list sanitization and SELECT-only validation
    - Table-name extraction for allow-list checks
    """

    engine_type: EngineType
    IDENTIFIER_QUOTE = '"'
    CATALOG_NAMES: FrozenSet[str] = frozenset()
    DENY_PATTERNS: Sequence[Pattern] = ()

    def __init__(self, config: EngineConfig):
        """
        Initialize the adapter.

        Args:
            config: Engine connection configuration
        """
        self.config = config
        self._engine: Optional[Engine] = None

    @property
    def type(self) -> str:
        return self.engine_type.value

    def get_database_type(self) -> str:
        return self.engine_type.value

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        """Get the live engine."""
        if self._engine is None:
            raise NotConnectedError("Database not connected")
        return self._engine

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _engine_kwargs(self) -> Dict[str, Any]:
        """SQLAlchemy engine settings for this engine."""
        return {
            "pool_pre_ping": True,  # Enable connection health checks
            "pool_recycle": 3600,   # Recycle connections after 1 hour
            "poolclass": QueuePool,
            "pool_size": self.config.pool_size,
            "max_overflow": self.config.max_overflow,
        }

    def connect(self) -> bool:
        """
        Establish the pooled connection. Calling it on a live pool is a no-op.

        Returns:
            True once the pool answers a trivial query

        Raises:
            ConnectError: If the pool cannot be created or reached
        """
        if self._engine is not None:
            return True

        try:
            engine = create_engine(self.config.get_connection_url(), **self._engine_kwargs())
        except Exception as e:
            raise ConnectError(f"Failed to create engine: {e}") from e

        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            engine.dispose()
            logger.error(f"{self.type} connection failed: {e}")
            raise ConnectError(f"{self.type} connection failed: {e}") from e

        self._engine = engine
        logger.info(f"Connected to {self.type} database: {self.config.display_name}")
        return True

    def disconnect(self):
        """Drain and close the pool. Safe to call on a closed adapter."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.info(f"{self.type} connection pool closed")

    @contextmanager
    def get_connection(self) -> Generator[Connection, None, None]:
        """
        Get a pooled connection as a context manager.

        Example:
            with adapter.get_connection() as conn:
                conn.execute(text("SELECT 1"))
        """
        connection = self.engine.connect()
        try:
            yield connection
        finally:
            connection.close()

    def execute_query(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Run a single statement and return rows as dictionaries. Never retries.

        Args:
            query: SQL text
            params: Optional named bind parameters

        Raises:
            ExecutionError: On any engine failure
        """
        try:
            with self.get_connection() as conn:
                result = conn.execute(text(query), params or {})
                if not result.returns_rows:
                    return []
                return [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            logger.error(f"{self.type} query error: {e}")
            raise ExecutionError(f"Query failed: {e}") from e

    def health_check(self) -> Dict[str, Any]:
        """Probe the pool with a trivial query."""
        try:
            self.execute_query("SELECT 1")
            return {"status": "healthy", "type": self.type}
        except Exception as e:
            return {"status": "unhealthy", "type": self.type, "error": str(e)}

    # ------------------------------------------------------------------
    # Catalog introspection
    # ------------------------------------------------------------------

    @abstractmethod
    def get_table_list(self) -> List[TableSummary]:
        """List base tables with description and estimated row count."""

    @abstractmethod
    def get_table_schema(self, table_name: str) -> TableSchema:
        """Columns and explicit foreign keys of a table."""

    @abstractmethod
    def get_foreign_key_relations(self, table_name: str) -> List[RelationshipEdge]:
        """Explicit foreign keys declared on a table."""

    @staticmethod
    def _require_columns(rows: List[Dict[str, Any]], table_name: str):
        """Catalogs return no columns for unknown tables."""
        if not rows:
            raise ExecutionError(f"Table not found: {table_name}")

    def get_table_count(self, table_name: str) -> int:
        """Exact row count of a table."""
        rows = self.execute_query(
            f"SELECT COUNT(*) AS count FROM {self.quote_identifier(table_name)}"
        )
        return int(rows[0]["count"]) if rows else 0

    def get_sample_data_query(self, table_name: str, limit: int = 3) -> str:
        return f"SELECT * FROM {self.quote_identifier(table_name)} LIMIT {int(limit)}"

    def get_sample_data(self, table_name: str, limit: int = 3) -> List[Dict[str, Any]]:
        """First few rows of a table."""
        return self.execute_query(self.get_sample_data_query(table_name, limit))

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    @staticmethod
    def sanitize_identifier(identifier: str) -> str:
        """Strip everything but letters, digits and underscores."""
        return re.sub(r"[^a-zA-Z0-9_]", "", identifier or "")

    def quote_identifier(self, identifier: str) -> str:
        """Quote an identifier with the engine's quoting character."""
        quote = self.IDENTIFIER_QUOTE
        return f"{quote}{self.sanitize_identifier(identifier)}{quote}"

    def validate_table_name(self, table_name: str) -> bool:
        """False for the engine's system catalog names."""
        return self.sanitize_identifier(table_name).lower() not in self.CATALOG_NAMES

    # ------------------------------------------------------------------
    # Query validation
    # ------------------------------------------------------------------

    def sanitize_query(self, query: str) -> str:
        """
        Reject the query if it matches any deny-list pattern.

        Returns:
            The query with surrounding whitespace removed

        Raises:
            RejectedQueryError: On the first matching pattern
        """
        clean_query = (query or "").strip()
        normalized = normalize_query(clean_query)

        for pattern in self.DENY_PATTERNS:
            if pattern.search(normalized):
                raise RejectedQueryError(
                    f"Potentially dangerous SQL pattern detected: {pattern.pattern}",
                    pattern=pattern.pattern,
                )

        return clean_query

    def validate_select_query(self, query: str) -> str:
        """Sanitize, then require a SELECT statement."""
        clean_query = self.sanitize_query(query)
        if not SELECT_PATTERN.match(normalize_query(clean_query)):
            raise RejectedQueryError("Only SELECT queries are allowed")
        return clean_query

    def extract_table_names(self, query: str) -> Set[str]:
        """
        Scan FROM / JOIN / INTO clauses for referenced tables.

        Names are lower-cased with quotes removed. Schema-qualified
        references keep their qualifier (``db.table``). System catalog
        names are left out. Parenthesized names and comma lists are
        followed; derived tables are skipped and scanned through their
        own FROM clauses.

        Raises:
            RejectedQueryError: If a FROM / JOIN target is not a recognizable name
        """
        scan = STRING_LITERAL_PATTERN.sub("''", normalize_query(query or ""))
        scan = FUNCTION_FROM_PATTERN.sub(lambda m: f"{m.group(1)}({m.group(2)}", scan)
        scan = DISTINCT_FROM_PATTERN.sub("is distinct_from", scan)

        references = []
        for keyword in TABLE_KEYWORD_PATTERN.finditer(scan):
            references.extend(self._scan_table_targets(scan, keyword.end(), keyword.group(1)))

        tables = set()
        for reference in references:
            parts = [self._unquote(p) for p in reference.split(".")]
            if any(not self.validate_table_name(p) for p in parts):
                continue
            tables.add(".".join(parts))
        return tables

    def _scan_table_targets(self, scan: str, pos: int, keyword: str) -> List[str]:
        """Names following one FROM / JOIN / INTO keyword."""
        references = []
        while True:
            pos = OPENING_PATTERN.match(scan, pos).end()
            if SUBQUERY_PATTERN.match(scan, pos):
                pos = self._skip_parenthesized(scan, pos)
            else:
                name = TABLE_NAME_PATTERN.match(scan, pos)
                if name is None:
                    raise RejectedQueryError(
                        f"Unrecognized table reference after {keyword.upper()}"
                    )
                references.append(name.group(0))
                pos = name.end()

            pos = CLOSING_PATTERN.match(scan, pos).end()
            alias = ALIAS_PATTERN.match(scan, pos)
            if alias:
                pos = CLOSING_PATTERN.match(scan, alias.end()).end()

            if keyword != "from" or not scan.startswith(",", pos):
                return references
            pos += 1

    @staticmethod
    def _skip_parenthesized(scan: str, pos: int) -> int:
        """Index of the parenthesis closing the group that contains ``pos``."""
        depth = 1
        for index in range(pos, len(scan)):
            if scan[index] == "(":
                depth += 1
            elif scan[index] == ")":
                depth -= 1
                if depth == 0:
                    return index
        return len(scan)

    @staticmethod
    def _unquote(name: str) -> str:
        return name.strip().strip('`"[]').lower()

    @staticmethod
    def has_limit(query: str) -> bool:
        return bool(LIMIT_PATTERN.search(query))

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
