from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from querysight.config import EngineConfig, EngineType
from querysight.core.adapters import (
    MySQLAdapter,
    PostgreSQLAdapter,
    SQLiteAdapter,
    create_adapter,
)
from querysight.core.models import KeyRole, RelationshipOrigin
from querysight.exceptions import ExecutionError, NotConnectedError, RejectedQueryError


def _mysql() -> MySQLAdapter:
    return MySQLAdapter(EngineConfig(kind=EngineType.MYSQL, database="shop"))


def _postgres() -> PostgreSQLAdapter:
    return PostgreSQLAdapter(EngineConfig(kind=EngineType.POSTGRESQL, database="shop"))


def _sqlite() -> SQLiteAdapter:
    return SQLiteAdapter(EngineConfig(kind=EngineType.SQLITE))


@pytest.mark.parametrize(
    "query",
    [
        "DROP TABLE users",
        "SELECT * FROM users; DROP TABLE users",
        "SELECT * FROM users -- trailing comment",
        "SELECT * FROM users /* hidden */",
        "SELECT id FROM users UNION SELECT id FROM secrets",
        "SELECT id FROM users union all\n  select id FROM secrets",
        "SELECT * FROM users WHERE id = 1 OR 1=1",
        "SELECT * FROM users WHERE id = 1 AND 1 = 1",
        "SELECT CASE WHEN id = 1 THEN 'a' END FROM users",
        "SELECT SLEEP(5) FROM users",
        "SELECT BENCHMARK(1000, md5('x'))",
        "UPDATE users SET name = 'x'",
    ],
)
def test_common_deny_list_applies_to_every_engine(query: str) -> None:
    for adapter in (_mysql(), _postgres(), _sqlite()):
        with pytest.raises(RejectedQueryError):
            adapter.sanitize_query(query)


@pytest.mark.parametrize(
    "adapter_factory, query",
    [
        (_mysql, "SELECT * FROM users # comment"),
        (_mysql, "SELECT * FROM users INTO OUTFILE '/tmp/x'"),
        (_mysql, "SELECT LOAD_FILE('/etc/passwd')"),
        (_mysql, "SELECT table_name FROM information_schema.tables"),
        (_mysql, "SELECT CONCAT(name, email) FROM users"),
        (_mysql, "SELECT IF(id = 1, 'a', 'b') FROM users"),
        (_postgres, "SELECT pg_sleep(5)"),
        (_postgres, "SELECT * FROM pg_catalog.pg_tables"),
        (_postgres, "SELECT SUBSTRING(name, 1, 1) FROM users"),
        (_postgres, "SELECT pg_read_file('/etc/passwd')"),
        (_sqlite, "PRAGMA table_info(users)"),
        (_sqlite, "SELECT * FROM sqlite_master"),
        (_sqlite, "ATTACH DATABASE '/tmp/x.db' AS other"),
        (_sqlite, "SELECT load_extension('evil')"),
        (_sqlite, "SELECT randomblob(16)"),
        (_sqlite, "SELECT concat(name, email) FROM users"),
        (_sqlite, "SELECT concat_ws('-', name, email) FROM users"),
        (_sqlite, "SELECT iif(id = 1, 'a', 'b') FROM users"),
    ],
)
def test_engine_specific_deny_list(adapter_factory, query: str) -> None:
    with pytest.raises(RejectedQueryError) as excinfo:
        adapter_factory().sanitize_query(query)
    assert excinfo.value.pattern
    assert "Potentially dangerous SQL pattern detected" in str(excinfo.value)


@pytest.mark.parametrize(
    "query",
    [
        "SELECT * FROM users",
        "  select name, created_at, updated_at from users order by created_at desc;",
        "SELECT COUNT(*) AS total FROM orders GROUP BY user_id",
        "SELECT o.id FROM orders o JOIN users u ON o.user_id = u.id WHERE u.name = 'Ada'",
    ],
)
def test_sanitize_accepts_plain_selects(query: str) -> None:
    for adapter in (_mysql(), _postgres(), _sqlite()):
        assert adapter.sanitize_query(query) == query.strip()


def test_validate_select_query_rejects_non_select() -> None:
    adapter = _sqlite()
    with pytest.raises(RejectedQueryError, match="Only SELECT queries are allowed"):
        adapter.validate_select_query("WITH x AS (SELECT 1) SELECT * FROM x")
    with pytest.raises(RejectedQueryError, match="Only SELECT queries are allowed"):
        adapter.validate_select_query("EXPLAIN SELECT * FROM users")
    assert adapter.validate_select_query(" SELECT 1 ") == "SELECT 1"


def test_extract_table_names_from_and_join() -> None:
    adapter = _postgres()
    tables = adapter.extract_table_names(
        "SELECT * FROM Customers c JOIN secrets s ON c.id = s.owner_id"
    )
    assert tables == {"customers", "secrets"}


def test_extract_table_names_comma_list_and_quotes() -> None:
    adapter = _mysql()
    tables = adapter.extract_table_names(
        "SELECT * FROM `orders` o, users AS u, products WHERE o.user_id = u.id"
    )
    assert tables == {"orders", "users", "products"}


def test_extract_table_names_keeps_schema_qualifier() -> None:
    adapter = _postgres()
    assert adapter.extract_table_names('SELECT * FROM public."users"') == {"public.users"}


def test_extract_table_names_ignores_literals_and_extract() -> None:
    adapter = _postgres()
    tables = adapter.extract_table_names(
        "SELECT EXTRACT(YEAR FROM created_at) AS y FROM orders WHERE note = 'from secrets'"
    )
    assert tables == {"orders"}


def test_extract_table_names_filters_catalog_names() -> None:
    assert _sqlite().extract_table_names("SELECT name FROM sqlite_master") == set()


@pytest.mark.parametrize(
    "query, expected",
    [
        ("SELECT * FROM (secrets)", {"secrets"}),
        ('SELECT * FROM"secrets"', {"secrets"}),
        ("SELECT * FROM customers c, (secrets) s", {"customers", "secrets"}),
        ("SELECT * FROM (SELECT * FROM secrets) AS s", {"secrets"}),
        ("SELECT * FROM ((customers)) JOIN (secrets) ON 1 = 2", {"customers", "secrets"}),
    ],
)
def test_extract_table_names_sees_through_parentheses_and_quotes(query: str, expected: set) -> None:
    assert _sqlite().extract_table_names(query) == expected


def test_unrecognized_table_reference_is_rejected() -> None:
    with pytest.raises(RejectedQueryError):
        _sqlite().extract_table_names("SELECT * FROM @x")


def test_identifier_quoting_is_engine_specific() -> None:
    assert _mysql().quote_identifier("users") == "`users`"
    assert _postgres().quote_identifier("users") == '"users"'
    assert _sqlite().quote_identifier("us`er\"s;--") == '"users"'


def test_has_limit() -> None:
    assert SQLiteAdapter.has_limit("select * from t limit 5")
    assert not SQLiteAdapter.has_limit("select * from t")
    assert SQLiteAdapter.has_limit("select * from t limit 5 offset 10;")
    assert not SQLiteAdapter.has_limit("select * from t where id in (select id from t limit 1)")


def test_create_adapter_selects_by_engine_kind() -> None:
    assert isinstance(create_adapter(EngineConfig(kind=EngineType.MYSQL)), MySQLAdapter)
    assert isinstance(create_adapter(EngineConfig(kind=EngineType.POSTGRESQL)), PostgreSQLAdapter)
    assert isinstance(create_adapter(EngineConfig(kind=EngineType.SQLITE)), SQLiteAdapter)


def test_engine_requires_connect() -> None:
    adapter = _sqlite()
    with pytest.raises(NotConnectedError):
        adapter.execute_query("SELECT 1")


def test_sqlite_connect_is_idempotent_and_disconnect_is_safe(sqlite_config: EngineConfig) -> None:
    adapter = SQLiteAdapter(sqlite_config)
    assert adapter.connect() is True
    engine = adapter.engine
    assert adapter.connect() is True
    assert adapter.engine is engine
    adapter.disconnect()
    adapter.disconnect()
    assert not adapter.is_connected


def test_sqlite_catalog_introspection(sqlite_config: EngineConfig) -> None:
    with SQLiteAdapter(sqlite_config) as adapter:
        summaries = {t.name: t for t in adapter.get_table_list()}
        assert set(summaries) == {"users", "products", "orders", "customers", "secrets"}
        assert summaries["products"].estimated_row_count == 5

        users = adapter.get_table_schema("users")
        assert users.column_names == ["id", "name", "email"]
        assert users.get_column("id").key_role == KeyRole.PRIMARY
        name = users.get_column("name")
        assert (name.data_type, name.max_length, name.nullable) == ("VARCHAR", 50, False)
        assert users.get_column("email").key_role == KeyRole.UNIQUE

        orders = adapter.get_table_schema("orders")
        assert orders.get_column("created_at").key_role == KeyRole.INDEXED
        assert len(orders.foreign_keys) == 1
        fk = orders.foreign_keys[0]
        assert (fk.source_column, fk.target_table, fk.target_column) == ("product_id", "products", "id")
        assert fk.origin == RelationshipOrigin.EXPLICIT
        assert fk.confidence == 1.0

        assert adapter.get_table_count("orders") == 3
        assert len(adapter.get_sample_data("products", 2)) == 2
        assert adapter.health_check() == {"status": "healthy", "type": "sqlite"}


def test_sqlite_unknown_table_raises(sqlite_config: EngineConfig) -> None:
    with SQLiteAdapter(sqlite_config) as adapter:
        with pytest.raises(ExecutionError, match="Table not found: ghosts"):
            adapter.get_table_schema("ghosts")


def _fake_executor(responses: Dict[str, List[Dict[str, Any]]]):
    calls: List[str] = []

    def execute_query(query: str, params: Optional[Dict[str, Any]] = None):
        calls.append(query)
        for marker, rows in responses.items():
            if marker in query:
                return rows
        return []

    return execute_query, calls


def test_mysql_catalog_translation(monkeypatch: pytest.MonkeyPatch) -> None:
    adapter = _mysql()
    execute_query, calls = _fake_executor({
        "KEY_COLUMN_USAGE": [{
            "column_name": "user_id",
            "referenced_table_name": "users",
            "referenced_column_name": "id",
            "constraint_name": "fk_orders_users",
        }],
        "INFORMATION_SCHEMA.COLUMNS": [
            {"column_name": "id", "data_type": "int", "is_nullable": "NO", "column_key": "PRI",
             "column_default": None, "column_comment": "", "max_length": None},
            {"column_name": "user_id", "data_type": "int", "is_nullable": "YES", "column_key": "MUL",
             "column_default": None, "column_comment": "Buyer", "max_length": None},
            {"column_name": "code", "data_type": "varchar", "is_nullable": "NO", "column_key": "UNI",
             "column_default": "x", "column_comment": "", "max_length": 12},
        ],
    })
    monkeypatch.setattr(adapter, "execute_query", execute_query)

    schema = adapter.get_table_schema("orders")

    assert [c.key_role for c in schema.columns] == [KeyRole.PRIMARY, KeyRole.INDEXED, KeyRole.UNIQUE]
    assert schema.get_column("user_id").comment == "Buyer"
    assert schema.get_column("code").max_length == 12
    assert schema.get_column("code").nullable is False
    assert schema.foreign_keys[0].target_table == "users"
    assert len(calls) == 2


def test_postgres_catalog_translation(monkeypatch: pytest.MonkeyPatch) -> None:
    adapter = _postgres()
    execute_query, _ = _fake_executor({
        "pg_index": [{"column_name": "id"}, {"column_name": "user_id"}],
        "FOREIGN KEY": [{
            "column_name": "user_id",
            "referenced_table_name": "users",
            "referenced_column_name": "id",
            "constraint_name": "orders_user_id_fkey",
        }],
        "'PRIMARY KEY', 'UNIQUE'": [
            {"column_name": "id", "constraint_type": "PRIMARY KEY"},
            {"column_name": "id", "constraint_type": "UNIQUE"},
        ],
        "col_description": [
            {"column_name": "id", "data_type": "integer", "is_nullable": "NO",
             "column_default": "nextval('orders_id_seq')", "max_length": None, "column_comment": None},
            {"column_name": "user_id", "data_type": "integer", "is_nullable": "YES",
             "column_default": None, "max_length": None, "column_comment": "Buyer"},
            {"column_name": "status", "data_type": "character varying", "is_nullable": "YES",
             "column_default": None, "max_length": 20, "column_comment": None},
        ],
    })
    monkeypatch.setattr(adapter, "execute_query", execute_query)

    schema = adapter.get_table_schema("orders")

    assert schema.get_column("id").key_role == KeyRole.PRIMARY
    assert schema.get_column("user_id").key_role == KeyRole.INDEXED
    assert schema.get_column("status").key_role == KeyRole.NONE
    assert schema.get_column("status").max_length == 20
    assert schema.foreign_keys[0].key == ("orders", "user_id", "users", "id")
