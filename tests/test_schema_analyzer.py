from __future__ import annotations

from typing import Dict, List

import pytest

from querysight.core.models import (
    ColumnInfo,
    KeyRole,
    RelationshipEdge,
    RelationshipOrigin,
    TableSchema,
    TableSummary,
)
from querysight.core.schema_analyzer import SchemaAnalyzer


def _pk(name: str = "id", data_type: str = "int") -> ColumnInfo:
    return ColumnInfo(name=name, data_type=data_type, nullable=False, key_role=KeyRole.PRIMARY)


def _col(name: str, data_type: str = "int") -> ColumnInfo:
    return ColumnInfo(name=name, data_type=data_type)


def _table(name: str, *columns: ColumnInfo, foreign_keys: List[RelationshipEdge] = None) -> TableSchema:
    return TableSchema(name=name, columns=list(columns), foreign_keys=foreign_keys or [])


def _schemas(*tables: TableSchema) -> Dict[str, TableSchema]:
    return {t.name: t for t in tables}


class FakeAdapter:
    def __init__(self, schemas: Dict[str, TableSchema]):
        self.schemas = schemas
        self.schema_calls: List[str] = []

    def get_table_list(self) -> List[TableSummary]:
        return [TableSummary(name=name) for name in self.schemas]

    def get_table_schema(self, table_name: str) -> TableSchema:
        self.schema_calls.append(table_name)
        if table_name not in self.schemas:
            raise KeyError(table_name)
        return self.schemas[table_name]


def test_id_suffix_edge_to_users() -> None:
    analyzer = SchemaAnalyzer(FakeAdapter({}))
    edges = analyzer.detect_implicit_relationships(_schemas(
        _table("users", _pk(), _col("name", "varchar")),
        _table("orders", _pk(), _col("user_id")),
    ))

    matching = [e for e in edges if e.key == ("orders", "user_id", "users", "id")]
    assert len(matching) == 1
    assert matching[0].origin == RelationshipOrigin.ID_SUFFIX
    assert matching[0].confidence == 0.9


def test_id_suffix_handles_y_to_ies_plural() -> None:
    analyzer = SchemaAnalyzer(FakeAdapter({}))
    edges = analyzer.detect_implicit_relationships(_schemas(
        _table("categories", _pk()),
        _table("products", _pk(), _col("category_id", "bigint")),
    ))

    assert [(e.target_table, e.origin) for e in edges] == [
        ("categories", RelationshipOrigin.ID_SUFFIX),
    ]


def test_table_prefix_edge_targets_primary_key() -> None:
    analyzer = SchemaAnalyzer(FakeAdapter({}))
    edges = analyzer.detect_implicit_relationships(_schemas(
        _table("customers", _pk("customer_key")),
        _table("invoices", _pk(), _col("customers_ref")),
    ))

    assert len(edges) == 1
    edge = edges[0]
    assert edge.key == ("invoices", "customers_ref", "customers", "customer_key")
    assert edge.origin == RelationshipOrigin.TABLE_PREFIX
    assert edge.confidence == 0.8


def test_semantic_pattern_edge() -> None:
    analyzer = SchemaAnalyzer(FakeAdapter({}))
    edges = analyzer.detect_implicit_relationships(_schemas(
        _table("staff", _pk()),
        _table("posts", _pk(), _col("created_by")),
    ))

    assert len(edges) == 1
    assert edges[0].key == ("posts", "created_by", "staff", "id")
    assert edges[0].origin == RelationshipOrigin.SEMANTIC_PATTERN
    assert edges[0].confidence == 0.7


def test_incompatible_types_produce_no_edge() -> None:
    analyzer = SchemaAnalyzer(FakeAdapter({}))
    edges = analyzer.detect_implicit_relationships(_schemas(
        _table("users", _pk()),
        _table("orders", _pk(), _col("user_id", "varchar(36)")),
    ))
    assert edges == []


def test_declared_foreign_keys_are_not_inferred_again() -> None:
    analyzer = SchemaAnalyzer(FakeAdapter({}))
    declared = RelationshipEdge.explicit("orders", "user_id", "users", "id")
    edges = analyzer.detect_implicit_relationships(_schemas(
        _table("users", _pk()),
        _table("orders", _pk(), _col("user_id"), foreign_keys=[declared]),
    ))
    assert edges == []


def test_edges_sorted_by_confidence() -> None:
    analyzer = SchemaAnalyzer(FakeAdapter({}))
    edges = analyzer.detect_implicit_relationships(_schemas(
        _table("users", _pk()),
        _table("staff", _pk()),
        _table("orders", _pk(), _col("user_id"), _col("created_by")),
    ))
    confidences = [e.confidence for e in edges]
    assert confidences == sorted(confidences, reverse=True)
    assert confidences[0] == 0.9
    for edge in edges:
        assert not edge.is_explicit
        assert edge.confidence <= 0.9


@pytest.mark.parametrize(
    "left, right, expected",
    [
        ("int", "bigint", True),
        ("INT UNSIGNED", "int", True),
        ("VARCHAR(50)", "text", True),
        ("character varying", "uuid", True),
        ("integer", "integer", True),
        ("int", "varchar", False),
        ("point", "int", False),
        ("", "int", False),
    ],
)
def test_types_compatible(left: str, right: str, expected: bool) -> None:
    assert SchemaAnalyzer(FakeAdapter({}))._types_compatible(left, right) is expected


def test_inferred_edge_cannot_exceed_cap() -> None:
    with pytest.raises(ValueError):
        RelationshipEdge("a", "b_id", "b", "id", 0.95, RelationshipOrigin.ID_SUFFIX)
    with pytest.raises(ValueError):
        RelationshipEdge("a", "b_id", "b", "id", 0.5, RelationshipOrigin.EXPLICIT)


def test_analyze_schema_caches_per_table_set() -> None:
    adapter = FakeAdapter(_schemas(
        _table("users", _pk()),
        _table("orders", _pk(), _col("user_id")),
    ))
    analyzer = SchemaAnalyzer(adapter)

    first = analyzer.analyze_schema(["users", "orders"])
    second = analyzer.analyze_schema(["Orders", "USERS"])
    assert first == second
    assert adapter.schema_calls == ["users", "orders"]

    analyzer.clear_cache()
    analyzer.analyze_schema(["users", "orders"])
    assert len(adapter.schema_calls) == 4


def test_analyze_schema_skips_tables_that_fail() -> None:
    adapter = FakeAdapter(_schemas(_table("users", _pk())))
    analyzer = SchemaAnalyzer(adapter)
    assert analyzer.analyze_schema(["users", "missing"]) == []
    assert set(analyzer.schemas) == {"users"}


def test_analyze_schema_defaults_to_every_table() -> None:
    adapter = FakeAdapter(_schemas(
        _table("users", _pk()),
        _table("orders", _pk(), _col("user_id")),
    ))
    edges = SchemaAnalyzer(adapter).analyze_schema()
    assert [e.key for e in edges] == [("orders", "user_id", "users", "id")]


def test_relationship_suggestions_are_join_hints() -> None:
    adapter = FakeAdapter(_schemas(
        _table("users", _pk()),
        _table("orders", _pk(), _col("user_id")),
    ))
    analyzer = SchemaAnalyzer(adapter)
    analyzer.analyze_schema(["users", "orders"])

    suggestions = analyzer.get_relationship_suggestions(["orders", "users"])
    assert len(suggestions) == 1
    assert suggestions[0]["type"] == "implicit_join"
    assert suggestions[0]["suggestion"] == "Consider JOIN users ON orders.user_id = users.id"
    assert analyzer.get_relationship_suggestions(["orders"]) == []


def test_enhanced_schema_splits_explicit_and_implicit() -> None:
    declared = RelationshipEdge.explicit("orders", "product_id", "products", "id")
    adapter = FakeAdapter(_schemas(
        _table("users", _pk()),
        _table("products", _pk()),
        _table("orders", _pk(), _col("user_id"), _col("product_id"), foreign_keys=[declared]),
    ))
    analyzer = SchemaAnalyzer(adapter)

    enhanced = analyzer.get_enhanced_schema("orders", tables=["users", "products", "orders"])

    assert enhanced["explicit_foreign_keys"] == [declared]
    assert [e.target_table for e in enhanced["implicit_foreign_keys"]] == ["users"]
    assert enhanced["total_relationships"] == 2
