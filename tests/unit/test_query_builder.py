"""Unit tests for filters, query options and statement builders."""

from __future__ import annotations

import re

import pytest

from neogm.errors import InvalidArgumentError
from neogm.models import Direction
from neogm.models import Node
from neogm.query.builder import build_count
from neogm.query.builder import build_edge_merge
from neogm.query.builder import build_merge
from neogm.query.builder import build_node_save
from neogm.query.builder import build_query
from neogm.query.filters import parse_filters
from neogm.query.options import QueryOptions
from neogm.query.options import parse_options


class Person(Node):
    __relationships__ = {"pets": {"type": "has_pet"}}


class Student(Person):
    __label__ = "Learner"


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class TestParseFilters:
    def test_string_selects_id(self):
        assert parse_filters("abc", "n") == (["n.`id` = $n_id"], {"n_id": "abc"})

    def test_integer_selects_store_identity(self):
        assert parse_filters(12, "n") == (["id(n) = $n__id"], {"n__id": 12})

    def test_mapping_operators(self):
        conditions, parameters = parse_filters(
            {
                "name": re.compile("^ad", re.IGNORECASE),
                "age": [30, 31],
                "deleted_at": None,
                "city": "Paris",
            },
            "p",
        )
        assert conditions == [
            "p.`name` =~ $p_name",
            "p.`age` IN $p_age",
            "p.`deleted_at` IS NULL",
            "p.`city` = $p_city",
        ]
        assert parameters == {"p_name": "(?i)^ad", "p_age": [30, 31], "p_city": "Paris"}

    def test_none_means_no_filter(self):
        assert parse_filters(None, "n") == ([], {})

    @pytest.mark.parametrize("bad", [1.5, True, object(), {"bad key": 1}])
    def test_invalid_filter_object(self, bad):
        with pytest.raises(InvalidArgumentError, match="Invalid filter object"):
            parse_filters(bad, "n")


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class TestQueryOptions:
    def test_aliases_and_listification(self):
        options = parse_options({"with": "pets", "return": "n", "set": {"seen": True}, "order_by": "name DESC"})
        assert options.with_ == "pets"
        assert options.return_ == ["n"]
        assert options.set_ == {"seen": True}
        assert options.order_by == ["name DESC"]

    def test_python_names_accepted(self):
        options = parse_options(None, with_=["pets"], limit=5)
        assert options.with_ == ["pets"]
        assert options.limit == 5

    @pytest.mark.parametrize(
        "bad",
        [{"limit": -1}, {"variable": "1n"}, {"unknown": True}, {"set": {"bad key": 1}}],
    )
    def test_invalid_options(self, bad):
        with pytest.raises(InvalidArgumentError, match="Invalid query options"):
            parse_options(bad)

    def test_reparse_with_overrides(self):
        base = QueryOptions(limit=3)
        assert parse_options(base) is base
        assert parse_options(base, skip=1).skip == 1


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


class TestBuildQuery:
    def test_labels_follow_hierarchy(self):
        assert Person.get_labels() == ["Person"]
        assert Student.get_labels() == ["Person", "Learner"]
        assert Student.base_label() == "Person"

    def test_full_query(self):
        options = parse_options(
            {
                "with": "pets",
                "index": "Person(name)",
                "order_by": ["name", "age DESC"],
                "skip": 10,
                "limit": 5,
                "set": {"seen": True},
            }
        )
        query, parameters = build_query(Student, options, {"name": "Ada"})
        assert query.splitlines() == [
            "MATCH (n:`Person`:`Learner`)",
            "USING INDEX n:`Person`(`name`)",
            "WHERE n.`name` = $n_name",
            "OPTIONAL MATCH (n)-[n_r_pets:`has_pet`]->(n_pets)",
            "WITH n, COLLECT(n_pets) AS n_pets_col, COLLECT(n_r_pets) AS n_r_pets_col",
            "SET n.`seen` = $n_set_seen",
            "RETURN n, n_pets_col, n_r_pets_col",
            "ORDER BY n.`name`, n.`age` DESC",
            "SKIP 10",
            "LIMIT 5",
        ]
        assert parameters == {"n_name": "Ada", "n_set_seen": True}

    def test_custom_match_where_and_singular(self):
        options = parse_options(
            {
                "query": "MATCH (n:Person)-[:knows]->(:Person {id: $friend})",
                "where": "n.age > $age",
                "parameters": {"friend": "b", "age": 18},
                "index": "name",
                "singular": True,
                "limit": 9,
            }
        )
        query, parameters = build_query(Person, options)
        assert query.splitlines() == [
            "MATCH (n:Person)-[:knows]->(:Person {id: $friend})",
            "USING INDEX n:`Person`(`name`)",
            "WHERE (n.age > $age)",
            "RETURN n",
            "LIMIT 1",
        ]
        assert parameters == {"friend": "b", "age": 18}

    def test_invalid_order_and_hint(self):
        with pytest.raises(InvalidArgumentError):
            build_query(Person, parse_options({"order_by": "name SIDEWAYS"}))
        with pytest.raises(InvalidArgumentError):
            build_query(Person, parse_options({"index": "Person(name"}))

    def test_count(self):
        query, parameters = build_count(Person, parse_options(None), "abc")
        assert query == "MATCH (n:`Person`)\nWHERE n.`id` = $n_id\nRETURN COUNT(n) AS count"
        assert parameters == {"n_id": "abc"}


class TestWriteBuilders:
    def test_merge(self):
        options = parse_options({"on_create": {"created": 1}, "on_match": {"seen": 2}})
        query, parameters = build_merge(Person, {"email": "a@b"}, {"name": "Ada"}, options, "new-id")
        assert query.splitlines() == [
            "MERGE (n:`Person` {`email`: $criteria.`email`})",
            "ON CREATE SET n.id = coalesce(n.id, $id)",
            "ON CREATE SET n += $on_create",
            "ON MATCH SET n += $on_match",
            "SET n += $criteria",
            "SET n += $properties",
            "RETURN n",
        ]
        assert parameters["id"] == "new-id"
        assert parameters["criteria"] == {"email": "a@b"}

    def test_merge_requires_criteria(self):
        with pytest.raises(InvalidArgumentError):
            build_merge(Person, {}, {}, parse_options(None), "x")

    def test_node_save(self):
        assert build_node_save("Person", ["Person", "Learner"]).splitlines() == [
            "MERGE (n:`Person` {id: $id})",
            "SET n:`Person`:`Learner`",
            "SET n = $properties",
            "RETURN n",
        ]

    def test_edge_directions(self):
        out = build_edge_merge("Person", "Pet", "has_pet", Direction.OUT)
        incoming = build_edge_merge("Person", "Pet", "has_pet", Direction.IN)
        both = build_edge_merge("Person", "Person", "knows", Direction.BOTH)
        assert "MERGE (start_node)-[r:`has_pet`]->(end_node)" in out
        assert "MERGE (start_node)<-[r:`has_pet`]-(end_node)" in incoming
        assert "MERGE (start_node)-[r:`knows`]->(end_node)" in both
        assert "MERGE (end_node)-[r_2:`knows`]->(start_node)" in both
        assert "r_2" not in out
        assert out.endswith("RETURN r")

    def test_rejects_unsafe_identifiers(self):
        with pytest.raises(InvalidArgumentError):
            build_edge_merge("Person", "Pet", "has pet`) DETACH", Direction.OUT)
        with pytest.raises(InvalidArgumentError):
            build_node_save("Person", ["Bad Label"])
