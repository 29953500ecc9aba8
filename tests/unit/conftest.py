"""Unit test fixtures — raw entity factory and an in-memory Neo4j driver.

Raw entities are built with the driver's own ``neo4j.graph`` types so the
graph cache sees exactly what a real query would return. ``FakeDriver``
answers the statements the models issue (node upserts, edge merges,
deletes, label updates) and replays scripted records for everything else.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any

import pytest
from neo4j import Record
from neo4j.graph import Graph as StoreGraph
from neo4j.graph import Node as StoreNode
from neo4j.graph import Path as StorePath

from neogm import db as db_module
from neogm.db import Database
from neogm.observability import reset_latency_metrics

_BACKQUOTED_RE = re.compile(r"`([^`]+)`")
_SET_LABELS_RE = re.compile(r"SET n((?::`[^`]+`)+)")
_LABEL_UPDATE_RE = re.compile(r"(SET|REMOVE) n((?::`[^`]+`)+) RETURN n")
_REL_TYPE_RE = re.compile(r"\[r:`([^`]+)`\]")


# ---------------------------------------------------------------------------
# Raw entities
# ---------------------------------------------------------------------------


class EntityFactory:
    """Builds raw nodes, relationships, paths and records."""

    def __init__(self) -> None:
        self._graph = StoreGraph()
        self._next = 0

    def allocate(self) -> int:
        self._next += 1
        return self._next

    def node(self, *labels: str, identity: int | None = None, **properties: Any) -> StoreNode:
        identity = identity if identity is not None else self.allocate()
        return StoreNode(self._graph, f"4:test:{identity}", identity, labels, properties)

    def rel(
        self,
        rel_type: str,
        start: StoreNode,
        end: StoreNode,
        identity: int | None = None,
        **properties: Any,
    ):
        identity = identity if identity is not None else self.allocate()
        cls = self._graph.relationship_type(rel_type)
        rel = cls(self._graph, f"5:test:{identity}", identity, properties)
        rel._start_node = start
        rel._end_node = end
        return rel

    def path(self, start: StoreNode, *relationships) -> StorePath:
        return StorePath(start, *relationships)

    @staticmethod
    def record(**columns: Any) -> Record:
        return Record(columns)


# ---------------------------------------------------------------------------
# In-memory driver
# ---------------------------------------------------------------------------


class FakeResult:
    def __init__(self, records: list[Record]) -> None:
        self._records = list(records)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for record in self._records:
            yield record

    async def consume(self) -> None:
        self._records = []


class FakeTransaction:
    def __init__(self, driver: FakeDriver) -> None:
        self._driver = driver
        self.statements: list[tuple[str, dict[str, Any]]] = []
        self.committed = False
        self.rolled_back = False
        self.closed = False

    async def run(self, query: str, parameters: dict[str, Any] | None = None) -> FakeResult:
        self.statements.append((query, dict(parameters or {})))
        return self._driver.respond(query, parameters or {})

    async def commit(self) -> None:
        self.committed = True

    async def rollback(self) -> None:
        self.rolled_back = True

    async def close(self) -> None:
        self.closed = True


class FakeSession:
    def __init__(self, driver: FakeDriver, database: str | None) -> None:
        self._driver = driver
        self.database = database
        self.closed = False

    async def __aenter__(self) -> FakeSession:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def run(self, query: str, parameters: dict[str, Any] | None = None) -> FakeResult:
        return self._driver.respond(query, parameters or {})

    async def begin_transaction(self) -> FakeTransaction:
        tx = FakeTransaction(self._driver)
        self._driver.transactions.append(tx)
        return tx

    async def close(self) -> None:
        self.closed = True


class FakeDriver:
    """Answers model statements the way Neo4j would, without a server."""

    def __init__(self, entities: EntityFactory) -> None:
        self.entities = entities
        self.statements: list[tuple[str, dict[str, Any]]] = []
        self.transactions: list[FakeTransaction] = []
        self.scripted: list[list[Record]] = []
        self.nodes: dict[str, StoreNode] = {}
        self.deleted: list[str] = []
        self.edges: list[tuple[str, str, str]] = []
        self.fail_on: tuple[str, Exception] | None = None
        self.closed = False

    def session(self, database: str | None = None) -> FakeSession:
        return FakeSession(self, database)

    async def close(self) -> None:
        self.closed = True

    def script(self, *records: Record) -> None:
        """Queue the records returned by the next unrecognized statement."""
        self.scripted.append(list(records))

    def queries(self) -> list[str]:
        return [query for query, _ in self.statements]

    def respond(self, query: str, parameters: dict[str, Any]) -> FakeResult:
        self.statements.append((query, dict(parameters)))
        if self.fail_on is not None and self.fail_on[0] in query:
            raise self.fail_on[1]
        return FakeResult(self._answer(query, parameters))

    def _store_node(self, node_id: str, labels: list[str], properties: dict[str, Any]) -> StoreNode:
        current = self.nodes.get(node_id)
        identity = int(current.element_id.rsplit(":", 1)[1]) if current else None
        node = self.entities.node(*labels, identity=identity, **properties)
        self.nodes[node_id] = node
        return node

    def _answer(self, query: str, parameters: dict[str, Any]) -> list[Record]:
        if "DETACH DELETE" in query:
            self.deleted.append(parameters["id"])
            self.nodes.pop(parameters["id"], None)
            return []
        if query.startswith("MERGE (n") and "SET n = $properties" in query:
            labels = _BACKQUOTED_RE.findall(_SET_LABELS_RE.search(query).group(1))
            node = self._store_node(parameters["id"], labels, parameters["properties"])
            return [Record({"n": node})]
        if query.startswith("MATCH (start_node"):
            rel_type = _REL_TYPE_RE.search(query).group(1)
            start = self.nodes.get(parameters["start"])
            end = self.nodes.get(parameters["end"])
            if start is None or end is None:
                return []
            if "<-[r:" in query:
                start, end = end, start
            self.edges.append((rel_type, parameters["start"], parameters["end"]))
            rel = self.entities.rel(rel_type, start, end, **parameters["properties"])
            return [Record({"r": rel})]
        match = _LABEL_UPDATE_RE.search(query)
        if match is not None and parameters.get("id") in self.nodes:
            current = self.nodes[parameters["id"]]
            changed = set(_BACKQUOTED_RE.findall(match.group(2)))
            labels = set(current.labels)
            labels = labels - changed if match.group(1) == "REMOVE" else labels | changed
            node = self._store_node(parameters["id"], sorted(labels), dict(current.items()))
            return [Record({"n": node})]
        if query.startswith(("CREATE ", "DROP ")):
            return []
        if self.scripted:
            return self.scripted.pop(0)
        return []


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def entities() -> EntityFactory:
    return EntityFactory()


@pytest.fixture()
def fake_driver(entities) -> FakeDriver:
    return FakeDriver(entities)


@pytest.fixture()
def database(fake_driver) -> Database:
    """A ``Database`` over the fake driver, installed as the default."""
    database = Database(fake_driver, log_queries=True)
    db_module.init(database)
    yield database
    db_module._database = None


@pytest.fixture()
def record() -> Callable[..., Record]:
    return EntityFactory.record


@pytest.fixture(autouse=True)
def _reset_latency():
    reset_latency_metrics()
    yield
    reset_latency_metrics()
