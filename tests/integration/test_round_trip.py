"""End-to-end tests against a real Neo4j: save, query, expand, delete.

These tests require a Neo4j testcontainer (session-scoped via conftest).
"""

from __future__ import annotations

import re

import pytest

from neogm.errors import StoreError
from neogm.graph.cache import Graph
from neogm.models import Node


class Pet(Node):
    pass


class Person(Node):
    __relationships__ = {
        "friends": {"model": lambda: Person, "type": "knows"},
        "pets": {"model": Pet, "type": "has_pet"},
        "boss": {"model": lambda: Person, "type": "reports_to", "direction": "in", "singular": True},
    }


async def scalar(neo4j_driver, query: str, **parameters):
    async with neo4j_driver.session() as session:
        result = await session.run(query, parameters)
        record = await result.single()
    return None if record is None else record[0]


# ===================================================================
# Save and find
# ===================================================================


class TestSaveAndFind:
    async def test_cascade_save_and_expand(self, database, neo4j_driver):
        ada = Person(name="Ada")
        ada.pets = [Pet(name="Rex"), Pet(name="Tom")]
        await ada.save(cascade=True)

        assert await scalar(neo4j_driver, "MATCH (:Person)-[r:has_pet]->(:Pet) RETURN count(r)") == 2

        [found] = await Person.find({"name": "Ada"}, {"with": "pets"})
        assert found.id == ada.id
        assert sorted(pet.name for pet in found.pets) == ["Rex", "Tom"]
        assert all(isinstance(pet, Pet) for pet in found.pets)

    async def test_cycle_saves_each_node_once(self, database, neo4j_driver):
        a = Person(name="a")
        b = Person(name="b")
        a.friends = [b]
        b.friends = [a]
        await a.save(cascade=True)

        assert await scalar(neo4j_driver, "MATCH (n:Person) RETURN count(n)") == 2
        assert await scalar(neo4j_driver, "MATCH ()-[r:knows]->() RETURN count(r)") == 2

    async def test_nested_expansion_and_fetch_related(self, database):
        ada = Person(name="Ada")
        bob = Person(name="Bob")
        bob.pets = [Pet(name="Rex")]
        ada.friends = [bob]
        await ada.save(cascade=True)

        person = await Person.get(ada.id, {"with": "friends.pets"})
        [friend] = person.friends
        assert friend.name == "Bob"
        assert [pet.name for pet in friend.pets] == ["Rex"]

        fresh = await Person.get(ada.id)
        friends = await fresh.fetch_related("friends")
        assert [f.name for f in friends] == ["Bob"]

    async def test_incoming_relationship_direction(self, database, neo4j_driver):
        employee = Person(name="employee")
        employee.boss = Person(name="manager")
        await employee.save(cascade=True)

        stored = await scalar(
            neo4j_driver,
            "MATCH (m:Person {name: 'manager'})-[:reports_to]->(e:Person) RETURN e.name",
        )
        assert stored == "employee"
        reloaded = await Person.get(employee.id, {"with": "boss"})
        assert reloaded.boss.name == "manager"

    async def test_graph_run_merges_rounds(self, database):
        ada = Person(name="Ada")
        ada.pets = [Pet(name="Rex")]
        await ada.save(cascade=True)

        graph = await Graph.build(
            "MATCH (n:Person {id: $id}) RETURN n", {"id": ada.id}, models={"n": Person}
        )
        person = graph.get_nodes("n")[0]
        assert person.pets == []
        await graph.run(
            "MATCH (n:Person {id: $id})-[r:has_pet]->(p:Pet) RETURN n, r, p",
            {"id": ada.id},
        )
        assert [pet.name for pet in person.pets] == ["Rex"]


# ===================================================================
# Merge, count, delete
# ===================================================================


class TestWrites:
    async def test_merge_is_idempotent(self, database):
        first = await Person.merge({"email": "ada@example.com"}, {"name": "Ada"})
        second = await Person.merge({"email": "ada@example.com"}, {"name": "Ada L."})
        assert re.fullmatch(r"[0-9a-f]{32}", first.id)
        assert second.id == first.id
        assert second.name == "Ada L."
        assert await Person.count() == 1

    async def test_cascade_delete(self, database, neo4j_driver):
        ada = Person(name="Ada")
        ada.pets = [Pet(name="Rex")]
        await ada.save(cascade=True)

        await ada.delete(cascade=True)

        assert ada.deleted
        assert await scalar(neo4j_driver, "MATCH (n) RETURN count(n)") == 0

    async def test_labels(self, database):
        ada = Person(name="Ada")
        await ada.save()
        await ada.add_label("Admin")
        assert len(await Person.query("MATCH (n:Person:Admin)")) == 1
        await ada.remove_label("Admin")
        assert len(await Person.query("MATCH (n:Person:Admin)")) == 0

    async def test_unique_violation_rolls_back(self, database, neo4j_driver):
        Person.add_unique("email")
        try:
            await Person(email="dup@example.com").save()

            second = Person(email="dup@example.com")
            second.pets = [Pet(name="orphan")]
            with pytest.raises(StoreError) as excinfo:
                await second.save(cascade=True)

            assert excinfo.value.code == "Neo.ClientError.Schema.ConstraintValidationFailed"
            assert await scalar(neo4j_driver, "MATCH (n:Pet) RETURN count(n)") == 0
        finally:
            await Person.drop_unique("email")
