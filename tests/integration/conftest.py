"""Integration conftest — session-scoped Neo4j testcontainer.

One Neo4j Community container is shared across the integration suite;
each test starts from an empty database. Tests are skipped when Docker
is not reachable.
"""

from __future__ import annotations

import asyncio
import logging
import time

import pytest
from neo4j import AsyncGraphDatabase
from testcontainers.core.container import DockerContainer

from neogm import db as db_module
from neogm.db import Database

logger = logging.getLogger(__name__)


@pytest.fixture(scope="session")
def neo4j_container():
    """Spin up a Neo4j Community container and yield its bolt URI."""
    container = (
        DockerContainer("neo4j:community")
        .with_exposed_ports(7687)
        .with_env("NEO4J_AUTH", "none")
    )
    try:
        container.start()
    except Exception as exc:
        pytest.skip(f"Docker not available: {exc}")
    try:
        host = container.get_container_host_ip()
        port = container.get_exposed_port(7687)
        uri = f"bolt://{host}:{port}"

        async def wait_for_neo4j():
            driver = AsyncGraphDatabase.driver(uri)
            max_attempts = 30
            for attempt in range(max_attempts):
                try:
                    await driver.verify_connectivity()
                    await driver.close()
                    return
                except Exception as exc:
                    if attempt == max_attempts - 1:
                        await driver.close()
                        raise
                    logger.debug(
                        "Neo4j not ready (attempt %d/%d): %s",
                        attempt + 1,
                        max_attempts,
                        exc,
                    )
                    time.sleep(1)

        asyncio.run(wait_for_neo4j())
        yield uri
    finally:
        container.stop()


@pytest.fixture()
async def neo4j_driver(neo4j_container):
    """Yield an async Neo4j driver connected to the test container."""
    driver = AsyncGraphDatabase.driver(neo4j_container)
    yield driver
    await driver.close()


@pytest.fixture(autouse=True)
async def clean_neo4j(neo4j_driver):
    """Wipe all nodes and relationships before each test."""
    async with neo4j_driver.session() as session:
        await session.run("MATCH (n) DETACH DELETE n")
    yield


@pytest.fixture()
async def database(neo4j_driver):
    """A ``Database`` over the container, installed as the default."""
    database = db_module.init(Database(neo4j_driver, log_queries=True))
    yield database
    db_module._database = None
