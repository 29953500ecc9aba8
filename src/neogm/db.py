"""Neo4j store adapter — sessions, transactions and error conversion.

``Database`` wraps an ``AsyncDriver`` and is the only place statements are
sent to the store. Call ``init(...)`` once to install the process default
used by models and graphs that are not given an explicit database.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from neo4j import AsyncDriver
from neo4j import AsyncGraphDatabase
from neo4j import Record
from neo4j import time as neo4j_time
from neo4j.exceptions import DriverError
from neo4j.exceptions import Neo4jError

from neogm.config import DatabaseConfig
from neogm.errors import StoreError
from neogm.graph.schema import ConstraintRegistry
from neogm.observability import measure

logger = logging.getLogger(__name__)

_STORE_ERRORS = (Neo4jError, DriverError)


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def neo4j_to_python(value: object) -> object:
    """Convert Neo4j temporal types to Python stdlib equivalents."""
    if isinstance(value, (neo4j_time.DateTime, neo4j_time.Date, neo4j_time.Time)):
        return value.to_native()
    if isinstance(value, list):
        return [neo4j_to_python(v) for v in value]
    return value


def convert_props(props: Mapping[str, Any]) -> dict[str, Any]:
    """Convert all Neo4j types in a property dict to Python types."""
    return {k: neo4j_to_python(v) for k, v in props.items()}


def _store_error(exc: Exception) -> StoreError:
    message = exc.message if isinstance(exc, Neo4jError) else None
    return StoreError(
        message or str(exc) or type(exc).__name__,
        code=getattr(exc, "code", None),
    )


@dataclass
class QueryLog:
    """The most recent statement sent by a ``Database``."""

    query: str
    parameters: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


class Transaction:
    """An explicit write transaction plus the cycle guard of one call tree."""

    def __init__(self, database: Database, session: Any, tx: Any) -> None:
        self.database = database
        self.visited_ids: set[str] = set()
        self.closed = False
        self._session = session
        self._tx = tx

    async def run(
        self, query: str, parameters: Mapping[str, Any] | None = None
    ) -> list[Record]:
        return await self.database._execute(
            self._tx.run, query, parameters, operation="db.transaction"
        )

    async def commit(self) -> None:
        try:
            await self._tx.commit()
        except _STORE_ERRORS as exc:
            raise _store_error(exc) from exc
        logger.debug("transaction committed (%d visited)", len(self.visited_ids))

    async def rollback(self) -> None:
        try:
            await self._tx.rollback()
        except _STORE_ERRORS as exc:
            raise _store_error(exc) from exc
        logger.debug("transaction rolled back")

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self._tx.close()
        except _STORE_ERRORS as exc:
            logger.warning("transaction close failed: %s", exc)
        finally:
            await self._session.close()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class Database:
    """Async facade over a Neo4j driver."""

    def __init__(
        self,
        driver: AsyncDriver,
        *,
        database: str | None = None,
        constraints: ConstraintRegistry | None = None,
        log_queries: bool = False,
    ) -> None:
        self._driver = driver
        self._database = database
        self._log_queries = log_queries
        self.constraints = constraints if constraints is not None else ConstraintRegistry()
        self.last_query: QueryLog | None = None

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> Database:
        driver = AsyncGraphDatabase.driver(
            config.uri,
            auth=config.auth,
            max_connection_pool_size=config.max_connection_pool_size,
            connection_timeout=config.connection_timeout,
        )
        return cls(driver, database=config.database, log_queries=config.log_queries)

    @property
    def driver(self) -> AsyncDriver:
        return self._driver

    @property
    def name(self) -> str | None:
        return self._database

    async def _execute(
        self,
        runner: Callable[..., Awaitable[Any]],
        query: str,
        parameters: Mapping[str, Any] | None,
        *,
        operation: str,
    ) -> list[Record]:
        params = dict(parameters or {})
        self.last_query = QueryLog(query, params)
        if self._log_queries:
            logger.debug("statement: %s params=%s", query, sorted(params))
        else:
            logger.debug("statement: %s", query)
        try:
            with measure(operation):
                result = await runner(query, params)
                return [record async for record in result]
        except _STORE_ERRORS as exc:
            self.last_query.error = str(exc)
            raise _store_error(exc) from exc

    async def ensure_constraints(self) -> int:
        """Apply pending index and uniqueness statements."""
        if not self.constraints.pending():
            return 0
        try:
            return await self.constraints.ensure(self._driver, self._database)
        except _STORE_ERRORS as exc:
            raise _store_error(exc) from exc

    async def query(
        self, query: str, parameters: Mapping[str, Any] | None = None
    ) -> list[Record]:
        """Run *query* in an auto-commit session and return all records."""
        await self.ensure_constraints()
        async with self._driver.session(database=self._database) as session:
            return await self._execute(
                session.run, query, parameters, operation="db.query"
            )

    async def scalar(
        self, query: str, parameters: Mapping[str, Any] | None = None
    ) -> Any:
        records = await self.query(query, parameters)
        if not records:
            return None
        return records[0][0]

    async def begin_transaction(self) -> Transaction:
        await self.ensure_constraints()
        session = self._driver.session(database=self._database)
        try:
            tx = await session.begin_transaction()
        except _STORE_ERRORS as exc:
            await session.close()
            raise _store_error(exc) from exc
        return Transaction(self, session, tx)

    @asynccontextmanager
    async def transaction(
        self, existing: Transaction | None = None
    ) -> AsyncIterator[Transaction]:
        """Yield *existing*, or a new transaction committed on success.

        On any exception the new transaction is rolled back and the error
        re-raised unchanged.
        """
        if existing is not None:
            yield existing
            return

        tx = await self.begin_transaction()
        try:
            yield tx
        except BaseException:
            try:
                await tx.rollback()
            except StoreError as rollback_exc:
                logger.warning("rollback failed: %s", rollback_exc)
            raise
        else:
            await tx.commit()
        finally:
            await tx.close()

    async def close(self) -> None:
        await self._driver.close()


# ---------------------------------------------------------------------------
# Process default (set via init())
# ---------------------------------------------------------------------------

_database: Database | None = None


def init(config: DatabaseConfig | Database | None = None) -> Database:
    """Install the default database from a config or an existing instance."""
    global _database
    if isinstance(config, Database):
        _database = config
    else:
        _database = Database.from_config(config or DatabaseConfig())
    return _database


def get_database() -> Database:
    if _database is None:
        raise RuntimeError("Database not initialized. Call init() first.")
    return _database


async def shutdown() -> None:
    """Close and clear the default database."""
    global _database
    if _database is not None:
        await _database.close()
    _database = None
