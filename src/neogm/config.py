"""Configuration dataclasses.

Frozen dataclasses with sensible defaults. No env-var loading or file
parsing; callers override fields at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the Neo4j async driver."""

    uri: str = "bolt://localhost:7687"
    user: str | None = None
    password: str | None = None
    # None selects the server's default database
    database: str | None = None
    max_connection_pool_size: int = 100
    connection_timeout: float = 30.0
    log_queries: bool = False

    @property
    def auth(self) -> tuple[str, str] | None:
        if self.user is None:
            return None
        return (self.user, self.password or "")


@dataclass(frozen=True)
class QueryConfig:
    """Naming conventions used when building queries."""

    variable: str = "n"
    collection_suffix: str = "_col"


DEFAULT_QUERY_CONFIG = QueryConfig()
