"""
Neo4j Async Client

Async wrapper for the Neo4j Python driver with connection pooling,
transaction management and retry on transient failures.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncSession, AsyncTransaction
from neo4j.exceptions import (
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)


RETRYABLE_EXCEPTIONS = (ServiceUnavailable, SessionExpired, TransientError)

_retry_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
    reraise=True,
)


class Neo4jClient:
    """
    Async Neo4j client for the account store.

    Args:
        uri: Neo4j connection URI
        user: Username
        password: Password
        database: Database name
        max_connection_lifetime: Seconds before a pooled connection is recycled
        max_connection_pool_size: Pool size
        connection_timeout: Seconds to wait for a connection
    """

    def __init__(
        self,
        uri: str,
        user: str,
        password: str,
        database: str = "neo4j",
        max_connection_lifetime: int = 3600,
        max_connection_pool_size: int = 50,
        connection_timeout: int = 30,
    ):
        self._uri = uri
        self._user = user
        self._password = password
        self._database = database
        self._max_connection_lifetime = max_connection_lifetime
        self._max_connection_pool_size = max_connection_pool_size
        self._connection_timeout = connection_timeout

        self._driver: AsyncDriver | None = None
        self._connected = False

    @classmethod
    def from_settings(cls, settings) -> "Neo4jClient":
        return cls(
            uri=settings.neo4j_uri,
            user=settings.neo4j_user,
            password=settings.neo4j_password,
            database=settings.neo4j_database,
            max_connection_lifetime=settings.neo4j_max_connection_lifetime,
            max_connection_pool_size=settings.neo4j_max_connection_pool_size,
            connection_timeout=settings.neo4j_connection_timeout,
        )

    async def connect(self) -> None:
        """Establish the driver and verify connectivity."""
        if self._driver is not None:
            return

        logger.info("neo4j_connecting", uri=self._uri, database=self._database)

        self._driver = AsyncGraphDatabase.driver(
            self._uri,
            auth=(self._user, self._password),
            max_connection_lifetime=self._max_connection_lifetime,
            max_connection_pool_size=self._max_connection_pool_size,
            connection_timeout=self._connection_timeout,
        )

        try:
            await self._driver.verify_connectivity()
        except Exception as e:
            logger.error("neo4j_connect_failed", error=str(e))
            await self._driver.close()
            self._driver = None
            raise
        self._connected = True
        logger.info("neo4j_connected")

    async def close(self) -> None:
        if self._driver is not None:
            await self._driver.close()
            self._driver = None
            self._connected = False
            logger.info("neo4j_closed")

    @property
    def is_connected(self) -> bool:
        return self._connected and self._driver is not None

    def _get_driver(self) -> AsyncDriver:
        if self._driver is None:
            raise RuntimeError("Neo4j client not connected. Call connect() first.")
        return self._driver

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get a Neo4j session.

        Usage:
            async with client.session() as session:
                result = await session.run("MATCH (a:Account) RETURN a")
        """
        driver = self._get_driver()
        async with driver.session(database=self._database) as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncTransaction, None]:
        """
        Get an explicit transaction.

        Commits on successful exit, rolls back on exception.
        """
        async with self.session() as session:
            tx = await session.begin_transaction()
            try:
                yield tx
                await tx.commit()
            except Exception:
                if not tx.closed():
                    await tx.rollback()
                raise

    @_retry_transient
    async def execute(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Execute a Cypher query and return all records as dictionaries."""
        async with self.session() as session:
            result = await session.run(query, parameters or {})
            return [dict(record) async for record in result]

    async def _run_single(
        self,
        query: str,
        parameters: dict[str, Any] | None,
    ) -> dict[str, Any] | None:
        async with self.session() as session:
            result = await session.run(query, parameters or {})
            record = await result.single()
            return dict(record) if record else None

    @_retry_transient
    async def execute_single(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Execute a query and return the single result record, or None."""
        return await self._run_single(query, parameters)

    async def execute_conditional(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """
        Run a non-idempotent read-modify-write query in a single attempt.

        Increments and compare-and-set updates must not be replayed: after a
        dropped connection the commit outcome is unknown, so transient errors
        propagate to the caller instead of being retried.
        """
        return await self._run_single(query, parameters)

    @_retry_transient
    async def execute_write(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute a write query and return its update counters."""
        async with self.session() as session:
            result = await session.run(query, parameters or {})
            summary = await result.consume()
            return {
                "nodes_created": summary.counters.nodes_created,
                "nodes_deleted": summary.counters.nodes_deleted,
                "properties_set": summary.counters.properties_set,
            }

    async def health_check(self) -> dict[str, Any]:
        """Check the server; never raises."""
        try:
            result = await self.execute_single(
                "CALL dbms.components() YIELD name, versions, edition "
                "RETURN name, versions, edition LIMIT 1"
            )
            return {
                "status": "healthy",
                "database": self._database,
                "details": result or {},
            }
        except Exception as e:
            logger.error("neo4j_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "database": self._database,
                "error": str(e),
            }

    async def verify_connection(self) -> bool:
        health = await self.health_check()
        return health.get("status") == "healthy"
