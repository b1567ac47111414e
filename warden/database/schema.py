"""
Neo4j Schema Manager

Uniqueness constraints and lookup indexes for the Account node. Every
statement uses IF NOT EXISTS, so ``ensure_schema`` is safe to run on each
startup.
"""

import structlog
from neo4j.exceptions import ClientError

from warden.database.client import Neo4jClient

logger = structlog.get_logger(__name__)

CONSTRAINTS = [
    (
        "account_id_unique",
        "CREATE CONSTRAINT account_id_unique IF NOT EXISTS "
        "FOR (a:Account) REQUIRE a.id IS UNIQUE",
    ),
    (
        "account_email_unique",
        "CREATE CONSTRAINT account_email_unique IF NOT EXISTS "
        "FOR (a:Account) REQUIRE a.email IS UNIQUE",
    ),
]

INDEXES = [
    (
        "account_role_idx",
        "CREATE INDEX account_role_idx IF NOT EXISTS FOR (a:Account) ON (a.role)",
    ),
    (
        "account_active_idx",
        "CREATE INDEX account_active_idx IF NOT EXISTS FOR (a:Account) ON (a.is_active)",
    ),
    (
        "account_reset_token_idx",
        "CREATE INDEX account_reset_token_idx IF NOT EXISTS "
        "FOR (a:Account) ON (a.reset_token_hash)",
    ),
    (
        "account_verify_token_idx",
        "CREATE INDEX account_verify_token_idx IF NOT EXISTS "
        "FOR (a:Account) ON (a.verify_token_hash)",
    ),
]


class SchemaManager:
    """Applies the account schema to a connected client."""

    def __init__(self, client: Neo4jClient):
        self.client = client

    async def ensure_schema(self) -> dict[str, bool]:
        """
        Create all constraints and indexes.

        Returns:
            Dict of schema element names to success status
        """
        results: dict[str, bool] = {}
        for name, statement in CONSTRAINTS + INDEXES:
            try:
                await self.client.execute_write(statement)
                results[name] = True
            except ClientError as e:
                logger.error("schema_element_failed", name=name, error=str(e))
                results[name] = False

        logger.info(
            "schema_setup_complete",
            total=len(results),
            successful=sum(1 for ok in results.values() if ok),
        )
        return results

    async def drop_all(self) -> None:
        """Remove every account constraint and index. Test databases only."""
        for name, _ in CONSTRAINTS:
            await self.client.execute_write(f"DROP CONSTRAINT {name} IF EXISTS")
        for name, _ in INDEXES:
            await self.client.execute_write(f"DROP INDEX {name} IF EXISTS")
        logger.warning("schema_dropped")
