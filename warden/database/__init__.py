"""Neo4j connectivity and schema management."""

from warden.database.client import Neo4jClient
from warden.database.schema import SchemaManager

__all__ = ["Neo4jClient", "SchemaManager"]
