"""
Account persistence.

``AccountStore`` is the contract; ``InMemoryAccountStore`` and
``Neo4jAccountStore`` implement it.
"""

from warden.repositories.account_store import AccountStore, DuplicateEmailError, strictly_after
from warden.repositories.memory_store import InMemoryAccountStore
from warden.repositories.neo4j_store import Neo4jAccountStore

__all__ = [
    "AccountStore",
    "DuplicateEmailError",
    "InMemoryAccountStore",
    "Neo4jAccountStore",
    "strictly_after",
]
