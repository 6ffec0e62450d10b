"""Persistence boundary and bundled store implementations."""

from conduit.storage.base import RecordRepository, WorkflowRepository
from conduit.storage.memory import InMemoryStore
from conduit.storage.postgres import PostgresStore

__all__ = [
    "InMemoryStore",
    "PostgresStore",
    "RecordRepository",
    "WorkflowRepository",
]
