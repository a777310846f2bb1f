"""System-of-record document store.

- DocumentStore: abstract CRUD/query interface consumed by the sync engine
- InMemoryDocumentStore: process-local implementation for dev and tests
- SQLDocumentStore: async SQLAlchemy implementation over a JSON documents table
"""

from src.gymsync.store.base import (
    Document,
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreError,
    VersionConflictError,
)
from src.gymsync.store.memory import InMemoryDocumentStore

__all__ = [
    "Document",
    "DocumentNotFoundError",
    "DocumentStore",
    "DocumentStoreError",
    "InMemoryDocumentStore",
    "VersionConflictError",
]
