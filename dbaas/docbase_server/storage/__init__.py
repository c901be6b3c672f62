"""
Persistence backend abstraction for Docbase.

This module provides a pluggable key/value backend interface supporting:
- SQLite (single file, recommended for single-node deployments)
- In-memory (for testing)

The core never talks to a database directly; every component reads and
writes through PersistenceBackend using (namespace, key) addressing.

Invariants:
    - put() returns only after the record is durably written
    - scan() returns records in first-insertion order
    - Failed writes must not result in partial records

How to change safely:
    - New backends must implement the PersistenceBackend protocol
    - Verify insertion-order semantics; default listing order depends on it
"""

from .base import (
    COLLECTIONS_NAMESPACE,
    EMAILS_NAMESPACE,
    TOKENS_NAMESPACE,
    USERS_NAMESPACE,
    PersistenceBackend,
    StorageConnectionError,
    StorageError,
    create_backend,
    documents_namespace,
    storage_errors,
)
from .memory import InMemoryBackend
from .sqlite import SqliteBackend

__all__ = [
    # Protocol and types
    "PersistenceBackend",
    "StorageError",
    "StorageConnectionError",
    "documents_namespace",
    "storage_errors",
    "COLLECTIONS_NAMESPACE",
    "USERS_NAMESPACE",
    "EMAILS_NAMESPACE",
    "TOKENS_NAMESPACE",
    # Factory
    "create_backend",
    # Implementations
    "InMemoryBackend",
    "SqliteBackend",
]
