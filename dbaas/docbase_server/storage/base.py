"""
Base protocol and types for the persistence backend abstraction.

This module defines the PersistenceBackend protocol that all backends must
implement, along with the namespace helpers and storage errors.

Records are JSON-compatible dicts addressed by ``(namespace, key)``.
Documents live in the ``collection:<id>`` namespace keyed by document id;
system records (collections, users, email index, tokens) live in
``system:*`` namespaces.

Invariants:
    - put() returns only after the record is durably written
    - scan() yields records in first-insertion order; overwriting a key
      keeps its original position
    - A failed put() must not leave a partial record behind

How to change safely:
    - New backends must implement the full PersistenceBackend protocol
    - Add new methods as optional with default implementations
    - Keep namespace names stable; they are part of the on-disk format
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
    TYPE_CHECKING,
)
import logging

from ..errors import InternalError

if TYPE_CHECKING:
    from ..config import StorageConfig

logger = logging.getLogger(__name__)

COLLECTIONS_NAMESPACE = "system:collections"
USERS_NAMESPACE = "system:users"
EMAILS_NAMESPACE = "system:emails"
TOKENS_NAMESPACE = "system:tokens"


def documents_namespace(collection_id: str) -> str:
    """Namespace holding the documents of one collection."""
    return f"collection:{collection_id}"


class StorageError(Exception):
    """Base exception for persistence backend operations."""
    pass


class StorageConnectionError(StorageError):
    """Backend is not connected or the connection failed."""
    pass


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate backend failures into InternalError.

    Other exceptions, DocbaseError included, pass through unchanged.
    """
    try:
        yield
    except StorageError as e:
        logger.error(f"Persistence failure during {operation}: {e}", exc_info=True)
        raise InternalError(f"Persistence failure during {operation}", operation=operation) from e


@runtime_checkable
class PersistenceBackend(Protocol):
    """Protocol for persistence backends.

    The document store, auth manager and collection catalogue read and
    write exclusively through this interface.

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.connect()
        >>> await backend.put("collection:posts", "p1", {"id": "p1"})
        >>> await backend.get("collection:posts", "p1")
        {'id': 'p1'}
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the backend.

        Must be called before any other operations.

        Raises:
            StorageConnectionError: If the backend cannot be opened
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the backend and release resources."""
        ...

    @abstractmethod
    async def get(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        """Read one record, or None if absent."""
        ...

    @abstractmethod
    async def put(self, namespace: str, key: str, record: Dict[str, Any]) -> None:
        """Insert or overwrite one record.

        Raises:
            StorageConnectionError: If not connected
            StorageError: For other write failures
        """
        ...

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> bool:
        """Delete one record.

        Returns:
            True if a record was deleted, False if it did not exist
        """
        ...

    @abstractmethod
    async def scan(self, namespace: str) -> List[Dict[str, Any]]:
        """Return every record in a namespace in insertion order."""
        ...

    @abstractmethod
    async def drop(self, namespace: str) -> int:
        """Delete every record in a namespace.

        Returns:
            Number of records deleted
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the backend is open."""
        ...


def create_backend(config: "StorageConfig") -> PersistenceBackend:
    """Factory function to create a persistence backend from configuration.

    Args:
        config: Storage configuration

    Returns:
        Appropriate PersistenceBackend implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StorageBackend
    from .memory import InMemoryBackend
    from .sqlite import SqliteBackend

    if config.backend == StorageBackend.MEMORY:
        return InMemoryBackend()
    elif config.backend == StorageBackend.SQLITE:
        return SqliteBackend(
            data_dir=config.data_dir,
            db_filename=config.db_filename,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
        )
    else:
        raise ValueError(f"Unsupported storage backend: {config.backend}")
