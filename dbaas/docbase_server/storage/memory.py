"""
In-memory persistence backend.

This module provides a dict-backed backend for:
- Unit tests
- Integration tests
- Local development without a data directory

Invariants:
    - All data is lost on process exit
    - Records are deep-copied on the way in and out, so callers can never
      mutate stored state through a returned dict
    - Provides the same insertion-order guarantee as the SQLite backend

How to change safely:
    - Keep interface compatible with the PersistenceBackend protocol
    - Add features here to help with testing scenarios
"""

from __future__ import annotations

import copy
from collections import defaultdict
from typing import Any, Dict, List, Optional
import logging

from .base import StorageConnectionError, StorageError

logger = logging.getLogger(__name__)


class InMemoryBackend:
    """In-memory implementation of PersistenceBackend.

    Namespaces map to insertion-ordered dicts. Every operation completes
    without awaiting, so each call is atomic with respect to other
    coroutines on the same event loop.

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.connect()
        >>> await backend.put("system:users", "u1", {"id": "u1"})
    """

    def __init__(self) -> None:
        self._namespaces: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._connected = False
        self._fail_next: Optional[Exception] = None

    @property
    def is_connected(self) -> bool:
        """Whether connected (true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryBackend connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._namespaces.clear()
        logger.debug("InMemoryBackend closed")

    async def get(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        self._check()
        record = self._namespaces.get(namespace, {}).get(key)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, namespace: str, key: str, record: Dict[str, Any]) -> None:
        self._check()
        self._namespaces[namespace][key] = copy.deepcopy(record)

    async def delete(self, namespace: str, key: str) -> bool:
        self._check()
        records = self._namespaces.get(namespace)
        if records is None or key not in records:
            return False
        del records[key]
        return True

    async def scan(self, namespace: str) -> List[Dict[str, Any]]:
        self._check()
        return [copy.deepcopy(r) for r in self._namespaces.get(namespace, {}).values()]

    async def drop(self, namespace: str) -> int:
        self._check()
        records = self._namespaces.pop(namespace, {})
        return len(records)

    def _check(self) -> None:
        if not self._connected:
            raise StorageConnectionError("Not connected")
        if self._fail_next is not None:
            exc, self._fail_next = self._fail_next, None
            raise exc

    # Testing helpers

    def inject_failure(self, exception: Optional[Exception] = None) -> None:
        """Make the next operation raise (testing helper)."""
        self._fail_next = exception or StorageError("Injected failure")

    def get_record_count(self, namespace: str) -> int:
        """Get record count for a namespace (testing helper)."""
        return len(self._namespaces.get(namespace, {}))
