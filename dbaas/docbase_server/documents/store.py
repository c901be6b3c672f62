"""
Document store for Docbase.

This module owns collections and documents:
- Collection CRUD (deleting a collection cascades to its documents)
- Document CRUD with per-document atomicity
- Listing with filter, ordering and pagination via the query engine
- Handing every committed mutation to the change notification bus

Invariants:
    - A document's collection always exists
    - Document ids are unique per collection
    - revision is 1 on create and strictly increases on every update
    - Every read-check-write on a document runs under that document's lock
    - Notification happens after the write commits and never fails it

How to change safely:
    - Keep the bus call after the persistence write
    - Never hold one document's lock while acquiring another's
    - Test concurrent updates with and without expected_revision
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
import weakref
from typing import TYPE_CHECKING, Any, Callable, Optional

from ..errors import ConflictError, NotFoundError, ValidationError
from ..query.filters import compile_filter, matches
from ..query.ordering import clamp_page, sort_documents
from ..realtime.models import ChangeEvent, ChangeKind
from ..storage.base import COLLECTIONS_NAMESPACE, PersistenceBackend, documents_namespace, storage_errors
from ..values import validate_data
from .models import Collection, Document, DocumentPage

if TYPE_CHECKING:
    from ..auth.manager import AuthContext
    from ..realtime.bus import ChangeNotificationBus

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _require_id(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string", field_name=name)
    return value


class DocumentStore:
    """Collections and documents on top of a persistence backend.

    Thread safety:
        Designed for a single asyncio event loop. Mutations of one
        document are serialized by a per-document asyncio.Lock; different
        documents proceed concurrently. There is no store-wide lock.

    Example:
        >>> store = DocumentStore(backend, bus)
        >>> await store.create_collection("Posts", collection_id="posts")
        >>> doc = await store.create_document("posts", {"title": "Hello"})
        >>> page = await store.list_documents("posts", {"title_starts_with": "He"})
    """

    def __init__(
        self,
        backend: PersistenceBackend,
        bus: Optional[ChangeNotificationBus] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        """Initialize the store.

        Args:
            backend: Persistence backend (must be connected before use)
            bus: Change notification bus; None disables notifications
            clock: Millisecond clock, injectable for tests
        """
        self.backend = backend
        self.bus = bus
        self.clock = clock or _now_ms
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._mutation_count = 0

    def _lock_for(self, scope: str, key: str) -> asyncio.Lock:
        lock = self._locks.get((scope, key))
        if lock is None:
            lock = asyncio.Lock()
            self._locks[(scope, key)] = lock
        return lock

    # Collections

    async def create_collection(
        self,
        name: str,
        collection_id: Optional[str] = None,
        webhook_url: Optional[str] = None,
    ) -> Collection:
        """Create a collection.

        Raises:
            ValidationError: If name is empty
            ConflictError: If collection_id already exists
        """
        _require_id(name, "name")
        collection_id = _require_id(collection_id, "collection_id") if collection_id is not None else str(uuid.uuid4())

        async with self._lock_for("collections", collection_id):
            with storage_errors("create_collection"):
                if await self.backend.get(COLLECTIONS_NAMESPACE, collection_id) is not None:
                    raise ConflictError(
                        f"Collection already exists: {collection_id}",
                        resource_type="collection",
                        resource_id=collection_id,
                    )
                collection = Collection(
                    id=collection_id,
                    name=name,
                    created_at=self.clock(),
                    webhook_url=webhook_url or None,
                )
                await self.backend.put(COLLECTIONS_NAMESPACE, collection_id, collection.to_dict())

        logger.info("Created collection", extra={"collection_id": collection_id})
        return collection

    async def get_collection(self, collection_id: str) -> Collection:
        """Get a collection.

        Raises:
            NotFoundError: If it does not exist
        """
        with storage_errors("get_collection"):
            record = await self.backend.get(COLLECTIONS_NAMESPACE, collection_id)
        if record is None:
            raise NotFoundError(
                f"Collection not found: {collection_id}",
                resource_type="collection",
                resource_id=collection_id,
            )
        return Collection.from_record(record)

    async def collection_exists(self, collection_id: str) -> bool:
        with storage_errors("collection_exists"):
            return await self.backend.get(COLLECTIONS_NAMESPACE, collection_id) is not None

    async def list_collections(self) -> list[Collection]:
        """All collections in creation order."""
        with storage_errors("list_collections"):
            records = await self.backend.scan(COLLECTIONS_NAMESPACE)
        return [Collection.from_record(r) for r in records]

    async def update_collection(
        self,
        collection_id: str,
        name: Optional[str] = None,
        webhook_url: Any = _UNSET,
    ) -> Collection:
        """Rename a collection or change its webhook URL.

        Pass ``webhook_url=None`` to remove the webhook.

        Raises:
            NotFoundError: If the collection does not exist
            ValidationError: If name is given but empty
        """
        async with self._lock_for("collections", collection_id):
            collection = await self.get_collection(collection_id)
            if name is not None:
                collection.name = _require_id(name, "name")
            if webhook_url is not _UNSET:
                collection.webhook_url = webhook_url or None
            with storage_errors("update_collection"):
                await self.backend.put(COLLECTIONS_NAMESPACE, collection_id, collection.to_dict())
        return collection

    async def delete_collection(self, collection_id: str) -> int:
        """Delete a collection and all its documents.

        Each cascaded document is published as a delete change.

        Returns:
            Number of documents deleted

        Raises:
            NotFoundError: If the collection does not exist
        """
        namespace = documents_namespace(collection_id)

        async with self._lock_for("collections", collection_id):
            collection = await self.get_collection(collection_id)
            with storage_errors("delete_collection"):
                # Remove the catalogue entry first so new creates fail fast
                await self.backend.delete(COLLECTIONS_NAMESPACE, collection_id)
                records = await self.backend.scan(namespace)

            deleted = 0
            for record in records:
                document_id = record["id"]
                async with self._lock_for(collection_id, document_id):
                    with storage_errors("delete_collection"):
                        current = await self.backend.get(namespace, document_id)
                        if current is None:
                            continue
                        await self.backend.delete(namespace, document_id)
                    deleted += 1
                    self._publish(collection, ChangeKind.DELETE, Document.from_record(current))

            with storage_errors("delete_collection"):
                await self.backend.drop(namespace)

        logger.info(
            "Deleted collection",
            extra={"collection_id": collection_id, "documents_deleted": deleted},
        )
        return deleted

    # Documents

    async def create_document(
        self,
        collection_id: str,
        data: Any,
        document_id: Optional[str] = None,
    ) -> Document:
        """Create a document.

        Args:
            collection_id: Owning collection
            data: Field values
            document_id: Optional explicit id (generated if not provided)

        Returns:
            Created Document with revision 1

        Raises:
            NotFoundError: If the collection does not exist
            ConflictError: If document_id already exists in the collection
            ValidationError: If data is outside the tagged-value model
        """
        data = validate_data(data)
        if document_id is None:
            document_id = str(uuid.uuid4())
        else:
            _require_id(document_id, "document_id")

        collection = await self.get_collection(collection_id)
        namespace = documents_namespace(collection_id)

        async with self._lock_for(collection_id, document_id):
            with storage_errors("create_document"):
                if await self.backend.get(namespace, document_id) is not None:
                    raise ConflictError(
                        f"Document already exists: {collection_id}/{document_id}",
                        resource_type="document",
                        resource_id=document_id,
                    )

                now = self.clock()
                document = Document(
                    id=document_id,
                    collection_id=collection_id,
                    data=data,
                    created_at=now,
                    updated_at=now,
                    revision=1,
                )
                await self.backend.put(namespace, document_id, document.to_dict())

                # The collection may have been deleted while we were writing
                if not await self.backend.get(COLLECTIONS_NAMESPACE, collection_id):
                    await self.backend.delete(namespace, document_id)
                    raise NotFoundError(
                        f"Collection not found: {collection_id}",
                        resource_type="collection",
                        resource_id=collection_id,
                    )

        logger.debug(
            "Created document",
            extra={"collection_id": collection_id, "document_id": document_id},
        )
        self._publish(collection, ChangeKind.CREATE, document)
        return document

    async def get_document(self, collection_id: str, document_id: str) -> Document:
        """Get a document.

        Raises:
            NotFoundError: If the collection or document does not exist
        """
        await self.get_collection(collection_id)
        with storage_errors("get_document"):
            record = await self.backend.get(documents_namespace(collection_id), document_id)
        if record is None:
            raise NotFoundError(
                f"Document not found: {collection_id}/{document_id}",
                resource_type="document",
                resource_id=document_id,
            )
        return Document.from_record(record)

    async def list_documents(
        self,
        collection_id: str,
        filter: Any = None,
        order_by: Any = None,
        limit: int = 100,
        offset: int = 0,
        context: Optional[AuthContext] = None,
    ) -> DocumentPage:
        """List documents matching a filter.

        Args:
            collection_id: Collection to list
            filter: Filter specification (see query.filters)
            order_by: Sort specification (see query.ordering)
            limit: Page size, clamped to [1, 1000]
            offset: Items to skip, clamped to >= 0
            context: Authenticated user for CURRENT_USER filter values

        Returns:
            DocumentPage; an offset past the end yields an empty page

        Raises:
            NotFoundError: If the collection does not exist
            ValidationError: Invalid filter/order or operator/type mismatch
            UnauthenticatedError: CURRENT_USER used without a context
        """
        predicates = compile_filter(filter, context)
        limit, offset = clamp_page(limit, offset)

        await self.get_collection(collection_id)
        with storage_errors("list_documents"):
            records = await self.backend.scan(documents_namespace(collection_id))

        documents = [Document.from_record(r) for r in records]
        if predicates:
            documents = [d for d in documents if matches(d.data, predicates)]
        documents = sort_documents(documents, order_by)

        return DocumentPage(
            items=documents[offset : offset + limit],
            total=len(documents),
            limit=limit,
            offset=offset,
        )

    async def update_document(
        self,
        collection_id: str,
        document_id: str,
        patch: Any,
        merge: bool = True,
        expected_revision: Optional[int] = None,
    ) -> Document:
        """Update a document.

        Args:
            collection_id: Owning collection
            document_id: Document to update
            patch: New field values
            merge: True replaces only the top-level keys present in patch;
                False replaces data wholesale
            expected_revision: If given, the update only applies when the
                stored revision equals it

        Returns:
            Updated Document (revision + 1)

        Raises:
            NotFoundError: If the collection or document does not exist
            ConflictError: If expected_revision does not match
            ValidationError: If patch is outside the tagged-value model
        """
        patch = validate_data(patch)
        collection = await self.get_collection(collection_id)
        namespace = documents_namespace(collection_id)

        async with self._lock_for(collection_id, document_id):
            with storage_errors("update_document"):
                record = await self.backend.get(namespace, document_id)
                if record is None:
                    raise NotFoundError(
                        f"Document not found: {collection_id}/{document_id}",
                        resource_type="document",
                        resource_id=document_id,
                    )
                current = Document.from_record(record)

                if expected_revision is not None and expected_revision != current.revision:
                    raise ConflictError(
                        f"Revision mismatch on {collection_id}/{document_id}",
                        resource_type="document",
                        resource_id=document_id,
                        expected_revision=expected_revision,
                        actual_revision=current.revision,
                    )

                document = Document(
                    id=current.id,
                    collection_id=collection_id,
                    data={**current.data, **patch} if merge else patch,
                    created_at=current.created_at,
                    updated_at=max(self.clock(), current.updated_at),
                    revision=current.revision + 1,
                )
                await self.backend.put(namespace, document_id, document.to_dict())

        logger.debug(
            "Updated document",
            extra={
                "collection_id": collection_id,
                "document_id": document_id,
                "revision": document.revision,
                "merge": merge,
            },
        )
        self._publish(collection, ChangeKind.UPDATE, document)
        return document

    async def delete_document(self, collection_id: str, document_id: str) -> None:
        """Delete a document.

        Raises:
            NotFoundError: If the collection or document does not exist
        """
        collection = await self.get_collection(collection_id)
        namespace = documents_namespace(collection_id)

        async with self._lock_for(collection_id, document_id):
            with storage_errors("delete_document"):
                record = await self.backend.get(namespace, document_id)
                if record is None or not await self.backend.delete(namespace, document_id):
                    raise NotFoundError(
                        f"Document not found: {collection_id}/{document_id}",
                        resource_type="document",
                        resource_id=document_id,
                    )

        logger.debug(
            "Deleted document",
            extra={"collection_id": collection_id, "document_id": document_id},
        )
        self._publish(collection, ChangeKind.DELETE, Document.from_record(record))

    def _publish(self, collection: Collection, kind: ChangeKind, document: Document) -> None:
        """Hand a committed mutation to the bus; never raises."""
        self._mutation_count += 1
        if self.bus is None:
            return
        try:
            self.bus.publish(
                ChangeEvent(
                    collection_id=collection.id,
                    kind=kind,
                    document=document,
                    webhook_url=collection.webhook_url,
                )
            )
        except Exception as e:
            logger.error(
                f"Change notification failed: {e}",
                extra={"collection_id": collection.id, "document_id": document.id},
                exc_info=True,
            )

    @property
    def stats(self) -> dict[str, Any]:
        """Get store statistics."""
        return {
            "mutation_count": self._mutation_count,
            "active_locks": len(self._locks),
        }
