"""
Collection and document records.

External representations use camelCase keys:
    Collection: {id, name, createdAt, webhookUrl?}
    Document:   {id, collectionId, data, createdAt, updatedAt, revision}

The same dicts are what the persistence backend stores.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Collection:
    """Named container of documents.

    Attributes:
        id: Unique collection identifier
        name: Display name
        created_at: Creation timestamp (Unix ms)
        webhook_url: Optional URL notified on every change
    """

    id: str
    name: str
    created_at: int
    webhook_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id, "name": self.name, "createdAt": self.created_at}
        if self.webhook_url:
            result["webhookUrl"] = self.webhook_url
        return result

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Collection:
        return cls(
            id=record["id"],
            name=record["name"],
            created_at=record["createdAt"],
            webhook_url=record.get("webhookUrl"),
        )


@dataclass
class Document:
    """A schemaless record scoped to a collection.

    Attributes:
        id: Unique id within the collection
        collection_id: Owning collection
        data: Field values (tagged-value model)
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
        revision: Starts at 1, +1 on every successful update
    """

    id: str
    collection_id: str
    data: Dict[str, Any]
    created_at: int
    updated_at: int
    revision: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "collectionId": self.collection_id,
            "data": copy.deepcopy(self.data),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "revision": self.revision,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Document:
        return cls(
            id=record["id"],
            collection_id=record["collectionId"],
            data=record.get("data", {}),
            created_at=record["createdAt"],
            updated_at=record["updatedAt"],
            revision=record.get("revision", 1),
        )


@dataclass
class DocumentPage:
    """One page of a listing.

    Attributes:
        items: Documents on this page
        total: Number of documents matching the filter
        limit: Effective (clamped) limit
        offset: Effective (clamped) offset
    """

    items: List[Document] = field(default_factory=list)
    total: int = 0
    limit: int = 100
    offset: int = 0

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [d.to_dict() for d in self.items],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
        }
