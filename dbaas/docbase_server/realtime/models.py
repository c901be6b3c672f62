"""
Realtime data types: change events and subscriptions.

Invariants:
    - A ChangeEvent always carries the committed document state
      (for deletes, the last state before removal)
    - Subscription state only moves forward:
      connecting -> open -> closed, or connecting -> closed
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from .queue import EventQueue

if TYPE_CHECKING:
    from ..documents.models import Document
    from ..query.filters import Predicate


class ChangeKind(Enum):
    """Mutation kinds published on the bus."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SubscriptionState(Enum):
    """Subscription lifecycle states."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class TransportDisconnected(Exception):
    """Raised by a delivery callback when its transport has gone away."""


@dataclass(frozen=True)
class ChangeEvent:
    """A committed mutation.

    Attributes:
        collection_id: Collection the document belongs to
        kind: create, update or delete
        document: Document state after the mutation
        webhook_url: Collection webhook URL at commit time, if any
    """

    collection_id: str
    kind: ChangeKind
    document: Document
    webhook_url: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        """Wire payload: ``{"event": kind, "data": document}``."""
        return {"event": self.kind.value, "data": self.document.to_dict()}


EventCallback = Callable[[dict], Union[Awaitable[None], None]]
OpenCallback = Callable[["Subscription"], Union[Awaitable[None], None]]


@dataclass(eq=False)
class Subscription:
    """A live registration for change events on one collection.

    Attributes:
        connection_name: Unique name while connecting/open
        collection_id: Watched collection
        predicates: Compiled filter (empty matches everything)
        queue: Bounded delivery queue
        on_event: Callback receiving each ``{event, data}`` payload
        on_open: Callback invoked once the transport is ready
        user_id: Authenticated user that opened the subscription, if any
        state: Lifecycle state
        delivered_count: Events handed to on_event successfully
        failed_count: Events whose callback raised
    """

    connection_name: str
    collection_id: str
    predicates: tuple[Predicate, ...]
    queue: EventQueue
    on_event: Optional[EventCallback] = None
    on_open: Optional[OpenCallback] = None
    user_id: Optional[str] = None
    state: SubscriptionState = SubscriptionState.CONNECTING
    delivered_count: int = 0
    failed_count: int = 0
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_active(self) -> bool:
        return self.state is not SubscriptionState.CLOSED

    @property
    def dropped_count(self) -> int:
        return self.queue.dropped_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "connectionName": self.connection_name,
            "collectionId": self.collection_id,
            "filter": [p.to_dict() for p in self.predicates],
            "state": self.state.value,
            "pending": len(self.queue),
            "delivered": self.delivered_count,
            "failed": self.failed_count,
            "dropped": self.dropped_count,
        }
