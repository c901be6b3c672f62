"""
Connection registry for realtime subscriptions.

The registry owns the name -> Subscription table and the delivery
workers that drain each subscription's queue into its transport
callback.

Lifecycle:
    open_connection()   -> CONNECTING, registered on the bus (events queue up)
    mark_ready()        -> OPEN, on_open called, delivery worker started
    close_connection()  -> CLOSED, unregistered, pending events discarded

Invariants:
    - Connection names are unique while connecting/open
    - The name table is guarded by a single asyncio.Lock
    - Closing is checked at every dequeue; an in-flight callback is
      never preempted
    - close_connection() is idempotent

How to change safely:
    - Keep callbacks outside the table lock
    - Test close during in-flight delivery
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from ..errors import ConflictError, NotFoundError, ValidationError
from ..query.filters import compile_filter
from .bus import ChangeNotificationBus
from .models import (
    EventCallback,
    OpenCallback,
    Subscription,
    SubscriptionState,
    TransportDisconnected,
)
from .queue import EventQueue

if TYPE_CHECKING:
    from ..auth.manager import AuthContext

logger = logging.getLogger(__name__)


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class ConnectionRegistry:
    """Manages named subscriptions and their delivery workers.

    Example:
        >>> registry = ConnectionRegistry(bus)
        >>> sub = await registry.open_connection("posts", "feed-1", on_event=send)
        >>> await registry.mark_ready("feed-1")
        >>> await registry.close_connection("feed-1")
    """

    def __init__(
        self,
        bus: ChangeNotificationBus,
        queue_capacity: int = 1000,
        collection_exists: Optional[Callable[[str], Awaitable[bool]]] = None,
    ) -> None:
        """Initialize the registry.

        Args:
            bus: Bus the subscriptions are registered on
            queue_capacity: Per-subscription queue size
            collection_exists: Optional check run before opening
        """
        self.bus = bus
        self.queue_capacity = queue_capacity
        self.collection_exists = collection_exists
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()

    async def open_connection(
        self,
        collection_id: str,
        connection_name: str,
        filter: Any = None,
        on_event: Optional[EventCallback] = None,
        on_open: Optional[OpenCallback] = None,
        context: Optional[AuthContext] = None,
    ) -> Subscription:
        """Create a subscription in the connecting state.

        Events matching the filter start queueing immediately and are
        delivered once mark_ready() is called.

        Args:
            collection_id: Collection to watch
            connection_name: Unique connection name
            filter: Filter specification (see query.filters)
            on_event: Delivery callback, sync or async
            on_open: Readiness callback, sync or async
            context: Authenticated user, used for CURRENT_USER filters

        Returns:
            The new Subscription

        Raises:
            ValidationError: Empty name or invalid filter
            NotFoundError: Collection does not exist
            ConflictError: Name is already connecting/open
        """
        if not connection_name:
            raise ValidationError("connection_name is required", field_name="connection_name")

        predicates = compile_filter(filter, context)

        if self.collection_exists is not None and not await self.collection_exists(collection_id):
            raise NotFoundError(
                f"Collection not found: {collection_id}",
                resource_type="collection",
                resource_id=collection_id,
            )

        async with self._lock:
            existing = self._subscriptions.get(connection_name)
            if existing is not None and existing.is_active:
                raise ConflictError(
                    f"Connection '{connection_name}' is already {existing.state.value}",
                    resource_type="connection",
                    resource_id=connection_name,
                )

            subscription = Subscription(
                connection_name=connection_name,
                collection_id=collection_id,
                predicates=predicates,
                queue=EventQueue(self.queue_capacity),
                on_event=on_event,
                on_open=on_open,
                user_id=context.user_id if context is not None else None,
            )
            self._subscriptions[connection_name] = subscription
            self.bus.register(subscription)

        logger.info(
            "Opened connection",
            extra={
                "connection_name": connection_name,
                "collection_id": collection_id,
                "clauses": len(predicates),
            },
        )
        return subscription

    async def mark_ready(self, connection_name: str) -> Subscription:
        """Transport signals readiness: move to OPEN and start delivery.

        Raises:
            NotFoundError: If the connection is unknown or closed
        """
        async with self._lock:
            subscription = self._subscriptions.get(connection_name)
            if subscription is None or not subscription.is_active:
                raise NotFoundError(
                    f"Connection not found: {connection_name}",
                    resource_type="connection",
                    resource_id=connection_name,
                )
            if subscription.state is SubscriptionState.OPEN:
                return subscription
            subscription.state = SubscriptionState.OPEN

        if subscription.on_open is not None:
            try:
                await _maybe_await(subscription.on_open(subscription))
            except Exception:
                logger.error(
                    "on_open callback failed, closing connection",
                    extra={"connection_name": connection_name},
                    exc_info=True,
                )
                await self._close(connection_name, only=subscription)
                raise

        if subscription.state is SubscriptionState.OPEN:
            subscription.task = asyncio.create_task(
                self._deliver(subscription), name=f"deliver:{connection_name}"
            )
        return subscription

    async def close_connection(self, connection_name: str) -> bool:
        """Close a connection and discard its pending events.

        Closing an unknown or already closed name is a no-op.

        Returns:
            True if a connection was closed by this call
        """
        return await self._close(connection_name)

    async def _close(self, connection_name: str, only: Optional[Subscription] = None) -> bool:
        async with self._lock:
            subscription = self._subscriptions.get(connection_name)
            if subscription is None or (only is not None and subscription is not only):
                return False
            del self._subscriptions[connection_name]
            subscription.state = SubscriptionState.CLOSED
            self.bus.unregister(subscription)
            subscription.queue.close()

        logger.info(
            "Closed connection",
            extra={
                "connection_name": connection_name,
                "delivered": subscription.delivered_count,
                "dropped": subscription.dropped_count,
            },
        )
        return True

    async def transport_disconnected(self, connection_name: str) -> bool:
        """Transport lost the client; equivalent to close_connection()."""
        return await self.close_connection(connection_name)

    async def close_all(self) -> None:
        """Close every connection and wait for delivery workers to finish."""
        async with self._lock:
            names = list(self._subscriptions)
            tasks = [s.task for s in self._subscriptions.values() if s.task is not None]
        for name in names:
            await self.close_connection(name)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get(self, connection_name: str) -> Optional[Subscription]:
        """Look up an active subscription by name."""
        return self._subscriptions.get(connection_name)

    async def _deliver(self, subscription: Subscription) -> None:
        """Drain a subscription's queue into its callback."""
        name = subscription.connection_name
        while True:
            event = await subscription.queue.get()
            if event is None or subscription.state is not SubscriptionState.OPEN:
                break
            if subscription.on_event is None:
                continue

            try:
                await _maybe_await(subscription.on_event(event.to_payload()))
                subscription.delivered_count += 1
            except TransportDisconnected:
                logger.info("Transport disconnected during delivery", extra={"connection_name": name})
                await self._close(name, only=subscription)
                break
            except Exception:
                subscription.failed_count += 1
                logger.error(
                    "Delivery callback failed",
                    extra={"connection_name": name, "document_id": event.document.id},
                    exc_info=True,
                )

    @property
    def stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        states = [s.state.value for s in self._subscriptions.values()]
        return {
            "connections": len(states),
            "open": states.count(SubscriptionState.OPEN.value),
            "connecting": states.count(SubscriptionState.CONNECTING.value),
        }
