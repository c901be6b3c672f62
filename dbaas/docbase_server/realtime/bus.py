"""
Change notification bus for Docbase.

The bus receives every committed mutation from the document store and
fans it out to the open subscriptions of the mutated collection. It
never performs delivery itself: matching events are pushed onto each
subscription's bounded queue and drained by delivery workers owned by
the ConnectionRegistry.

Invariants:
    - publish() never blocks and never raises to the mutating caller
    - Per-subscription order equals publish order (FIFO)
    - A closed subscription is never in the active registry
    - A filter evaluation error counts as a non-match for that
      subscription only

How to change safely:
    - Keep publish() free of awaits; the store calls it on the write path
    - Test fan-out with slow and failing subscribers
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..errors import DocbaseError
from ..query.filters import matches
from .models import ChangeEvent, Subscription, SubscriptionState
from .webhooks import WebhookDelivery, WebhookDispatcher

logger = logging.getLogger(__name__)


class ChangeNotificationBus:
    """Per-collection fan-out of committed mutations.

    Thread safety:
        Designed for a single asyncio event loop. register/unregister
        are called by the ConnectionRegistry under its lock; publish
        iterates over a snapshot.

    Example:
        >>> bus = ChangeNotificationBus()
        >>> bus.register(subscription)
        >>> bus.publish(ChangeEvent("posts", ChangeKind.CREATE, document))
        1
    """

    def __init__(self, webhook_dispatcher: Optional[WebhookDispatcher] = None) -> None:
        """Initialize the bus.

        Args:
            webhook_dispatcher: Collaborator receiving webhook deliveries
        """
        self.webhook_dispatcher = webhook_dispatcher
        self._by_collection: dict[str, dict[str, Subscription]] = {}

        self._published_count = 0
        self._enqueued_count = 0
        self._filter_error_count = 0
        self._webhook_count = 0

    def register(self, subscription: Subscription) -> None:
        """Add a subscription to the active registry.

        Raises:
            ValueError: If the subscription is already closed
        """
        if subscription.state is SubscriptionState.CLOSED:
            raise ValueError(f"Cannot register closed subscription {subscription.connection_name}")
        subs = self._by_collection.setdefault(subscription.collection_id, {})
        subs[subscription.connection_name] = subscription

    def unregister(self, subscription: Subscription) -> bool:
        """Remove a subscription.

        Returns:
            True if it was registered
        """
        subs = self._by_collection.get(subscription.collection_id)
        if not subs or subs.get(subscription.connection_name) is not subscription:
            return False
        del subs[subscription.connection_name]
        if not subs:
            del self._by_collection[subscription.collection_id]
        return True

    def subscriptions(self, collection_id: str) -> list[Subscription]:
        """Active subscriptions on a collection."""
        return list(self._by_collection.get(collection_id, {}).values())

    def publish(self, event: ChangeEvent) -> int:
        """Fan a committed mutation out to matching subscriptions.

        Args:
            event: The committed change

        Returns:
            Number of subscriptions the event was enqueued for
        """
        self._published_count += 1
        enqueued = 0

        for subscription in self.subscriptions(event.collection_id):
            if subscription.state is SubscriptionState.CLOSED:
                continue

            try:
                matched = matches(event.document.data, subscription.predicates)
            except DocbaseError as e:
                self._filter_error_count += 1
                logger.debug(
                    "Subscription filter rejected document",
                    extra={
                        "connection_name": subscription.connection_name,
                        "document_id": event.document.id,
                        "error": e.message,
                    },
                )
                continue

            if not matched:
                continue

            if subscription.queue.put_nowait(event):
                logger.warning(
                    "Subscription queue full, dropped oldest event",
                    extra={
                        "connection_name": subscription.connection_name,
                        "dropped_total": subscription.dropped_count,
                    },
                )
            enqueued += 1

        self._enqueued_count += enqueued

        if event.webhook_url and self.webhook_dispatcher is not None:
            self._submit_webhook(event)

        return enqueued

    def _submit_webhook(self, event: ChangeEvent) -> None:
        delivery = WebhookDelivery(
            url=event.webhook_url or "",
            collection_id=event.collection_id,
            payload=event.to_payload(),
        )
        try:
            self.webhook_dispatcher.submit(delivery)  # type: ignore[union-attr]
            self._webhook_count += 1
        except Exception as e:
            logger.warning(
                f"Webhook dispatcher rejected delivery: {e}",
                extra={"collection_id": event.collection_id},
                exc_info=True,
            )

    @property
    def stats(self) -> dict[str, Any]:
        """Get bus statistics."""
        return {
            "collections": len(self._by_collection),
            "subscriptions": sum(len(s) for s in self._by_collection.values()),
            "published_count": self._published_count,
            "enqueued_count": self._enqueued_count,
            "filter_error_count": self._filter_error_count,
            "webhook_count": self._webhook_count,
        }
