"""
Realtime module for Docbase - change notification and subscriptions.

This module handles:
- Fan-out of committed mutations to live subscriptions (bus)
- Subscription lifecycle and delivery workers (registry)
- Bounded drop-oldest delivery queues
- Webhook match decisions handed to an external dispatcher

Invariants:
    - Notification never blocks or fails a write
    - Delivery is FIFO per subscription, unordered across subscriptions
    - A closed subscription receives no further events

How to change safely:
    - Keep the write path (bus.publish) free of awaits
    - Test overflow and close-during-delivery scenarios
"""

from .bus import ChangeNotificationBus
from .models import (
    ChangeEvent,
    ChangeKind,
    Subscription,
    SubscriptionState,
    TransportDisconnected,
)
from .queue import EventQueue
from .registry import ConnectionRegistry
from .webhooks import (
    LoggingWebhookDispatcher,
    RecordingWebhookDispatcher,
    WebhookDelivery,
    WebhookDispatcher,
)

__all__ = [
    "ChangeNotificationBus",
    "ChangeEvent",
    "ChangeKind",
    "Subscription",
    "SubscriptionState",
    "TransportDisconnected",
    "EventQueue",
    "ConnectionRegistry",
    "LoggingWebhookDispatcher",
    "RecordingWebhookDispatcher",
    "WebhookDelivery",
    "WebhookDispatcher",
]
