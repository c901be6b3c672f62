"""
Webhook match decision and dispatcher boundary.

The core decides whether a change produces a webhook call and what the
payload is; the HTTP delivery itself belongs to an external dispatcher
implementing WebhookDispatcher.

Neither dispatcher here keeps an unbounded history: the server logs
deliveries, and the recording dispatcher keeps only the newest ones.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookDelivery:
    """One outbound webhook call.

    Attributes:
        url: Collection webhook URL
        collection_id: Source collection
        payload: ``{"event": kind, "data": document}``
    """

    url: str
    collection_id: str
    payload: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class WebhookDispatcher(Protocol):
    """External collaborator that performs webhook HTTP delivery.

    submit() must not block; implementations queue the delivery and
    return immediately.
    """

    def submit(self, delivery: WebhookDelivery) -> None: ...


class LoggingWebhookDispatcher:
    """Dispatcher that logs each delivery and keeps only counters.

    The server's default when no outbound HTTP sender is wired in.
    """

    def __init__(self) -> None:
        self.submitted = 0

    def submit(self, delivery: WebhookDelivery) -> None:
        self.submitted += 1
        logger.info(
            "Webhook delivery",
            extra={
                "collection_id": delivery.collection_id,
                "url": delivery.url,
                "event": delivery.payload.get("event"),
            },
        )


class RecordingWebhookDispatcher:
    """Dispatcher that keeps the newest deliveries in memory (tests)."""

    def __init__(self, max_deliveries: int = 1000) -> None:
        self.deliveries: deque[WebhookDelivery] = deque(maxlen=max_deliveries)

    def submit(self, delivery: WebhookDelivery) -> None:
        self.deliveries.append(delivery)
        logger.debug(
            "Webhook delivery recorded",
            extra={"collection_id": delivery.collection_id, "event": delivery.payload.get("event")},
        )
