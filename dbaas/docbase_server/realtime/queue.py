"""
Bounded per-subscription delivery queue.

Invariants:
    - put_nowait() never blocks and never raises on a full queue; the
      oldest undelivered event is dropped instead
    - Events are returned by get() in FIFO order
    - After close(), pending events are discarded and get() returns None
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Deque, Optional


class EventQueue:
    """Fixed-capacity FIFO with drop-oldest overflow.

    Attributes:
        capacity: Maximum number of pending events
        dropped_count: Events discarded due to overflow
    """

    def __init__(self, capacity: int = 1000) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.dropped_count = 0
        self._items: Deque[Any] = deque(maxlen=capacity)
        self._not_empty = asyncio.Event()
        self._closed = False

    def __len__(self) -> int:
        return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def put_nowait(self, item: Any) -> bool:
        """Enqueue an item.

        Returns:
            True if an older item was dropped to make room
        """
        if self._closed:
            return False
        dropped = len(self._items) == self.capacity
        if dropped:
            self.dropped_count += 1
        self._items.append(item)
        self._not_empty.set()
        return dropped

    async def get(self) -> Optional[Any]:
        """Wait for the next item.

        Returns:
            The oldest pending item, or None once the queue is closed
        """
        while not self._items:
            if self._closed:
                return None
            self._not_empty.clear()
            await self._not_empty.wait()
        if self._closed:
            return None
        return self._items.popleft()

    def pending(self) -> list[Any]:
        """Snapshot of pending items (oldest first)."""
        return list(self._items)

    def close(self) -> None:
        """Discard pending items and wake any waiting consumer."""
        self._closed = True
        self._items.clear()
        self._not_empty.set()
