"""
Progress events for batch translation.

Components publish lifecycle events (batch created, submitted, status
changed, finished) and interested parties subscribe to the ones they care
about. Delivery is best effort: a failing handler is logged and skipped, and
nothing survives a process restart.
"""

from __future__ import annotations

import fnmatch
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

# Type for event handlers
EventHandler = Callable[["Event"], Awaitable[None]]


BATCH_CREATED = "batch.created"
BATCH_SUBMITTED = "batch.submitted"
BATCH_STATUS_CHANGED = "batch.status_changed"
BATCH_TERMINAL = "batch.terminal"


@dataclass
class Event:
    """An immutable record of something that happened to a batch."""

    event_type: str  # e.g., "batch.submitted", "batch.status_changed"
    sender_id: str
    batch_id: str
    payload: dict[str, Any] = field(default_factory=dict)

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        return {
            "id": self.id,
            "event_type": self.event_type,
            "sender_id": self.sender_id,
            "batch_id": self.batch_id,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Subscription:
    """A subscription to events matching a pattern."""

    pattern: str  # e.g., "batch.*" or "batch.terminal"
    handler: EventHandler
    sender_id: str | None = None

    def matches(self, event: Event) -> bool:
        if not fnmatch.fnmatch(event.event_type, self.pattern):
            return False
        if self.sender_id is not None and event.sender_id != self.sender_id:
            return False
        return True


class EventBus:
    """
    In-memory event bus.

    Suitable for a single process. Swap for Redis pub/sub or similar if
    progress needs to reach other processes.
    """

    def __init__(self, max_history: int = 1000):
        self._subscriptions: list[Subscription] = []
        self._event_history: list[Event] = []
        self._max_history = max_history

    def subscribe(
        self,
        pattern: str,
        handler: EventHandler,
        sender_id: str | None = None,
    ) -> Subscription:
        """
        Subscribe to events matching a pattern.

        Args:
            pattern: Event type pattern (supports wildcards like "batch.*")
            handler: Async function to handle matching events
            sender_id: Only receive events for this sender
        """
        subscription = Subscription(pattern=pattern, handler=handler, sender_id=sender_id)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscription."""
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def publish(self, event: Event) -> None:
        """Deliver an event to every matching subscriber."""
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

        for subscription in [s for s in self._subscriptions if s.matches(event)]:
            try:
                await subscription.handler(event)
            except Exception as e:
                # Don't stop other handlers
                logger.warning(f"Error in event handler for {event.event_type}: {e}")

    def get_history(
        self,
        event_type: str | None = None,
        sender_id: str | None = None,
        limit: int = 100,
    ) -> list[Event]:
        """Query event history with optional filters."""
        results = self._event_history

        if event_type:
            results = [e for e in results if fnmatch.fnmatch(e.event_type, event_type)]

        if sender_id:
            results = [e for e in results if e.sender_id == sender_id]

        return results[-limit:]


# Convenience constructors for batch events
def batch_event(event_type: str, sender_id: str, batch_id: str, **payload: Any) -> Event:
    return Event(event_type=event_type, sender_id=sender_id, batch_id=batch_id, payload=payload)
