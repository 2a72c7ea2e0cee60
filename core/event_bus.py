"""
Event bus for billing domain events.

Synchronous in-process pub/sub. Services collect events while a transaction
is open and publish them once it has committed, so a handler never observes
a status that could still roll back. Handler errors are logged and never
reach the publisher.
"""

import logging
from collections import defaultdict
from typing import Callable, Dict, Iterable, List

from core.events import BillingEvent

logger = logging.getLogger(__name__)


def _handler_name(callback: Callable) -> str:
    return getattr(callback, "__qualname__", None) or getattr(callback, "__name__", repr(callback))


class EventBus:
    """
    In-process event bus keyed by event class name.

    Usage:
        bus = EventBus()
        bus.subscribe("InvoicePaid", handle_invoice_paid(notifications))
        bus.publish_all(events)  # after commit
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register callback for events whose class name is event_type."""
        self._subscribers[event_type].append(callback)

    def subscribers(self, event_type: str) -> list[Callable]:
        return list(self._subscribers.get(event_type, ()))

    def publish(self, event: BillingEvent) -> None:
        """Deliver one event to its subscribers in subscription order."""
        event_type = type(event).__name__

        for callback in self._subscribers.get(event_type, ()):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    _handler_name(callback),
                    event_type,
                    event.event_id,
                )

    def publish_all(self, events: Iterable[BillingEvent]) -> None:
        for event in events:
            self.publish(event)
