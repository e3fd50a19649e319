"""
In-process change feed for committed task mutations.

Keeps the most recent events in memory and fans each one out to
subscriber callbacks. A subscriber that raises is logged and skipped;
delivery problems never reach the engine's transaction.
"""

from collections import deque
from typing import Callable, Deque, List, Optional
from uuid import UUID

from cardtasks.logging_config import get_logger
from cardtasks.models import ChangeEvent

logger = get_logger(__name__)

Subscriber = Callable[[ChangeEvent], None]


class ChangeFeed:
    """
    Bounded in-memory log of change events with subscriber callbacks.

    Implements the ChangeNotifier protocol.
    """

    def __init__(
        self,
        max_events: int = 1000,
        on_change_callback: Optional[Callable[[int], None]] = None
    ):
        """
        Initialize the change feed.

        Args:
            max_events: Number of events retained; older events are dropped
            on_change_callback: Optional callback called with count when the feed changes
        """
        self._events: Deque[ChangeEvent] = deque(maxlen=max_events)
        self._subscribers: List[Subscriber] = []
        self.on_change_callback = on_change_callback

    async def emit(self, event: ChangeEvent) -> None:
        """
        Record an event and deliver it to every subscriber.

        Args:
            event: Committed mutation to broadcast
        """
        self._events.append(event)
        logger.debug(f"Emitted {event.type.value} for card {event.card_id}, node {event.node_id}")

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                logger.warning(f"Change subscriber {subscriber!r} failed on {event.type.value}: {e}")

        if self.on_change_callback:
            self.on_change_callback(len(self._events))

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """
        Register a callback for future events.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def get_all(self, card_id: Optional[UUID] = None) -> List[ChangeEvent]:
        """
        Get retained events in emission order.

        Args:
            card_id: Only return events for this card
        """
        if card_id is None:
            return list(self._events)
        return [event for event in self._events if event.card_id == card_id]

    def clear_all(self) -> int:
        """
        Drop every retained event.

        Returns:
            Number of events cleared
        """
        count = len(self._events)
        self._events.clear()
        logger.info(f"Cleared {count} change events")

        if self.on_change_callback:
            self.on_change_callback(0)

        return count

    def count(self) -> int:
        return len(self._events)
