"""
Event Stream for Publish/Subscribe

In-process pub/sub for transition events. Events are published only after
the transaction that produced them has committed.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import TypeVar

import structlog

from shared.events.base import Event

logger = structlog.get_logger(__name__)

TEvent = TypeVar("TEvent", bound=Event)


class EventSubscriber(ABC):
    """
    Abstract base class for event subscribers.

    Subscribers implement this interface to receive events from streams.
    """

    @abstractmethod
    async def handle_event(self, event: Event) -> None:
        """
        Handle an event.

        Args:
            event: Event to handle
        """

    @abstractmethod
    def get_subscribed_event_types(self) -> list[type[Event]]:
        """
        Get list of event types this subscriber is interested in.

        Returns:
            List of event type classes
        """


class EventStream:
    """
    Event stream for publish/subscribe pattern.

    Supports:
    - Multiple subscribers per event type
    - Polymorphic subscription (subscribing to a base class)
    - Bounded history of published events
    """

    def __init__(self, stream_id: str, max_history: int | None = 500):
        """
        Initialize event stream.

        Args:
            stream_id: Unique stream identifier
            max_history: Events kept in history (None = unlimited)
        """
        self.stream_id = stream_id
        self._subscribers: dict[type[Event], list[EventSubscriber]] = defaultdict(list)
        self._event_history: list[Event] = []
        self._max_history = max_history
        logger.info("Event stream created", stream_id=stream_id)

    def subscribe(
        self, event_type: type[TEvent], subscriber: EventSubscriber
    ) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event type class to subscribe to
            subscriber: Subscriber instance
        """
        if subscriber not in self._subscribers[event_type]:
            self._subscribers[event_type].append(subscriber)
            logger.info(
                "Subscriber registered",
                stream_id=self.stream_id,
                event_type=event_type.__name__,
                subscriber=subscriber.__class__.__name__,
            )

    def register(self, subscriber: EventSubscriber) -> None:
        """Subscribe to every event type the subscriber declares."""
        for event_type in subscriber.get_subscribed_event_types():
            self.subscribe(event_type, subscriber)

    async def publish(self, event: Event) -> None:
        """
        Publish an event to all subscribers.

        A failing subscriber is logged and does not affect the others.

        Args:
            event: Event to publish
        """
        self._event_history.append(event)
        if self._max_history is not None and len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

        event_type = type(event)
        subscribers_to_notify: list[EventSubscriber] = []
        for base_type in event_type.__mro__:
            if isinstance(base_type, type) and issubclass(base_type, Event):
                for subscriber in self._subscribers.get(base_type, []):
                    if subscriber not in subscribers_to_notify:
                        subscribers_to_notify.append(subscriber)

        for subscriber in subscribers_to_notify:
            try:
                await subscriber.handle_event(event)
            except Exception as e:
                logger.error(
                    "Subscriber error",
                    stream_id=self.stream_id,
                    event_type=event_type.__name__,
                    subscriber=subscriber.__class__.__name__,
                    error=str(e),
                )

        logger.debug(
            "Event published",
            stream_id=self.stream_id,
            event_type=event_type.__name__,
            subscribers_notified=len(subscribers_to_notify),
        )

    def get_event_history(self, event_type: type[Event] | None = None) -> list[Event]:
        """
        Get event history, optionally filtered by type.

        Args:
            event_type: Optional event type filter

        Returns:
            List of matching events, oldest first
        """
        if event_type:
            return [e for e in self._event_history if isinstance(e, event_type)]
        return list(self._event_history)
