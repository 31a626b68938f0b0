"""
Event Sink and In-Process Event Stream

The core hands committed domain events to an ``EventSink``; delivery to
caches, search indexes, and notification channels is the sink's concern.
``EventStream`` is the in-process implementation with pub/sub and replay.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from shared.clock import utcnow

logger = structlog.get_logger(__name__)

EventHandler = Callable[["PublishedEvent"], Awaitable[None]]


@dataclass(frozen=True)
class PublishedEvent:
    """An event as seen by sink consumers."""

    event_type: str
    payload: dict[str, Any]
    published_at: datetime = field(default_factory=utcnow)


class EventSink(ABC):
    """
    Fire-and-forget destination for committed domain events.
    """

    @abstractmethod
    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        """
        Publish one event.

        Args:
            event_type: Event type identifier (e.g. 'course.published')
            payload: JSON-compatible event payload
        """


class EventStream(EventSink):
    """
    In-process event stream for publish/subscribe.

    Supports:
    - Multiple subscribers per event type ('*' receives everything)
    - Bounded history
    - Event replay
    """

    WILDCARD = "*"

    def __init__(self, stream_id: str = "learning-platform", max_history: int = 10_000):
        """
        Initialize event stream.

        Args:
            stream_id: Unique stream identifier
            max_history: Maximum events kept in history; older events are dropped
        """
        self.stream_id = stream_id
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)
        self._event_history: list[PublishedEvent] = []
        self._max_history = max_history

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """
        Subscribe a handler to an event type.

        Args:
            event_type: Event type identifier, or '*' for all events
            handler: Async callable receiving the published event
        """
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)
            logger.info(
                "Subscriber registered",
                stream_id=self.stream_id,
                event_type=event_type,
            )

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        """
        Publish an event to all subscribers.

        Subscriber failures are logged and do not affect other subscribers
        or the publisher.
        """
        event = PublishedEvent(event_type=event_type, payload=payload)
        self._event_history.append(event)

        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

        handlers = [*self._subscribers.get(event_type, []), *self._subscribers.get(self.WILDCARD, [])]
        for handler in handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    "Subscriber error",
                    stream_id=self.stream_id,
                    event_type=event_type,
                    error=str(e),
                )

        logger.debug(
            "Event published",
            stream_id=self.stream_id,
            event_type=event_type,
            subscribers_notified=len(handlers),
        )

    async def replay_events(self, handler: EventHandler, event_type: str | None = None) -> int:
        """
        Replay historical events to a handler.

        Returns:
            Number of events replayed
        """
        events = self.get_event_history(event_type)
        for event in events:
            await handler(event)

        logger.info("Events replayed", stream_id=self.stream_id, count=len(events))
        return len(events)

    def get_event_history(self, event_type: str | None = None) -> list[PublishedEvent]:
        """Get event history, optionally filtered by type."""
        if event_type is None:
            return list(self._event_history)
        return [e for e in self._event_history if e.event_type == event_type]

    def event_types(self) -> list[str]:
        """Event types in publication order."""
        return [e.event_type for e in self._event_history]
