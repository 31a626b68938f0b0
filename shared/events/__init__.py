"""
Event System for Event-Driven Integration

Provides domain events, an event sink with in-process pub/sub, and a
transactional outbox (``shared.events.outbox``).
"""

from shared.events.base import (
    DomainEvent,
    Event,
    EventEnvelope,
    EventMetadata,
)
from shared.events.stream import (
    EventSink,
    EventStream,
    PublishedEvent,
)

__all__ = [
    # Base Events
    "Event",
    "DomainEvent",
    "EventMetadata",
    "EventEnvelope",
    # Event Sink
    "EventSink",
    "EventStream",
    "PublishedEvent",
]
