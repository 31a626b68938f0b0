"""
Base Event Classes

Foundation for the event-driven integration between the core and its
consumers (cache invalidation, search indexing, notifications).
All domain events inherit from these base classes.
"""

from abc import ABC
from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from shared.clock import utcnow


class EventMetadata(BaseModel):
    """
    Event metadata for tracking and tracing.

    Provides correlation IDs and causation tracking.
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4, description="Unique event ID")
    timestamp: datetime = Field(default_factory=utcnow, description="Event occurrence time")
    correlation_id: UUID = Field(
        default_factory=uuid4, description="Correlation ID for request tracking"
    )
    causation_id: UUID | None = Field(
        default=None, description="ID of event that caused this event"
    )
    user_id: UUID | None = Field(default=None, description="User who triggered the event")
    service: str = Field(..., description="Originating service name")
    version: int = Field(default=1, description="Event schema version")


class Event(BaseModel, ABC):
    """
    Abstract base event class.

    All events in the system inherit from this class.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    metadata: EventMetadata = Field(...)

    EVENT_TYPE: ClassVar[str] = "base.event"

    @classmethod
    def get_event_type(cls) -> str:
        """Get the event type identifier."""
        return cls.EVENT_TYPE

    def get_aggregate_id(self) -> UUID | None:
        """
        Get the aggregate root ID this event belongs to.

        Subclasses should override to provide specific aggregate ID.

        Returns:
            UUID: Aggregate root ID or None
        """
        return None

    def payload(self) -> dict[str, Any]:
        """JSON-compatible event payload (metadata excluded)."""
        return self.model_dump(mode="json", exclude={"metadata"})


class DomainEvent(Event, ABC):
    """
    Domain event representing a significant business occurrence.

    Domain events are facts about things that have happened in the domain.
    They are immutable.
    """

    aggregate_id: UUID = Field(..., description="ID of aggregate root")
    aggregate_type: str = Field(..., description="Type of aggregate (e.g., 'Course', 'Enrollment')")

    def get_aggregate_id(self) -> UUID | None:
        """Get the aggregate root ID."""
        return self.aggregate_id


class EventEnvelope(BaseModel):
    """
    Envelope for event transport.

    Wraps a serialized event with the routing data consumers need.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4, description="Envelope ID")
    event_type: str = Field(..., description="Fully qualified event type")
    payload: dict[str, Any] = Field(..., description="Serialized event payload")
    metadata: dict[str, Any] = Field(..., description="Event metadata")
    partition_key: str = Field(..., description="Partition key for distribution")

    @classmethod
    def wrap(cls, event: Event, partition_key: str | None = None) -> "EventEnvelope":
        """
        Wrap an event in an envelope for storage/transport.

        Args:
            event: Event to wrap
            partition_key: Optional partition key (defaults to aggregate_id)

        Returns:
            EventEnvelope: Wrapped event
        """
        return cls(
            event_type=event.get_event_type(),
            payload=event.payload(),
            metadata=event.metadata.model_dump(mode="json"),
            partition_key=partition_key or str(event.get_aggregate_id() or uuid4()),
        )
