"""
Core Entity Hierarchy

AbstractEntity → AggregateRoot → Course / Enrollment / QuizSubmission / ...

Features:
- Universal ID and timestamp management
- Validation on every assignment, not just construction
- Aggregate roots that record domain events into an explicit outbox
"""

from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from shared.clock import utcnow
from shared.events.base import DomainEvent

logger = structlog.get_logger(__name__)


class AbstractEntity(BaseModel, ABC):
    """
    Base abstract entity class providing universal ID and lifecycle timestamps.

    All domain entities inherit from this class, establishing a consistent
    identity pattern across the entire system.
    """

    model_config = ConfigDict(
        validate_assignment=True,
        use_enum_values=False,
        arbitrary_types_allowed=True,
        from_attributes=True,
    )

    id: UUID = Field(default_factory=uuid4, description="Universal unique identifier")
    created_at: datetime = Field(default_factory=utcnow, description="Entity creation timestamp")
    updated_at: datetime = Field(default_factory=utcnow, description="Last update timestamp")

    def __hash__(self) -> int:
        """Hash based on entity ID for set/dict usage."""
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        """Equality based on entity ID and type."""
        if not isinstance(other, AbstractEntity):
            return NotImplemented
        return self.id == other.id and isinstance(other, type(self))

    @abstractmethod
    def validate_business_rules(self) -> bool:
        """
        Validate entity-specific business rules.

        Returns:
            bool: True if all business rules are satisfied

        Raises:
            ValidationError: If business rules are violated
        """

    def mark_updated(self, at: datetime | None = None) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = at or utcnow()


class AggregateRoot(AbstractEntity, ABC):
    """
    Aggregate root that records domain events for an outbox.

    Mutation methods record the events they cause; the owning service drains
    them with ``pull_events`` and stages them in the same transaction as the
    state change.
    """

    _pending_events: list[DomainEvent] = PrivateAttr(default_factory=list)

    @classmethod
    @abstractmethod
    def aggregate_type(cls) -> str:
        """
        Get aggregate type identifier.

        Returns:
            str: Aggregate type name
        """

    def record_event(self, event: DomainEvent) -> None:
        """Record an event caused by the last mutation."""
        self._pending_events.append(event)

        logger.debug(
            "Event recorded",
            aggregate_id=str(self.id),
            aggregate_type=self.aggregate_type(),
            event_type=event.get_event_type(),
        )

    def pull_events(self) -> list[DomainEvent]:
        """
        Hand over recorded events and reset the pending list.

        Returns:
            list: Events in the order they were recorded
        """
        events = list(self._pending_events)
        self._pending_events.clear()
        return events

    @property
    def pending_events(self) -> list[DomainEvent]:
        """Recorded events not yet pulled (copy)."""
        return list(self._pending_events)
