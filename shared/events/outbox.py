"""
Transactional Outbox

Domain events are staged in the ``outbox_events`` table inside the same
transaction as the state change that caused them. A dispatcher later hands
committed, unpublished rows to the event sink in insertion order and commits
a published stamp for each row the sink accepts, so consumers see each
committed mutation once.
"""

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID, uuid4

import structlog
from sqlalchemy import JSON, BigInteger, DateTime, Integer, String, select, update
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from shared.clock import utcnow
from shared.database.postgres import Base
from shared.events.base import DomainEvent, EventEnvelope
from shared.events.stream import EventSink

logger = structlog.get_logger(__name__)


class OutboxEventModel(Base):
    """Staged domain event awaiting dispatch."""

    __tablename__ = "outbox_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    event_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), unique=True, nullable=False, default=uuid4
    )
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    aggregate_type: Mapped[str] = mapped_column(String(50), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    event_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)


class Outbox:
    """Stages domain events alongside the write that produced them."""

    async def stage(self, session: AsyncSession, events: Sequence[DomainEvent]) -> int:
        """
        Add events to the current transaction.

        Args:
            session: Session carrying the state change
            events: Events pulled from the mutated aggregate(s)

        Returns:
            Number of events staged
        """
        for event in events:
            envelope = EventEnvelope.wrap(event)
            session.add(
                OutboxEventModel(
                    event_id=event.metadata.event_id,
                    event_type=envelope.event_type,
                    aggregate_type=event.aggregate_type,
                    aggregate_id=envelope.partition_key,
                    payload=envelope.payload,
                    event_metadata=envelope.metadata,
                )
            )

        if events:
            await session.flush()
            logger.debug(
                "Events staged in outbox",
                count=len(events),
                event_types=[e.get_event_type() for e in events],
            )
        return len(events)

    async def pending(self, session: AsyncSession, limit: int = 100) -> list[OutboxEventModel]:
        """Unpublished events in insertion order."""
        result = await session.execute(
            select(OutboxEventModel)
            .where(OutboxEventModel.published_at.is_(None))
            .order_by(OutboxEventModel.id)
            .limit(limit)
        )
        return list(result.scalars().all())


class OutboxDispatcher:
    """
    Publishes committed outbox rows to an event sink.

    Give it a session of its own, since it commits. Each row is stamped
    and committed as soon as the sink accepts it, so a later failure in the
    same batch cannot unstamp it. A sink failure stops the batch so ordering
    is preserved on the next run.
    """

    def __init__(self, sink: EventSink, outbox: Outbox | None = None):
        self.sink = sink
        self.outbox = outbox or Outbox()

    async def dispatch_pending(self, session: AsyncSession, limit: int = 100) -> int:
        """
        Dispatch up to ``limit`` pending events.

        Returns:
            Number of events published
        """
        batch = [
            (row.id, row.event_id, row.event_type, row.aggregate_type, row.payload)
            for row in await self.outbox.pending(session, limit)
        ]

        published = 0
        for row_id, event_id, event_type, aggregate_type, payload in batch:
            message = {**payload, "event_id": str(event_id), "aggregate_type": aggregate_type}
            try:
                await self.sink.publish(event_type, message)
            except Exception as e:
                logger.error(
                    "Event sink rejected outbox event",
                    event_type=event_type,
                    event_id=str(event_id),
                    published_before_failure=published,
                    error=str(e),
                )
                raise
            await session.execute(
                update(OutboxEventModel)
                .where(OutboxEventModel.id == row_id)
                .values(published_at=utcnow())
            )
            await session.commit()
            published += 1

        if published:
            logger.info("Outbox events dispatched", count=published)
        return published
