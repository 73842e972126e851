"""
Base Event Classes

Foundation for the transition events emitted by the lifecycle engine.
All domain events inherit from these base classes.
"""

from abc import ABC
from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from shared.domain.equipment import utcnow


class EventMetadata(BaseModel):
    """
    Event metadata for tracking and tracing.

    Provides correlation IDs and the actor that triggered the event.
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4, description="Unique event ID")
    timestamp: datetime = Field(default_factory=utcnow, description="Event occurrence time")
    correlation_id: UUID = Field(
        default_factory=uuid4, description="Correlation ID for request tracking"
    )
    user_id: UUID | None = Field(default=None, description="User who triggered the event")
    service: str = Field(default="booking_service", description="Originating service name")
    version: int = Field(default=1, description="Event schema version")


class Event(BaseModel, ABC):
    """
    Abstract base event class.

    All events in the system inherit from this class.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    metadata: EventMetadata = Field(default_factory=EventMetadata)

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

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            "event_type": self.get_event_type(),
            "metadata": self.metadata.model_dump(mode="json"),
            "payload": self.model_dump(mode="json", exclude={"metadata"}),
        }


class DomainEvent(Event, ABC):
    """
    Domain event representing an accepted state transition.

    Domain events are facts about things that have happened in the domain.
    They are immutable and are only published after the transaction commits.
    """

    aggregate_id: UUID = Field(..., description="ID of aggregate root")
    aggregate_type: str = Field(..., description="Type of aggregate (e.g., 'reservation', 'issue')")

    def get_aggregate_id(self) -> UUID | None:
        """Get the aggregate root ID."""
        return self.aggregate_id
