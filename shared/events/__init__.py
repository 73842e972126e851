"""
Event System for Event-Driven Architecture

Transition events and post-commit publish/subscribe.
"""

from shared.events.base import DomainEvent, Event, EventMetadata
from shared.events.booking_events import (
    AffectedReservation,
    DeviceStatusChangedEvent,
    IssueReportedEvent,
    IssueStatusChangedEvent,
    ReservationCancelledEvent,
    ReservationCompletedEvent,
    ReservationCreatedEvent,
    ReservationDecidedEvent,
    ReservationEvent,
    UserRoleChangedEvent,
)
from shared.events.stream import EventStream, EventSubscriber

__all__ = [
    # Base Events
    "Event",
    "DomainEvent",
    "EventMetadata",
    # Booking Events
    "AffectedReservation",
    "ReservationEvent",
    "ReservationCreatedEvent",
    "ReservationDecidedEvent",
    "ReservationCancelledEvent",
    "ReservationCompletedEvent",
    "IssueReportedEvent",
    "IssueStatusChangedEvent",
    "DeviceStatusChangedEvent",
    "UserRoleChangedEvent",
    # Event Streaming
    "EventStream",
    "EventSubscriber",
]
