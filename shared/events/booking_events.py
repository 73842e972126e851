"""
Booking Domain Events

Transition events emitted by the lifecycle engine for reservations,
issues, devices and user roles.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from shared.domain.equipment import (
    DeviceStatus,
    IssuePriority,
    IssueStatus,
    ReservationStatus,
    UserRoleType,
)
from shared.events.base import DomainEvent


class AffectedReservation(BaseModel):
    """A pending or approved reservation on a device that changed status."""

    model_config = ConfigDict(frozen=True)

    reservation_id: UUID
    holder_id: UUID
    start: datetime
    end: datetime
    status: ReservationStatus


class ReservationEvent(DomainEvent):
    """Common payload of reservation events."""

    aggregate_type: str = "reservation"

    device_id: UUID = Field(...)
    device_name: str = Field(...)
    requester_id: UUID = Field(...)
    start: datetime = Field(...)
    end: datetime = Field(...)
    previous_status: ReservationStatus | None = Field(default=None)
    status: ReservationStatus = Field(...)


class ReservationCreatedEvent(ReservationEvent):
    """Event emitted when a reservation request is accepted as pending."""

    EVENT_TYPE: ClassVar[str] = "booking.reservation.created"

    purpose: str | None = Field(default=None)
    staff_recipients: list[UUID] = Field(default_factory=list)


class ReservationDecidedEvent(ReservationEvent):
    """Event emitted when staff approve or reject a pending reservation."""

    EVENT_TYPE: ClassVar[str] = "booking.reservation.decided"

    approver_id: UUID = Field(...)
    reason: str | None = Field(default=None)


class ReservationCancelledEvent(ReservationEvent):
    """Event emitted when a pending or approved reservation is cancelled."""

    EVENT_TYPE: ClassVar[str] = "booking.reservation.cancelled"

    cancelled_by: UUID = Field(...)
    reason: str | None = Field(default=None)


class ReservationCompletedEvent(ReservationEvent):
    """Event emitted when an approved reservation's window has passed."""

    EVENT_TYPE: ClassVar[str] = "booking.reservation.completed"


class IssueReportedEvent(DomainEvent):
    """Event emitted when a fault is reported against a device."""

    EVENT_TYPE: ClassVar[str] = "booking.issue.reported"

    aggregate_type: str = "issue"

    device_id: UUID = Field(...)
    device_name: str = Field(...)
    reporter_id: UUID = Field(...)
    title: str = Field(...)
    priority: IssuePriority = Field(...)
    staff_recipients: list[UUID] = Field(default_factory=list)


class IssueStatusChangedEvent(DomainEvent):
    """Event emitted when an issue moves along its status chain."""

    EVENT_TYPE: ClassVar[str] = "booking.issue.status_changed"

    aggregate_type: str = "issue"

    device_id: UUID = Field(...)
    device_name: str = Field(...)
    reporter_id: UUID = Field(...)
    title: str = Field(...)
    previous_status: IssueStatus = Field(...)
    status: IssueStatus = Field(...)
    resolution: str | None = Field(default=None)


class DeviceStatusChangedEvent(DomainEvent):
    """
    Event emitted when staff change a device's status.

    affected_reservations lists the pending/approved reservations on the
    device when it became unavailable, ordered by start.
    """

    EVENT_TYPE: ClassVar[str] = "booking.device.status_changed"

    aggregate_type: str = "device"

    device_name: str = Field(...)
    previous_status: DeviceStatus = Field(...)
    status: DeviceStatus = Field(...)
    reason: str | None = Field(default=None)
    affected_reservations: list[AffectedReservation] = Field(default_factory=list)


class UserRoleChangedEvent(DomainEvent):
    """Event emitted when an admin changes a user's role."""

    EVENT_TYPE: ClassVar[str] = "booking.user_role.changed"

    aggregate_type: str = "user_role"

    user_id: UUID = Field(...)
    previous_role: UserRoleType = Field(...)
    role: UserRoleType = Field(...)
