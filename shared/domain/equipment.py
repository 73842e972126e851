"""
Equipment Domain Model

Statuses, roles and state machines for devices, reservations and issues.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Current instant as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DeviceStatus(str, Enum):
    """Staff-controlled, informational device status."""

    AVAILABLE = "available"
    IN_USE = "in_use"
    MAINTENANCE = "maintenance"
    UNAVAILABLE = "unavailable"


class ReservationStatus(str, Enum):
    """Reservation lifecycle status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReservationDecision(str, Enum):
    """Approver decision on a pending reservation."""

    APPROVE = "approve"
    REJECT = "reject"


class IssuePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IssueStatus(str, Enum):
    """Issue lifecycle status."""

    REPORTED = "reported"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class UserRoleType(str, Enum):
    """Roles a user can hold."""

    STUDENT = "student"
    TEACHER = "teacher"
    TECHNICIAN = "technician"
    ADMIN = "admin"


STAFF_ROLES: frozenset[UserRoleType] = frozenset({UserRoleType.TECHNICIAN, UserRoleType.ADMIN})

# Reservations in these states block overlapping requests
ACTIVE_RESERVATION_STATUSES: tuple[ReservationStatus, ...] = (
    ReservationStatus.PENDING,
    ReservationStatus.APPROVED,
)


class StateMachine:
    """Allowed edges of a status graph."""

    def __init__(self, name: str, edges: dict[Enum, set[Enum]]):
        self.name = name
        self.edges = edges

    def can_transition(self, current: Enum, target: Enum) -> bool:
        return target in self.edges.get(current, set())


RESERVATION_TRANSITIONS = StateMachine(
    "reservation",
    {
        ReservationStatus.PENDING: {
            ReservationStatus.APPROVED,
            ReservationStatus.REJECTED,
            ReservationStatus.CANCELLED,
        },
        ReservationStatus.APPROVED: {
            ReservationStatus.COMPLETED,
            ReservationStatus.CANCELLED,
        },
        ReservationStatus.REJECTED: set(),
        ReservationStatus.COMPLETED: set(),
        ReservationStatus.CANCELLED: set(),
    },
)

ISSUE_TRANSITIONS = StateMachine(
    "issue",
    {
        IssueStatus.REPORTED: {IssueStatus.IN_PROGRESS, IssueStatus.RESOLVED},
        IssueStatus.IN_PROGRESS: {IssueStatus.RESOLVED},
        IssueStatus.RESOLVED: {IssueStatus.CLOSED},
        IssueStatus.CLOSED: set(),
    },
)


class TimeInterval(BaseModel):
    """
    Half-open reservation window [start, end).

    Back-to-back intervals (one ends exactly when the other starts) do not overlap.
    """

    model_config = ConfigDict(frozen=True)

    start: datetime = Field(...)
    end: datetime = Field(...)

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def is_well_formed(self) -> bool:
        return self.end > self.start

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """
        Check whether [start, end) intersects this interval.

        Args:
            start: Other interval start
            end: Other interval end

        Returns:
            bool: True if there's an overlap
        """
        return self.start < as_utc(end) and as_utc(start) < self.end
