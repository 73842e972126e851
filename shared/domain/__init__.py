"""
Equipment Booking Domain

Statuses, state machines and the exception taxonomy of the lifecycle engine.
"""

from shared.domain.equipment import (
    ACTIVE_RESERVATION_STATUSES,
    ISSUE_TRANSITIONS,
    RESERVATION_TRANSITIONS,
    STAFF_ROLES,
    DeviceStatus,
    IssuePriority,
    IssueStatus,
    ReservationDecision,
    ReservationStatus,
    StateMachine,
    TimeInterval,
    UserRoleType,
    as_utc,
    utcnow,
)
from shared.domain.exceptions import (
    AuthorizationError,
    DatabaseError,
    DomainException,
    EntityNotFoundError,
    ErrorCode,
    ExternalServiceError,
    InvalidIntervalError,
    InvalidTransitionError,
    SchedulingConflictError,
    ValidationError,
)

__all__ = [
    # Statuses and roles
    "DeviceStatus",
    "ReservationStatus",
    "ReservationDecision",
    "IssuePriority",
    "IssueStatus",
    "UserRoleType",
    "STAFF_ROLES",
    "ACTIVE_RESERVATION_STATUSES",
    # State machines
    "StateMachine",
    "RESERVATION_TRANSITIONS",
    "ISSUE_TRANSITIONS",
    "TimeInterval",
    "utcnow",
    "as_utc",
    # Exceptions
    "ErrorCode",
    "DomainException",
    "ValidationError",
    "InvalidIntervalError",
    "SchedulingConflictError",
    "InvalidTransitionError",
    "EntityNotFoundError",
    "AuthorizationError",
    "ExternalServiceError",
    "DatabaseError",
]
