"""
Booking Lifecycle Engine

Every state-changing operation on devices, reservations, issues and roles.

Each operation runs as one unit of work: the authorization check, the
state-machine check, the mutation and its audit entry commit together or
not at all. Transition events are collected during the transaction and
published only after commit, so notifications never describe a change
that was rolled back.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from types import TracebackType
from typing import Any, TypeVar
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.booking_service.models import DeviceModel, IssueModel, ReservationModel
from services.booking_service.repository import BookingRepository
from shared.concurrency.locking import is_write_conflict
from shared.config import Settings, settings
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
    TimeInterval,
    UserRoleType,
    as_utc,
    utcnow,
)
from shared.domain.exceptions import (
    AuthorizationError,
    DatabaseError,
    DomainException,
    InvalidIntervalError,
    InvalidTransitionError,
    SchedulingConflictError,
    ValidationError,
)
from shared.events.base import DomainEvent, EventMetadata
from shared.events.booking_events import (
    AffectedReservation,
    DeviceStatusChangedEvent,
    IssueReportedEvent,
    IssueStatusChangedEvent,
    ReservationCancelledEvent,
    ReservationCompletedEvent,
    ReservationCreatedEvent,
    ReservationDecidedEvent,
    UserRoleChangedEvent,
)
from shared.events.stream import EventStream
from shared.security.audit import AuditAction, AuditEntityType, AuditRecorder
from shared.security.rbac import RBACService, UserRoleModel

logger = structlog.get_logger(__name__)

T = TypeVar("T")

EDITABLE_DEVICE_FIELDS = frozenset(
    {"name", "serial_number", "description", "category_id", "location_id"}
)


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class UnitOfWork:
    """
    One database transaction plus the events it produced.

    Commits on a clean exit and rolls back on any exception. Events are
    only handed out once the commit has succeeded.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self.session: AsyncSession | None = None
        self.repository: BookingRepository | None = None
        self.events: list[DomainEvent] = []

    async def __aenter__(self) -> "UnitOfWork":
        self.session = self._session_factory()
        self.repository = BookingRepository(self.session)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is None:
                await self.session.commit()
            else:
                await self.session.rollback()
        finally:
            await self.session.close()

    def emit(self, event: DomainEvent) -> None:
        self.events.append(event)


class LifecycleEngine:
    """
    Service enforcing the booking lifecycle rules.

    Implements:
    - Overlap-free reservation scheduling per device
    - Reservation, issue and device state machines
    - Role checks on every staff-only transition
    - Transactional audit trail
    - Post-commit event publication for notifications
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_stream: EventStream,
        audit: AuditRecorder | None = None,
        rbac: RBACService | None = None,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize lifecycle engine.

        Args:
            session_factory: Factory for transactional sessions
            event_stream: Stream that receives committed transition events
            audit: Audit recorder (default: new recorder)
            rbac: Role checks (default: RBAC with the configured system actor)
            config: Settings (default: global settings)
            clock: Source of "now", UTC
        """
        self.config = config or settings
        self.session_factory = session_factory
        self.event_stream = event_stream
        self.audit = audit or AuditRecorder()
        self.rbac = rbac or RBACService(system_actor_id=self.config.system_actor_id)
        self.clock = clock

    @property
    def system_actor_id(self) -> UUID:
        return self.config.system_actor_id

    async def _execute(
        self, operation: str, work: Callable[[UnitOfWork], Awaitable[T]]
    ) -> T:
        """
        Run one operation in a fresh unit of work, retrying lost write races.

        Domain errors are raised as they are. Write conflicts (stale
        versions, serialization failures, lock timeouts) restart the whole
        operation from the persisted state; once the attempts are used up
        they surface as DatabaseError.
        """
        max_attempts = self.config.transaction_max_attempts

        for attempt in range(1, max_attempts + 1):
            uow = UnitOfWork(self.session_factory)
            try:
                async with uow:
                    result = await work(uow)
            except DomainException:
                raise
            except Exception as e:
                if is_write_conflict(e):
                    if attempt < max_attempts:
                        logger.warning(
                            "Write conflict, retrying operation",
                            operation=operation,
                            attempt=attempt,
                            error=str(e),
                        )
                        continue
                    raise DatabaseError(
                        f"{operation} kept conflicting with concurrent writes",
                        operation=operation,
                        cause=e,
                    ) from e
                if isinstance(e, SQLAlchemyError):
                    raise DatabaseError(
                        f"{operation} failed: {e}", operation=operation, cause=e
                    ) from e
                raise

            await self._publish(operation, uow.events)
            return result

        # range() always runs at least once
        raise DatabaseError(f"{operation} was not attempted", operation=operation)

    async def _publish(self, operation: str, events: list[DomainEvent]) -> None:
        for event in events:
            try:
                await self.event_stream.publish(event)
            except Exception as e:
                logger.error(
                    "Event publication failed",
                    operation=operation,
                    event_type=event.get_event_type(),
                    error=str(e),
                )

    async def _require_role(
        self, uow: UnitOfWork, actor_id: UUID, action: str, *roles: UserRoleType
    ) -> None:
        await self.rbac.require(uow.session, actor_id, action, *roles)

    async def _staff_recipients(self, uow: UnitOfWork, exclude: UUID) -> list[UUID]:
        return [u for u in await uow.repository.staff_user_ids() if u != exclude]

    async def _record(
        self,
        uow: UnitOfWork,
        actor_id: UUID,
        action: AuditAction,
        entity_type: AuditEntityType,
        entity_id: UUID | None,
        old_value: dict[str, Any] | None,
        new_value: dict[str, Any] | None,
        description: str,
    ) -> None:
        await self.audit.record(
            uow.session,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_value=old_value,
            new_value=new_value,
            description=description,
        )

    # Reservations

    async def create_reservation(
        self,
        device_id: UUID,
        requester_id: UUID,
        start: datetime,
        end: datetime,
        purpose: str | None = None,
        notes: str | None = None,
    ) -> ReservationModel:
        """
        Request a device for [start, end).

        The device row is locked before the overlap check, so two requests
        for the same device cannot both pass it. Staff other than the
        requester are alerted once the request commits.

        Args:
            device_id: Device UUID
            requester_id: Requesting user
            start: Window start
            end: Window end
            purpose: Optional free text
            notes: Optional requester notes

        Returns:
            ReservationModel: The new pending reservation

        Raises:
            InvalidIntervalError: If end <= start or start is in the past
            EntityNotFoundError: If the device does not exist
            SchedulingConflictError: If the window overlaps a pending or approved reservation
        """
        interval = TimeInterval(start=start, end=end)
        if not interval.is_well_formed:
            raise InvalidIntervalError(
                "Reservation must end after it starts", start=interval.start, end=interval.end
            )
        if interval.start < self.clock():
            raise InvalidIntervalError(
                "Reservation cannot start in the past", start=interval.start, end=interval.end
            )
        purpose = _clean_text(purpose)
        notes = _clean_text(notes)

        async def work(uow: UnitOfWork) -> ReservationModel:
            repo = uow.repository
            device = await repo.require_device(device_id, for_update=True)

            conflicts = await repo.find_overlapping(
                device.id, interval.start, interval.end, ACTIVE_RESERVATION_STATUSES
            )
            if conflicts:
                raise SchedulingConflictError(device.id, [r.id for r in conflicts])

            reservation = ReservationModel(
                id=uuid4(),
                device_id=device.id,
                user_id=requester_id,
                start_at=interval.start,
                end_at=interval.end,
                status=ReservationStatus.PENDING.value,
                purpose=purpose,
                notes=notes,
            )
            repo.add(reservation)
            await uow.session.flush()
            staff = await self._staff_recipients(uow, exclude=requester_id)

            await self._record(
                uow,
                requester_id,
                AuditAction.RESERVATION_CREATED,
                AuditEntityType.RESERVATION,
                reservation.id,
                None,
                reservation.snapshot(),
                f"Reservation requested for {device.name}",
            )
            uow.emit(
                ReservationCreatedEvent(
                    metadata=EventMetadata(user_id=requester_id),
                    aggregate_id=reservation.id,
                    device_id=device.id,
                    device_name=device.name,
                    requester_id=requester_id,
                    start=reservation.start_at,
                    end=reservation.end_at,
                    status=ReservationStatus.PENDING,
                    purpose=purpose,
                    staff_recipients=staff,
                )
            )
            return reservation

        reservation = await self._execute("create_reservation", work)
        logger.info(
            "Reservation created",
            reservation_id=str(reservation.id),
            device_id=str(device_id),
            requester_id=str(requester_id),
        )
        return reservation

    async def decide_reservation(
        self,
        reservation_id: UUID,
        approver_id: UUID,
        decision: ReservationDecision | str,
        reason: str | None = None,
    ) -> ReservationModel:
        """
        Approve or reject a pending reservation.

        Approval re-checks the window against approved reservations of the
        device, since another request may have been approved meanwhile.

        Args:
            reservation_id: Reservation UUID
            approver_id: Acting staff member
            decision: approve or reject
            reason: Optional reason, kept as the decision reason

        Returns:
            ReservationModel: The decided reservation
        """
        decision = ReservationDecision(decision)
        target = (
            ReservationStatus.APPROVED
            if decision == ReservationDecision.APPROVE
            else ReservationStatus.REJECTED
        )
        reason = _clean_text(reason)

        async def work(uow: UnitOfWork) -> ReservationModel:
            repo = uow.repository
            await self._require_role(uow, approver_id, "decide_reservation", *STAFF_ROLES)

            # Lock order: device first, then the reservation
            located = await repo.require_reservation(reservation_id)
            device = await repo.require_device(located.device_id, for_update=True)
            reservation = await repo.require_reservation(reservation_id, for_update=True)

            current = ReservationStatus(reservation.status)
            if current != ReservationStatus.PENDING or not RESERVATION_TRANSITIONS.can_transition(
                current, target
            ):
                raise InvalidTransitionError("reservation", current, target)

            if target == ReservationStatus.APPROVED:
                conflicts = await repo.find_overlapping(
                    device.id,
                    reservation.start_at,
                    reservation.end_at,
                    (ReservationStatus.APPROVED,),
                    exclude_id=reservation.id,
                )
                if conflicts:
                    raise SchedulingConflictError(
                        device.id,
                        [r.id for r in conflicts],
                        message="Reservation overlaps an already approved reservation",
                    )

            before = reservation.snapshot()
            reservation.status = target.value
            reservation.approved_by = approver_id
            if reason:
                reservation.decision_reason = reason
            await uow.session.flush()

            action = (
                AuditAction.RESERVATION_APPROVED
                if target == ReservationStatus.APPROVED
                else AuditAction.RESERVATION_REJECTED
            )
            await self._record(
                uow,
                approver_id,
                action,
                AuditEntityType.RESERVATION,
                reservation.id,
                before,
                reservation.snapshot(),
                f"Reservation for {device.name} {target.value}",
            )
            uow.emit(
                ReservationDecidedEvent(
                    metadata=EventMetadata(user_id=approver_id),
                    aggregate_id=reservation.id,
                    device_id=device.id,
                    device_name=device.name,
                    requester_id=reservation.user_id,
                    start=reservation.start_at,
                    end=reservation.end_at,
                    previous_status=current,
                    status=target,
                    approver_id=approver_id,
                    reason=reason,
                )
            )
            return reservation

        reservation = await self._execute("decide_reservation", work)
        logger.info(
            "Reservation decided",
            reservation_id=str(reservation_id),
            decision=decision.value,
            approver_id=str(approver_id),
        )
        return reservation

    async def cancel_reservation(
        self, reservation_id: UUID, actor_id: UUID, reason: str | None = None
    ) -> ReservationModel:
        """
        Cancel a pending or approved reservation.

        Allowed for the requester and for staff.

        Args:
            reservation_id: Reservation UUID
            actor_id: Requester or staff member
            reason: Optional reason, kept as the decision reason

        Returns:
            ReservationModel: The cancelled reservation
        """
        reason = _clean_text(reason)

        async def work(uow: UnitOfWork) -> ReservationModel:
            repo = uow.repository
            located = await repo.require_reservation(reservation_id)
            device = await repo.require_device(located.device_id, for_update=True)
            reservation = await repo.require_reservation(reservation_id, for_update=True)

            if reservation.user_id != actor_id and not await self.rbac.is_staff(
                uow.session, actor_id
            ):
                raise AuthorizationError(
                    message="Only the requester or staff can cancel a reservation",
                    actor_id=actor_id,
                    action="cancel_reservation",
                )

            current = ReservationStatus(reservation.status)
            if not RESERVATION_TRANSITIONS.can_transition(current, ReservationStatus.CANCELLED):
                raise InvalidTransitionError("reservation", current, ReservationStatus.CANCELLED)

            before = reservation.snapshot()
            reservation.status = ReservationStatus.CANCELLED.value
            if reason:
                reservation.decision_reason = reason
            await uow.session.flush()

            await self._record(
                uow,
                actor_id,
                AuditAction.RESERVATION_CANCELLED,
                AuditEntityType.RESERVATION,
                reservation.id,
                before,
                reservation.snapshot(),
                f"Reservation for {device.name} cancelled",
            )
            uow.emit(
                ReservationCancelledEvent(
                    metadata=EventMetadata(user_id=actor_id),
                    aggregate_id=reservation.id,
                    device_id=device.id,
                    device_name=device.name,
                    requester_id=reservation.user_id,
                    start=reservation.start_at,
                    end=reservation.end_at,
                    previous_status=current,
                    status=ReservationStatus.CANCELLED,
                    cancelled_by=actor_id,
                    reason=reason,
                )
            )
            return reservation

        reservation = await self._execute("cancel_reservation", work)
        logger.info(
            "Reservation cancelled", reservation_id=str(reservation_id), actor_id=str(actor_id)
        )
        return reservation

    async def complete_expired_reservations(
        self, as_of: datetime | None = None, actor_id: UUID | None = None
    ) -> list[UUID]:
        """
        Move approved reservations whose end has passed to completed.

        Each row is claimed with a conditional UPDATE, so concurrent sweeps
        complete (and audit) every reservation exactly once. Running it
        again with nothing expired changes nothing.

        Args:
            as_of: Cut-off instant (default: now)
            actor_id: Staff member triggering the sweep (default: system actor)

        Returns:
            IDs of the reservations completed by this call
        """
        as_of = as_utc(as_of) if as_of else self.clock()
        actor = actor_id or self.system_actor_id

        async def work(uow: UnitOfWork) -> list[UUID]:
            repo = uow.repository
            if actor_id is not None:
                await self._require_role(
                    uow, actor_id, "complete_expired_reservations", *STAFF_ROLES
                )

            completed: list[UUID] = []
            for row in await repo.expired_approved(as_of):
                if not await repo.claim_completion(row.id, as_of):
                    continue

                await self._record(
                    uow,
                    actor,
                    AuditAction.RESERVATION_COMPLETED,
                    AuditEntityType.RESERVATION,
                    row.id,
                    {"status": ReservationStatus.APPROVED},
                    {"status": ReservationStatus.COMPLETED, "end": row.end_at},
                    f"Reservation for {row.device_name} completed",
                )
                uow.emit(
                    ReservationCompletedEvent(
                        metadata=EventMetadata(user_id=actor),
                        aggregate_id=row.id,
                        device_id=row.device_id,
                        device_name=row.device_name,
                        requester_id=row.user_id,
                        start=row.start_at,
                        end=row.end_at,
                        previous_status=ReservationStatus.APPROVED,
                        status=ReservationStatus.COMPLETED,
                    )
                )
                completed.append(row.id)
            return completed

        completed = await self._execute("complete_expired_reservations", work)
        if completed:
            logger.info(
                "Expired reservations completed", count=len(completed), as_of=as_of.isoformat()
            )
        return completed

    # Issues

    async def report_issue(
        self,
        device_id: UUID,
        reporter_id: UUID,
        title: str,
        description: str,
        priority: IssuePriority | str = IssuePriority.MEDIUM,
    ) -> IssueModel:
        """
        Report a fault against a device. Any user may report.

        Staff other than the reporter are alerted once the report commits.

        Returns:
            IssueModel: The new issue in status reported
        """
        priority = IssuePriority(priority)
        title = _clean_text(title)
        description = _clean_text(description)
        if not title:
            raise ValidationError("Issue title is required", field="title")
        if not description:
            raise ValidationError("Issue description is required", field="description")

        async def work(uow: UnitOfWork) -> IssueModel:
            repo = uow.repository
            device = await repo.require_device(device_id)

            issue = IssueModel(
                id=uuid4(),
                device_id=device.id,
                reported_by=reporter_id,
                title=title,
                description=description,
                priority=priority.value,
                status=IssueStatus.REPORTED.value,
            )
            repo.add(issue)
            await uow.session.flush()
            staff = await self._staff_recipients(uow, exclude=reporter_id)

            await self._record(
                uow,
                reporter_id,
                AuditAction.ISSUE_REPORTED,
                AuditEntityType.ISSUE,
                issue.id,
                None,
                issue.snapshot(),
                f"Issue reported for {device.name}: {title}",
            )
            uow.emit(
                IssueReportedEvent(
                    metadata=EventMetadata(user_id=reporter_id),
                    aggregate_id=issue.id,
                    device_id=device.id,
                    device_name=device.name,
                    reporter_id=reporter_id,
                    title=title,
                    priority=priority,
                    staff_recipients=staff,
                )
            )
            return issue

        issue = await self._execute("report_issue", work)
        logger.info("Issue reported", issue_id=str(issue.id), device_id=str(device_id))
        return issue

    async def update_issue_status(
        self,
        issue_id: UUID,
        actor_id: UUID,
        new_status: IssueStatus | str,
        resolution: str | None = None,
    ) -> IssueModel:
        """
        Move an issue along reported -> in_progress -> resolved -> closed.

        Resolving requires a non-empty resolution and may skip in_progress.

        Args:
            issue_id: Issue UUID
            actor_id: Acting staff member
            new_status: Target status
            resolution: Resolution text (required when resolving)

        Returns:
            IssueModel: The updated issue
        """
        target = IssueStatus(new_status)
        resolution = _clean_text(resolution)

        async def work(uow: UnitOfWork) -> IssueModel:
            repo = uow.repository
            await self._require_role(uow, actor_id, "update_issue_status", *STAFF_ROLES)

            issue = await repo.require_issue(issue_id, for_update=True)
            current = IssueStatus(issue.status)
            if not ISSUE_TRANSITIONS.can_transition(current, target):
                raise InvalidTransitionError("issue", current, target)

            before = issue.snapshot()
            if target == IssueStatus.RESOLVED:
                if not resolution:
                    raise ValidationError(
                        "A resolution is required to resolve an issue", field="resolution"
                    )
                issue.resolution = resolution
                issue.resolved_at = self.clock()
            issue.status = target.value
            await uow.session.flush()

            device = await repo.require_device(issue.device_id)
            await self._record(
                uow,
                actor_id,
                AuditAction.ISSUE_STATUS_UPDATED,
                AuditEntityType.ISSUE,
                issue.id,
                before,
                issue.snapshot(),
                f"Issue '{issue.title}' moved from {current.value} to {target.value}",
            )
            uow.emit(
                IssueStatusChangedEvent(
                    metadata=EventMetadata(user_id=actor_id),
                    aggregate_id=issue.id,
                    device_id=device.id,
                    device_name=device.name,
                    reporter_id=issue.reported_by,
                    title=issue.title,
                    previous_status=current,
                    status=target,
                    resolution=issue.resolution,
                )
            )
            return issue

        issue = await self._execute("update_issue_status", work)
        logger.info("Issue status updated", issue_id=str(issue_id), status=target.value)
        return issue

    # Devices

    async def register_device(
        self,
        actor_id: UUID,
        name: str,
        serial_number: str | None = None,
        description: str | None = None,
        category_id: UUID | None = None,
        location_id: UUID | None = None,
        status: DeviceStatus | str = DeviceStatus.AVAILABLE,
    ) -> DeviceModel:
        """Add a device to the catalogue. Staff only."""
        status = DeviceStatus(status)
        name = _clean_text(name)
        if not name:
            raise ValidationError("Device name is required", field="name")

        async def work(uow: UnitOfWork) -> DeviceModel:
            await self._require_role(uow, actor_id, "register_device", *STAFF_ROLES)

            device = DeviceModel(
                id=uuid4(),
                name=name,
                serial_number=_clean_text(serial_number),
                description=_clean_text(description),
                category_id=category_id,
                location_id=location_id,
                status=status.value,
            )
            uow.repository.add(device)
            await uow.session.flush()

            await self._record(
                uow,
                actor_id,
                AuditAction.DEVICE_CREATED,
                AuditEntityType.DEVICE,
                device.id,
                None,
                device.snapshot(),
                f"Device {device.name} registered",
            )
            return device

        device = await self._execute("register_device", work)
        logger.info("Device registered", device_id=str(device.id), name=device.name)
        return device

    async def update_device_details(
        self, device_id: UUID, actor_id: UUID, changes: dict[str, Any]
    ) -> DeviceModel:
        """
        Edit descriptive device fields. Staff only.

        Status is not editable here; use set_device_status.

        Args:
            device_id: Device UUID
            actor_id: Acting staff member
            changes: Field name -> new value

        Returns:
            DeviceModel: The updated device
        """
        unknown = set(changes) - EDITABLE_DEVICE_FIELDS
        if unknown:
            field = sorted(unknown)[0]
            raise ValidationError(f"Field '{field}' cannot be edited", field=field)
        if "name" in changes and not _clean_text(changes["name"]):
            raise ValidationError("Device name is required", field="name")

        async def work(uow: UnitOfWork) -> DeviceModel:
            await self._require_role(uow, actor_id, "update_device_details", *STAFF_ROLES)
            device = await uow.repository.require_device(device_id, for_update=True)

            before = device.snapshot()
            for field, value in changes.items():
                if isinstance(value, str):
                    value = _clean_text(value)
                setattr(device, field, value)

            after = device.snapshot()
            if after == before:
                raise ValidationError("No device fields changed")
            await uow.session.flush()

            await self._record(
                uow,
                actor_id,
                AuditAction.DEVICE_UPDATED,
                AuditEntityType.DEVICE,
                device.id,
                before,
                after,
                f"Device {device.name} updated",
            )
            return device

        return await self._execute("update_device_details", work)

    async def set_device_status(
        self,
        device_id: UUID,
        actor_id: UUID,
        new_status: DeviceStatus | str,
        reason: str | None = None,
    ) -> DeviceModel:
        """
        Change a device's status. Staff only.

        A device cannot be made available while an approved reservation is
        in progress on it. Moving a device to unavailable notifies each
        distinct holder of a pending or approved reservation once, with the
        affected windows. Existing reservations are left as they are.

        Args:
            device_id: Device UUID
            actor_id: Acting staff member
            new_status: Target status
            reason: Optional explanation passed on to notified holders

        Returns:
            DeviceModel: The updated device
        """
        target = DeviceStatus(new_status)
        reason = _clean_text(reason)

        async def work(uow: UnitOfWork) -> DeviceModel:
            repo = uow.repository
            await self._require_role(uow, actor_id, "set_device_status", *STAFF_ROLES)
            device = await repo.require_device(device_id, for_update=True)

            current = DeviceStatus(device.status)
            if current == target:
                raise InvalidTransitionError(
                    "device", current, target, message=f"Device is already {target.value}"
                )

            if target == DeviceStatus.AVAILABLE:
                in_progress = await repo.approved_in_progress(device.id, self.clock())
                if in_progress:
                    raise InvalidTransitionError(
                        "device",
                        current,
                        target,
                        message="Device has an approved reservation in progress",
                        context={"reservation_ids": [str(r.id) for r in in_progress]},
                    )

            before = device.snapshot()
            device.status = target.value
            await uow.session.flush()

            affected: list[AffectedReservation] = []
            if target == DeviceStatus.UNAVAILABLE:
                affected = [
                    AffectedReservation(
                        reservation_id=r.id,
                        holder_id=r.user_id,
                        start=r.start_at,
                        end=r.end_at,
                        status=ReservationStatus(r.status),
                    )
                    for r in await repo.active_reservations(device.id)
                ]

            await self._record(
                uow,
                actor_id,
                AuditAction.DEVICE_STATUS_UPDATED,
                AuditEntityType.DEVICE,
                device.id,
                before,
                device.snapshot(),
                f"Device {device.name} moved from {current.value} to {target.value}",
            )
            uow.emit(
                DeviceStatusChangedEvent(
                    metadata=EventMetadata(user_id=actor_id),
                    aggregate_id=device.id,
                    device_name=device.name,
                    previous_status=current,
                    status=target,
                    reason=reason,
                    affected_reservations=affected,
                )
            )
            return device

        device = await self._execute("set_device_status", work)
        logger.info("Device status updated", device_id=str(device_id), status=target.value)
        return device

    async def delete_device(self, device_id: UUID, actor_id: UUID) -> None:
        """
        Remove a device. Staff only.

        Refused while the device has pending or approved reservations;
        its finished reservations and issues are removed with it. The
        audit trail keeps the deleted device's last values.
        """

        async def work(uow: UnitOfWork) -> None:
            repo = uow.repository
            await self._require_role(uow, actor_id, "delete_device", *STAFF_ROLES)
            device = await repo.require_device(device_id, for_update=True)

            if await repo.count_active_reservations(device.id):
                raise InvalidTransitionError(
                    "device",
                    device.status,
                    "deleted",
                    message="Device has pending or approved reservations",
                )

            before = device.snapshot()
            await uow.session.delete(device)
            await uow.session.flush()

            await self._record(
                uow,
                actor_id,
                AuditAction.DEVICE_DELETED,
                AuditEntityType.DEVICE,
                device_id,
                before,
                None,
                f"Device {before['name']} deleted",
            )

        await self._execute("delete_device", work)
        logger.info("Device deleted", device_id=str(device_id), actor_id=str(actor_id))

    # Roles

    async def change_user_role(
        self, user_id: UUID, actor_id: UUID, new_role: UserRoleType | str
    ) -> UserRoleType:
        """
        Set a user's role. Admin only.

        Args:
            user_id: User whose role changes
            actor_id: Acting admin
            new_role: Role to grant

        Returns:
            UserRoleType: The role now held
        """
        target = UserRoleType(new_role)

        async def work(uow: UnitOfWork) -> UserRoleType:
            repo = uow.repository
            await self._require_role(uow, actor_id, "change_user_role", UserRoleType.ADMIN)

            row = await repo.get_user_role(user_id, for_update=True)
            current = UserRoleType(row.role) if row else RBACService.DEFAULT_ROLE
            if current == target:
                raise InvalidTransitionError(
                    "user_role", current, target, message=f"User is already {target.value}"
                )

            if row is None:
                repo.add(UserRoleModel(user_id=user_id, role=target.value))
            else:
                row.role = target.value
            await uow.session.flush()

            await self._record(
                uow,
                actor_id,
                AuditAction.ROLE_UPDATED,
                AuditEntityType.USER_ROLE,
                user_id,
                {"role": current},
                {"role": target},
                f"Role changed from {current.value} to {target.value}",
            )
            uow.emit(
                UserRoleChangedEvent(
                    metadata=EventMetadata(user_id=actor_id),
                    aggregate_id=user_id,
                    user_id=user_id,
                    previous_role=current,
                    role=target,
                )
            )
            return target

        role = await self._execute("change_user_role", work)
        logger.info("User role changed", user_id=str(user_id), role=role.value)
        return role
