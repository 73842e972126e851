"""
Booking Service Repository

Database access layer for devices, reservations and issues. Every method
runs inside the caller's session; nothing here commits.
"""

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import Row, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.booking_service.models import DeviceModel, IssueModel, ReservationModel
from shared.domain.equipment import (
    ACTIVE_RESERVATION_STATUSES,
    STAFF_ROLES,
    ReservationStatus,
    utcnow,
)
from shared.domain.exceptions import EntityNotFoundError
from shared.security.rbac import UserRoleModel

logger = structlog.get_logger(__name__)


class BookingRepository:
    """Repository for booking data access."""

    def __init__(self, session: AsyncSession):
        """
        Initialize repository.

        Args:
            session: Database session
        """
        self.session = session

    def add(self, instance: object) -> None:
        self.session.add(instance)

    async def _get(self, model: type, entity_id: UUID, for_update: bool):
        stmt = select(model).where(model.id == entity_id)
        if for_update:
            # Re-read under the lock so the identity map holds the committed row
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # Devices

    async def get_device(self, device_id: UUID, for_update: bool = False) -> DeviceModel | None:
        """
        Get device by ID.

        Args:
            device_id: Device UUID
            for_update: Lock the row until the transaction ends

        Returns:
            DeviceModel or None
        """
        return await self._get(DeviceModel, device_id, for_update)

    async def require_device(self, device_id: UUID, for_update: bool = False) -> DeviceModel:
        device = await self.get_device(device_id, for_update)
        if device is None:
            raise EntityNotFoundError("device", device_id)
        return device

    async def list_devices(self, status: str | None = None) -> list[DeviceModel]:
        stmt = select(DeviceModel).order_by(DeviceModel.name)
        if status:
            stmt = stmt.where(DeviceModel.status == status)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Reservations

    async def get_reservation(
        self, reservation_id: UUID, for_update: bool = False
    ) -> ReservationModel | None:
        return await self._get(ReservationModel, reservation_id, for_update)

    async def require_reservation(
        self, reservation_id: UUID, for_update: bool = False
    ) -> ReservationModel:
        reservation = await self.get_reservation(reservation_id, for_update)
        if reservation is None:
            raise EntityNotFoundError("reservation", reservation_id)
        return reservation

    async def find_overlapping(
        self,
        device_id: UUID,
        start: datetime,
        end: datetime,
        statuses: Iterable[ReservationStatus] = ACTIVE_RESERVATION_STATUSES,
        exclude_id: UUID | None = None,
    ) -> list[ReservationModel]:
        """
        Find reservations on a device whose interval overlaps [start, end).

        Intervals are half-open: one ending exactly when another starts
        does not overlap it.

        Args:
            device_id: Device UUID
            start: Interval start (UTC)
            end: Interval end (UTC)
            statuses: Reservation statuses that count as blocking
            exclude_id: Reservation to leave out (the one being decided)

        Returns:
            Overlapping reservations ordered by start
        """
        stmt = select(ReservationModel).where(
            ReservationModel.device_id == device_id,
            ReservationModel.status.in_([s.value for s in statuses]),
            ReservationModel.start_at < end,
            ReservationModel.end_at > start,
        )
        if exclude_id is not None:
            stmt = stmt.where(ReservationModel.id != exclude_id)

        result = await self.session.execute(stmt.order_by(ReservationModel.start_at))
        return list(result.scalars().all())

    async def active_reservations(self, device_id: UUID) -> list[ReservationModel]:
        """
        Get the pending or approved reservations on a device.

        Returns:
            Reservations ordered by start
        """
        result = await self.session.execute(
            select(ReservationModel)
            .where(
                ReservationModel.device_id == device_id,
                ReservationModel.status.in_([s.value for s in ACTIVE_RESERVATION_STATUSES]),
            )
            .order_by(ReservationModel.start_at)
        )
        return list(result.scalars().all())

    async def approved_in_progress(
        self, device_id: UUID, instant: datetime
    ) -> list[ReservationModel]:
        """
        Get approved reservations on a device whose window contains an instant.

        Args:
            device_id: Device UUID
            instant: Point in time (UTC); windows are [start, end)

        Returns:
            Reservations ordered by start
        """
        result = await self.session.execute(
            select(ReservationModel)
            .where(
                ReservationModel.device_id == device_id,
                ReservationModel.status == ReservationStatus.APPROVED.value,
                ReservationModel.start_at <= instant,
                ReservationModel.end_at > instant,
            )
            .order_by(ReservationModel.start_at)
        )
        return list(result.scalars().all())

    async def count_active_reservations(self, device_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ReservationModel)
            .where(
                ReservationModel.device_id == device_id,
                ReservationModel.status.in_([s.value for s in ACTIVE_RESERVATION_STATUSES]),
            )
        )
        return result.scalar_one()

    async def list_reservations(
        self,
        device_id: UUID | None = None,
        user_id: UUID | None = None,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ReservationModel]:
        stmt = select(ReservationModel)
        if device_id:
            stmt = stmt.where(ReservationModel.device_id == device_id)
        if user_id:
            stmt = stmt.where(ReservationModel.user_id == user_id)
        if status:
            stmt = stmt.where(ReservationModel.status == status)

        result = await self.session.execute(
            stmt.order_by(ReservationModel.start_at).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    async def expired_approved(self, as_of: datetime) -> list[Row]:
        """
        Get approved reservations whose end has passed.

        Rows are plain column tuples (not mapped instances) so that the
        conditional update in claim_completion cannot leave stale objects
        in the identity map.

        Returns:
            Rows of (id, device_id, user_id, start_at, end_at, device_name)
        """
        result = await self.session.execute(
            select(
                ReservationModel.id,
                ReservationModel.device_id,
                ReservationModel.user_id,
                ReservationModel.start_at,
                ReservationModel.end_at,
                DeviceModel.name.label("device_name"),
            )
            .join(DeviceModel, DeviceModel.id == ReservationModel.device_id)
            .where(
                ReservationModel.status == ReservationStatus.APPROVED.value,
                ReservationModel.end_at <= as_of,
            )
            .order_by(ReservationModel.end_at)
        )
        return list(result.all())

    async def claim_completion(self, reservation_id: UUID, as_of: datetime) -> bool:
        """
        Move one reservation from approved to completed if it is still approved.

        The status check is part of the UPDATE, so concurrent sweeps cannot
        both claim the same row.

        Returns:
            True if this transaction made the transition
        """
        result = await self.session.execute(
            update(ReservationModel)
            .where(
                ReservationModel.id == reservation_id,
                ReservationModel.status == ReservationStatus.APPROVED.value,
                ReservationModel.end_at <= as_of,
            )
            .values(
                status=ReservationStatus.COMPLETED.value,
                version=ReservationModel.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # Issues

    async def get_issue(self, issue_id: UUID, for_update: bool = False) -> IssueModel | None:
        return await self._get(IssueModel, issue_id, for_update)

    async def require_issue(self, issue_id: UUID, for_update: bool = False) -> IssueModel:
        issue = await self.get_issue(issue_id, for_update)
        if issue is None:
            raise EntityNotFoundError("issue", issue_id)
        return issue

    async def list_issues(
        self,
        device_id: UUID | None = None,
        status: str | None = None,
        reported_by: UUID | None = None,
    ) -> list[IssueModel]:
        stmt = select(IssueModel)
        if device_id:
            stmt = stmt.where(IssueModel.device_id == device_id)
        if status:
            stmt = stmt.where(IssueModel.status == status)
        if reported_by:
            stmt = stmt.where(IssueModel.reported_by == reported_by)

        result = await self.session.execute(stmt.order_by(IssueModel.created_at.desc()))
        return list(result.scalars().all())

    # User roles

    async def staff_user_ids(self) -> list[UUID]:
        """Get every user holding a staff role."""
        result = await self.session.execute(
            select(UserRoleModel.user_id)
            .where(UserRoleModel.role.in_([r.value for r in STAFF_ROLES]))
            .order_by(UserRoleModel.user_id)
        )
        return list(result.scalars().all())

    async def get_user_role(
        self, user_id: UUID, for_update: bool = False
    ) -> UserRoleModel | None:
        stmt = select(UserRoleModel).where(UserRoleModel.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
