"""
Reservation endpoints for Booking Service.
"""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from services.booking_service.dependencies import get_actor_id, get_lifecycle, get_repository
from services.booking_service.lifecycle import LifecycleEngine
from services.booking_service.repository import BookingRepository
from services.booking_service.schemas import ReservationResponse
from shared.domain.equipment import ReservationDecision, ReservationStatus
from shared.domain.exceptions import EntityNotFoundError

router = APIRouter(prefix="/reservations", tags=["reservations"])
logger = structlog.get_logger(__name__)


class ReservationRequest(BaseModel):
    """Reservation request."""

    device_id: UUID
    start: datetime
    end: datetime
    purpose: str | None = Field(default=None, max_length=2000)
    notes: str | None = Field(default=None, max_length=2000)


class DecisionRequest(BaseModel):
    decision: ReservationDecision
    reason: str | None = Field(default=None, max_length=2000)


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    request: ReservationRequest,
    actor_id: UUID = Depends(get_actor_id),
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
) -> ReservationResponse:
    """
    Request a device for a time window.

    Returns:
        The pending reservation
    """
    reservation = await lifecycle.create_reservation(
        request.device_id,
        actor_id,
        request.start,
        request.end,
        purpose=request.purpose,
        notes=request.notes,
    )
    return ReservationResponse.model_validate(reservation)


@router.get("", response_model=list[ReservationResponse])
async def list_reservations(
    device_id: UUID | None = None,
    user_id: UUID | None = None,
    status_filter: ReservationStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    repo: BookingRepository = Depends(get_repository),
) -> list[ReservationResponse]:
    reservations = await repo.list_reservations(
        device_id=device_id,
        user_id=user_id,
        status=status_filter.value if status_filter else None,
        limit=limit,
        offset=offset,
    )
    return [ReservationResponse.model_validate(r) for r in reservations]


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: UUID,
    repo: BookingRepository = Depends(get_repository),
) -> ReservationResponse:
    reservation = await repo.get_reservation(reservation_id)
    if reservation is None:
        raise EntityNotFoundError("reservation", reservation_id)
    return ReservationResponse.model_validate(reservation)


@router.post("/{reservation_id}/decision", response_model=ReservationResponse)
async def decide_reservation(
    reservation_id: UUID,
    request: DecisionRequest,
    actor_id: UUID = Depends(get_actor_id),
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
) -> ReservationResponse:
    """Approve or reject a pending reservation (staff only)."""
    reservation = await lifecycle.decide_reservation(
        reservation_id, actor_id, request.decision, request.reason
    )
    return ReservationResponse.model_validate(reservation)


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_id: UUID,
    request: CancelRequest | None = None,
    actor_id: UUID = Depends(get_actor_id),
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
) -> ReservationResponse:
    """Cancel a reservation (requester or staff)."""
    reason = request.reason if request else None
    reservation = await lifecycle.cancel_reservation(reservation_id, actor_id, reason)
    return ReservationResponse.model_validate(reservation)
