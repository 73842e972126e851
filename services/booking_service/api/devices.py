"""
Device endpoints for Booking Service.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from services.booking_service.dependencies import get_actor_id, get_lifecycle, get_repository
from services.booking_service.lifecycle import LifecycleEngine
from services.booking_service.repository import BookingRepository
from services.booking_service.schemas import DeviceResponse
from shared.domain.equipment import DeviceStatus
from shared.domain.exceptions import EntityNotFoundError

router = APIRouter(prefix="/devices", tags=["devices"])


class DeviceCreateRequest(BaseModel):
    name: str = Field(..., max_length=200)
    serial_number: str | None = Field(default=None, max_length=100)
    description: str | None = None
    category_id: UUID | None = None
    location_id: UUID | None = None
    status: DeviceStatus = DeviceStatus.AVAILABLE


class DeviceUpdateRequest(BaseModel):
    """Descriptive fields only; omitted fields are left unchanged."""

    name: str | None = Field(default=None, max_length=200)
    serial_number: str | None = Field(default=None, max_length=100)
    description: str | None = None
    category_id: UUID | None = None
    location_id: UUID | None = None


class DeviceStatusRequest(BaseModel):
    status: DeviceStatus
    reason: str | None = Field(default=None, max_length=2000)


@router.post("", response_model=DeviceResponse, status_code=status.HTTP_201_CREATED)
async def register_device(
    request: DeviceCreateRequest,
    actor_id: UUID = Depends(get_actor_id),
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
) -> DeviceResponse:
    device = await lifecycle.register_device(
        actor_id,
        request.name,
        serial_number=request.serial_number,
        description=request.description,
        category_id=request.category_id,
        location_id=request.location_id,
        status=request.status,
    )
    return DeviceResponse.model_validate(device)


@router.get("", response_model=list[DeviceResponse])
async def list_devices(
    status_filter: DeviceStatus | None = Query(default=None, alias="status"),
    repo: BookingRepository = Depends(get_repository),
) -> list[DeviceResponse]:
    devices = await repo.list_devices(status=status_filter.value if status_filter else None)
    return [DeviceResponse.model_validate(d) for d in devices]


@router.get("/{device_id}", response_model=DeviceResponse)
async def get_device(
    device_id: UUID,
    repo: BookingRepository = Depends(get_repository),
) -> DeviceResponse:
    device = await repo.get_device(device_id)
    if device is None:
        raise EntityNotFoundError("device", device_id)
    return DeviceResponse.model_validate(device)


@router.patch("/{device_id}", response_model=DeviceResponse)
async def update_device(
    device_id: UUID,
    request: DeviceUpdateRequest,
    actor_id: UUID = Depends(get_actor_id),
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
) -> DeviceResponse:
    device = await lifecycle.update_device_details(
        device_id, actor_id, request.model_dump(exclude_unset=True)
    )
    return DeviceResponse.model_validate(device)


@router.put("/{device_id}/status", response_model=DeviceResponse)
async def set_device_status(
    device_id: UUID,
    request: DeviceStatusRequest,
    actor_id: UUID = Depends(get_actor_id),
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
) -> DeviceResponse:
    """Change a device's status (staff only)."""
    device = await lifecycle.set_device_status(
        device_id, actor_id, request.status, reason=request.reason
    )
    return DeviceResponse.model_validate(device)


@router.delete("/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_device(
    device_id: UUID,
    actor_id: UUID = Depends(get_actor_id),
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
) -> Response:
    await lifecycle.delete_device(device_id, actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
