"""
Booking Service Response Schemas
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class DeviceResponse(BaseModel):
    """Device information response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    serial_number: str | None = None
    description: str | None = None
    status: str
    category_id: UUID | None = None
    location_id: UUID | None = None
    created_at: datetime
    updated_at: datetime


class ReservationResponse(BaseModel):
    """Reservation response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    device_id: UUID
    user_id: UUID
    start_at: datetime
    end_at: datetime
    status: str
    purpose: str | None = None
    notes: str | None = None
    decision_reason: str | None = None
    approved_by: UUID | None = None
    created_at: datetime
    updated_at: datetime


class IssueResponse(BaseModel):
    """Issue response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    device_id: UUID
    reported_by: UUID
    title: str
    description: str
    priority: str
    status: str
    resolution: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
