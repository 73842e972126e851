"""
Admin-specific endpoints for Booking Service.
"""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from services.booking_service.dependencies import (
    BookingRuntime,
    get_actor_id,
    get_lifecycle,
    get_runtime,
    get_session,
)
from services.booking_service.lifecycle import LifecycleEngine
from shared.domain.equipment import STAFF_ROLES, UserRoleType
from shared.security.audit import AuditAction, AuditEntityType, AuditLogEntry, AuditQuery

router = APIRouter(prefix="/admin", tags=["admin"])
logger = structlog.get_logger(__name__)


class RoleChangeRequest(BaseModel):
    role: UserRoleType


class RoleResponse(BaseModel):
    user_id: UUID
    role: UserRoleType


class SweepResponse(BaseModel):
    completed: list[UUID]


@router.get("/users/{user_id}/role", response_model=RoleResponse)
async def get_user_role(
    user_id: UUID,
    runtime: BookingRuntime = Depends(get_runtime),
    db: AsyncSession = Depends(get_session),
) -> RoleResponse:
    return RoleResponse(user_id=user_id, role=await runtime.rbac.get_role(db, user_id))


@router.put("/users/{user_id}/role", response_model=RoleResponse)
async def change_user_role(
    user_id: UUID,
    request: RoleChangeRequest,
    actor_id: UUID = Depends(get_actor_id),
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
) -> RoleResponse:
    """Change a user's role (admin only)."""
    role = await lifecycle.change_user_role(user_id, actor_id, request.role)
    return RoleResponse(user_id=user_id, role=role)


@router.get("/audit-logs", response_model=list[AuditLogEntry])
async def list_audit_logs(
    user_id: UUID | None = Query(default=None, description="Filter by acting user"),
    action: AuditAction | None = None,
    entity_type: AuditEntityType | None = None,
    entity_id: UUID | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    actor_id: UUID = Depends(get_actor_id),
    runtime: BookingRuntime = Depends(get_runtime),
    db: AsyncSession = Depends(get_session),
) -> list[AuditLogEntry]:
    """
    Read the audit trail, newest first (staff only).

    Returns:
        Matching audit entries
    """
    await runtime.rbac.require(db, actor_id, "read_audit_log", *STAFF_ROLES)

    filters = AuditQuery(
        actor_id=user_id,
        action=action.value if action else None,
        entity_type=entity_type.value if entity_type else None,
        entity_id=entity_id,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return await runtime.audit.query(db, filters)


@router.post("/sweep", response_model=SweepResponse)
async def run_expiry_sweep(
    actor_id: UUID = Depends(get_actor_id),
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
) -> SweepResponse:
    """Complete expired approved reservations now (staff only)."""
    completed = await lifecycle.complete_expired_reservations(actor_id=actor_id)
    return SweepResponse(completed=completed)
