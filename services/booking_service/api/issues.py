"""
Issue (fault report) endpoints for Booking Service.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from services.booking_service.dependencies import get_actor_id, get_lifecycle, get_repository
from services.booking_service.lifecycle import LifecycleEngine
from services.booking_service.repository import BookingRepository
from services.booking_service.schemas import IssueResponse
from shared.domain.equipment import IssuePriority, IssueStatus

router = APIRouter(prefix="/issues", tags=["issues"])


class IssueReportRequest(BaseModel):
    device_id: UUID
    title: str = Field(..., max_length=200)
    description: str
    priority: IssuePriority = IssuePriority.MEDIUM


class IssueStatusRequest(BaseModel):
    status: IssueStatus
    resolution: str | None = None


@router.post("", response_model=IssueResponse, status_code=status.HTTP_201_CREATED)
async def report_issue(
    request: IssueReportRequest,
    actor_id: UUID = Depends(get_actor_id),
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
) -> IssueResponse:
    issue = await lifecycle.report_issue(
        request.device_id, actor_id, request.title, request.description, request.priority
    )
    return IssueResponse.model_validate(issue)


@router.get("", response_model=list[IssueResponse])
async def list_issues(
    device_id: UUID | None = None,
    reported_by: UUID | None = None,
    status_filter: IssueStatus | None = Query(default=None, alias="status"),
    repo: BookingRepository = Depends(get_repository),
) -> list[IssueResponse]:
    issues = await repo.list_issues(
        device_id=device_id,
        status=status_filter.value if status_filter else None,
        reported_by=reported_by,
    )
    return [IssueResponse.model_validate(i) for i in issues]


@router.post("/{issue_id}/status", response_model=IssueResponse)
async def update_issue_status(
    issue_id: UUID,
    request: IssueStatusRequest,
    actor_id: UUID = Depends(get_actor_id),
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
) -> IssueResponse:
    """Move an issue along its status chain (staff only)."""
    issue = await lifecycle.update_issue_status(
        issue_id, actor_id, request.status, request.resolution
    )
    return IssueResponse.model_validate(issue)
