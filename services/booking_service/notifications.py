"""
Notification Dispatch

Turns committed transition events into notification intents and delivers
them without blocking the operation that produced them.

Delivery is best effort: a failed or timed-out delivery is logged and
dropped, and never affects the committed state change.
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any
from uuid import UUID

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from shared.domain.equipment import DeviceStatus, IssueStatus, ReservationStatus
from shared.domain.exceptions import ExternalServiceError
from shared.events.base import Event
from shared.events.booking_events import (
    DeviceStatusChangedEvent,
    IssueReportedEvent,
    IssueStatusChangedEvent,
    ReservationCancelledEvent,
    ReservationCreatedEvent,
    ReservationDecidedEvent,
    ReservationEvent,
)
from shared.events.stream import EventSubscriber

logger = structlog.get_logger(__name__)


class NotificationTemplate(str, Enum):
    """Message templates understood by the delivery endpoint."""

    RESERVATION_SUBMITTED = "reservation_submitted"
    RESERVATION_APPROVED = "reservation_approved"
    RESERVATION_REJECTED = "reservation_rejected"
    RESERVATION_CANCELLED = "reservation_cancelled"
    ISSUE_REPORTED = "issue_reported"
    ISSUE_RESOLVED = "issue_resolved"
    DEVICE_UNAVAILABLE = "device_unavailable"


DEFAULT_UNAVAILABLE_REASON = "The device was marked as unavailable."


class NotificationIntent(BaseModel):
    """A message to one recipient, derived from one committed transition."""

    model_config = ConfigDict(frozen=True)

    recipient_id: UUID
    template: NotificationTemplate
    details: dict[str, Any] = Field(default_factory=dict)
    source_event_id: UUID | None = None


def _reservation_details(event: ReservationEvent) -> dict[str, Any]:
    details: dict[str, Any] = {
        "deviceName": event.device_name,
        "startDate": event.start.isoformat(),
        "endDate": event.end.isoformat(),
    }
    if isinstance(event, (ReservationDecidedEvent, ReservationCancelledEvent)) and event.reason:
        details["reason"] = event.reason
    return details


def _unavailable_details(
    event: DeviceStatusChangedEvent, holder_id: UUID
) -> dict[str, Any]:
    windows = [r for r in event.affected_reservations if r.holder_id == holder_id]
    return {
        "deviceName": event.device_name,
        "reason": event.reason or DEFAULT_UNAVAILABLE_REASON,
        "startDate": windows[0].start.isoformat(),
        "endDate": windows[0].end.isoformat(),
        "reservations": [
            {
                "reservationId": str(r.reservation_id),
                "startDate": r.start.isoformat(),
                "endDate": r.end.isoformat(),
                "status": r.status.value,
            }
            for r in windows
        ],
    }


def intents_for_event(event: Event) -> list[NotificationIntent]:
    """
    Map a transition event to the notifications it triggers.

    - reservation submitted / issue reported: staff captured at commit
    - approved / rejected: the requester
    - cancelled by someone other than the requester: the requester
    - issue resolved: the reporter
    - device became unavailable: each distinct active holder, once

    Args:
        event: Committed transition event

    Returns:
        Zero or more intents
    """
    event_id = event.metadata.event_id

    if isinstance(event, ReservationCreatedEvent):
        details = _reservation_details(event)
        details["requesterId"] = str(event.requester_id)
        if event.purpose:
            details["purpose"] = event.purpose
        return [
            NotificationIntent(
                recipient_id=staff_id,
                template=NotificationTemplate.RESERVATION_SUBMITTED,
                details=details,
                source_event_id=event_id,
            )
            for staff_id in dict.fromkeys(event.staff_recipients)
        ]

    if isinstance(event, IssueReportedEvent):
        return [
            NotificationIntent(
                recipient_id=staff_id,
                template=NotificationTemplate.ISSUE_REPORTED,
                details={
                    "deviceName": event.device_name,
                    "issueTitle": event.title,
                    "priority": event.priority.value,
                },
                source_event_id=event_id,
            )
            for staff_id in dict.fromkeys(event.staff_recipients)
        ]

    if isinstance(event, ReservationDecidedEvent):
        template = (
            NotificationTemplate.RESERVATION_APPROVED
            if event.status == ReservationStatus.APPROVED
            else NotificationTemplate.RESERVATION_REJECTED
        )
        return [
            NotificationIntent(
                recipient_id=event.requester_id,
                template=template,
                details=_reservation_details(event),
                source_event_id=event_id,
            )
        ]

    if isinstance(event, ReservationCancelledEvent):
        if event.cancelled_by == event.requester_id:
            return []
        return [
            NotificationIntent(
                recipient_id=event.requester_id,
                template=NotificationTemplate.RESERVATION_CANCELLED,
                details=_reservation_details(event),
                source_event_id=event_id,
            )
        ]

    if isinstance(event, IssueStatusChangedEvent):
        if event.status != IssueStatus.RESOLVED:
            return []
        return [
            NotificationIntent(
                recipient_id=event.reporter_id,
                template=NotificationTemplate.ISSUE_RESOLVED,
                details={
                    "deviceName": event.device_name,
                    "issueTitle": event.title,
                    "resolution": event.resolution or "",
                },
                source_event_id=event_id,
            )
        ]

    if isinstance(event, DeviceStatusChangedEvent):
        if event.status != DeviceStatus.UNAVAILABLE:
            return []
        holders = dict.fromkeys(r.holder_id for r in event.affected_reservations)
        return [
            NotificationIntent(
                recipient_id=holder,
                template=NotificationTemplate.DEVICE_UNAVAILABLE,
                details=_unavailable_details(event, holder),
                source_event_id=event_id,
            )
            for holder in holders
        ]

    return []


class DeliveryClient(ABC):
    """Outbound channel for notification intents."""

    @abstractmethod
    async def deliver(self, intent: NotificationIntent) -> bool:
        """
        Deliver one intent.

        Returns:
            bool: True if the channel accepted the message
        """

    async def aclose(self) -> None:
        """Release client resources."""


class LoggingDeliveryClient(DeliveryClient):
    """Delivery client that only logs intents (no endpoint configured)."""

    async def deliver(self, intent: NotificationIntent) -> bool:
        logger.info(
            "Notification intent",
            recipient_id=str(intent.recipient_id),
            template=intent.template.value,
            details=intent.details,
        )
        return True


class HttpDeliveryClient(DeliveryClient):
    """
    Posts intents to the send-notification endpoint.

    Body: {"type": <template>, "userId": <recipient>, "details": {...}}
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize HTTP delivery client.

        Args:
            endpoint: Full URL of the notification endpoint
            api_key: Optional bearer token
            timeout: Request timeout in seconds
            client: Pre-built httpx client (tests pass a mock transport)
        """
        self.endpoint = endpoint
        self.timeout = timeout
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def deliver(self, intent: NotificationIntent) -> bool:
        payload = {
            "type": intent.template.value,
            "userId": str(intent.recipient_id),
            "details": intent.details,
        }
        try:
            response = await self._client.post(self.endpoint, json=payload)
            response.raise_for_status()
            return True

        except httpx.TimeoutException as e:
            raise ExternalServiceError(
                service_name="notifications",
                message=f"Notification request timed out after {self.timeout}s",
                timeout=True,
                cause=e,
            ) from e

        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                service_name="notifications",
                message=f"Notification endpoint returned {e.response.status_code}",
                cause=e,
            ) from e

        except httpx.HTTPError as e:
            raise ExternalServiceError(
                service_name="notifications",
                message=f"Notification request failed: {e}",
                cause=e,
            ) from e

    async def aclose(self) -> None:
        await self._client.aclose()


class NotificationDispatcher(EventSubscriber):
    """
    Event subscriber that delivers intents in background tasks.

    handle_event only schedules work, so publishing a committed event never
    waits on the delivery channel. Each intent gets its own task; one
    failing delivery does not stop the others.
    """

    def __init__(self, client: DeliveryClient, timeout: float = 10.0):
        """
        Initialize dispatcher.

        Args:
            client: Delivery channel
            timeout: Upper bound per delivery in seconds
        """
        self.client = client
        self.timeout = timeout
        self._tasks: set[asyncio.Task] = set()
        self.delivered = 0
        self.failed = 0

    def get_subscribed_event_types(self) -> list[type[Event]]:
        return [
            ReservationCreatedEvent,
            ReservationDecidedEvent,
            ReservationCancelledEvent,
            IssueReportedEvent,
            IssueStatusChangedEvent,
            DeviceStatusChangedEvent,
        ]

    async def handle_event(self, event: Event) -> None:
        self.dispatch(intents_for_event(event))

    def dispatch(self, intents: list[NotificationIntent]) -> list[asyncio.Task]:
        """Schedule delivery of each intent and return the tasks."""
        tasks = []
        for intent in intents:
            task = asyncio.create_task(self._deliver(intent))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)
        return tasks

    async def _deliver(self, intent: NotificationIntent) -> bool:
        try:
            accepted = await asyncio.wait_for(self.client.deliver(intent), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.failed += 1
            logger.warning(
                "Notification delivery timed out",
                recipient_id=str(intent.recipient_id),
                template=intent.template.value,
                timeout=self.timeout,
            )
            return False
        except Exception as e:
            self.failed += 1
            logger.error(
                "Notification delivery failed",
                recipient_id=str(intent.recipient_id),
                template=intent.template.value,
                error=str(e),
            )
            return False

        if not accepted:
            self.failed += 1
            logger.warning(
                "Notification rejected by delivery channel",
                recipient_id=str(intent.recipient_id),
                template=intent.template.value,
            )
            return False

        self.delivered += 1
        logger.debug(
            "Notification delivered",
            recipient_id=str(intent.recipient_id),
            template=intent.template.value,
        )
        return True

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all scheduled deliveries to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self.client.aclose()
